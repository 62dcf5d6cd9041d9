from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from streamverse.models import Identity, Show
from streamverse.user_service import UserService


logger = logging.getLogger("streamverse.toggle")

MSG_LOGIN = "Please login to add to Watch Later"
MSG_ADDED = "Added to Watch Later"
MSG_REMOVED = "Removed from Watch Later"
MSG_NOT_FOUND = "Could not find this show in your Watch Later list"
MSG_REMOVE_FAILED = "Failed to remove from Watch Later list"
MSG_UPDATE_FAILED = "Failed to update Watch Later list"


@dataclass(frozen=True)
class Notification:
    level: str  # success | error
    message: str

    def to_dict(self) -> Dict[str, str]:
        return {"level": self.level, "message": self.message}


class WatchLaterToggle:
    """Watch Later membership flag for one show, updated optimistically.

    ``in_watchlist`` is what the UI shows; ``busy`` disables the trigger
    while a check or a write is in flight.
    """

    def __init__(
        self,
        users: UserService,
        identity: Optional[Identity],
        show: Show,
        in_watchlist: bool = False,
    ) -> None:
        self.users = users
        self.identity = identity
        self.show = show
        self.in_watchlist = in_watchlist
        self.busy = False
        self.notifications: List[Notification] = []

    def _notify(self, level: str, message: str) -> None:
        self.notifications.append(Notification(level, message))

    async def check(self) -> bool:
        if not (self.identity and self.identity.id and self.show.id):
            self.in_watchlist = False
            return False
        self.busy = True
        try:
            self.in_watchlist = await self.users.is_in_watchlist(self.identity.id, self.show.id)
        except Exception:
            logger.warning("Toggle: membership check failed for %s", self.show.id, exc_info=True)
        finally:
            self.busy = False
        return self.in_watchlist

    async def toggle(self) -> bool:
        if not (self.identity and self.identity.id):
            self._notify("error", MSG_LOGIN)
            return self.in_watchlist

        user_id = self.identity.id
        previous = self.in_watchlist
        self.busy = True
        self.in_watchlist = not previous
        try:
            if previous:
                await self._remove(user_id)
            else:
                await self.users.add_to_watchlist(user_id, self.show.to_list_item())
                self._notify("success", MSG_ADDED)
        except Exception:
            logger.warning("Toggle: updating watch later failed for %s", self.show.id, exc_info=True)
            self._notify("error", MSG_UPDATE_FAILED)
            self.in_watchlist = previous
        finally:
            self.busy = False
        return self.in_watchlist

    async def _remove(self, user_id: str) -> None:
        try:
            items = await self.users.get_watchlist(user_id)
            match = next((it for it in items if int(it.movie_id) == int(self.show.id)), None)
            if match is None:
                self._notify("error", MSG_NOT_FOUND)
                self.users.watchlist.spawn(self._background_refresh(user_id))
                self.in_watchlist = False
                return
            await self.users.remove_from_watchlist(user_id, match.id)
            self._notify("success", MSG_REMOVED)
        except Exception:
            logger.warning("Toggle: removing %s from watch later failed", self.show.id, exc_info=True)
            self._notify("error", MSG_REMOVE_FAILED)
            self.in_watchlist = True

    async def _background_refresh(self, user_id: str) -> None:
        try:
            await self.users.refresh_watchlist(user_id)
        except Exception:
            logger.warning("Toggle: background refresh failed for %s", user_id, exc_info=True)
