from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, Dict, List, Optional

from streamverse.models import (
    WATCH_HISTORY,
    DocumentNotFound,
    ListItem,
    ListStore,
    Pending,
    UserNotFound,
    UserSettings,
    utcnow,
)
from streamverse.store import ListCache


logger = logging.getLogger("streamverse.users")


def _check_progress(progress: Any) -> float:
    progress = float(progress)
    if not 0 <= progress <= 100:
        raise ValueError("progress must be between 0 and 100")
    return progress


class UserService:
    """Account features for one signed-in session: lists, history, settings, profile.

    The Watch Later list goes through the session's ListCache; history,
    settings and profile always hit the store.
    """

    def __init__(self, remote: ListStore, watchlist: ListCache, history_limit: int = 20) -> None:
        self.remote = remote
        self.watchlist = watchlist
        self.history_limit = history_limit

    # Watch Later

    async def get_watchlist(self, user_id: str, force_refresh: bool = False) -> List[ListItem]:
        return await self.watchlist.get(user_id, force_refresh=force_refresh)

    async def is_in_watchlist(self, user_id: str, movie_id: int, verify: bool = False) -> bool:
        return await self.watchlist.contains(user_id, movie_id, verify=verify)

    async def add_to_watchlist(self, user_id: str, item: ListItem) -> Pending:
        try:
            return await self.watchlist.add(user_id, item)
        except Exception:
            logger.warning("Users: adding %s to watch later failed for %s", item.movie_id, user_id, exc_info=True)
            raise

    async def remove_from_watchlist(self, user_id: str, item_id: str) -> None:
        try:
            await self.watchlist.remove(user_id, item_id)
        except Exception:
            logger.warning("Users: removing %s from watch later failed for %s", item_id, user_id, exc_info=True)
            raise

    async def refresh_watchlist(self, user_id: str) -> List[ListItem]:
        return await self.watchlist.refresh(user_id)

    def preload_watchlist(self, user_id: str) -> None:
        self.watchlist.preload(user_id)

    # Watch history

    async def get_watch_history(self, user_id: str, limit: Optional[int] = None) -> List[ListItem]:
        return await self.remote.query_items(user_id, WATCH_HISTORY, limit=limit or self.history_limit)

    async def add_to_watch_history(self, user_id: str, item: ListItem) -> str:
        if item.progress is not None:
            item = replace(item, progress=_check_progress(item.progress))
        item = replace(item, added_at=utcnow())
        item_id = await self.remote.create_item(user_id, WATCH_HISTORY, item)
        logger.info("Users: recorded %s in history for %s", item.movie_id, user_id)
        return item_id

    async def remove_from_watch_history(self, user_id: str, item_id: str) -> None:
        await self.remote.delete_item(user_id, WATCH_HISTORY, item_id)

    async def clear_watch_history(self, user_id: str) -> int:
        removed = await self.remote.delete_all(user_id, WATCH_HISTORY)
        logger.info("Users: cleared %d history entries for %s", removed, user_id)
        return removed

    async def update_watch_progress(self, user_id: str, item_id: str, progress: float) -> None:
        progress = _check_progress(progress)
        await self.remote.update_item(user_id, WATCH_HISTORY, item_id, {"progress": progress, "updatedAt": utcnow()})

    # Settings

    async def get_user_settings(self, user_id: str) -> UserSettings:
        doc = await self.remote.get_user(user_id)
        if doc and doc.get("settings"):
            return UserSettings.from_dict(doc["settings"])
        return UserSettings()

    async def update_user_settings(self, user_id: str, partial: Dict[str, Any]) -> UserSettings:
        doc = await self.remote.get_user(user_id)
        if doc is not None:
            merged = UserSettings.from_dict(doc.get("settings")).merged(partial)
            await self.remote.update_user(user_id, {"settings": merged.to_dict(), "updatedAt": utcnow()})
        else:
            merged = UserSettings().merged(partial)
            await self.remote.set_user(user_id, {"settings": merged.to_dict(), "updatedAt": utcnow()})
        return merged

    # Profile

    async def get_user_profile(self, user_id: str) -> Dict[str, Any]:
        doc = await self.remote.get_user(user_id)
        if doc is None:
            raise UserNotFound(user_id)
        return doc

    async def update_user_profile(self, user_id: str, data: Dict[str, Any]) -> None:
        payload = {k: v for k, v in (data or {}).items() if k != "settings"}
        payload["updatedAt"] = utcnow()
        try:
            await self.remote.update_user(user_id, payload)
        except DocumentNotFound as exc:
            raise UserNotFound(user_id) from exc

    async def close(self) -> None:
        await self.watchlist.close()
