from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field, replace
from typing import Callable, Dict, List, Optional, Set

from streamverse.models import (
    WATCHLATER,
    CachedItem,
    Confirmed,
    ListItem,
    ListStore,
    Pending,
    utcnow,
    with_id,
)


logger = logging.getLogger("streamverse.store")

DEFAULT_TTL_MS = 2 * 60 * 1000


def _now_ms() -> float:
    return time.time() * 1000.0


@dataclass
class CacheEntry:
    items: List[CachedItem] = field(default_factory=list)
    fetched_at: float = 0.0  # ms

    def is_fresh(self, now_ms: float, ttl_ms: float) -> bool:
        return (now_ms - self.fetched_at) < ttl_ms

    def list_items(self) -> List[ListItem]:
        return [c.item for c in self.items]


class ListCache:
    """
    Per-user cache of one list collection in front of the remote store.

    Entries are replaced wholesale by reads and patched by add/remove. Stale
    entries are never purged, only ignored by get() and reused as a fallback
    when the store cannot be read. A hit in contains() is trusted regardless
    of age.
    """

    def __init__(
        self,
        remote: ListStore,
        collection: str = WATCHLATER,
        ttl_ms: float = DEFAULT_TTL_MS,
        clock: Callable[[], float] = _now_ms,
    ) -> None:
        self.remote = remote
        self.collection = collection
        self.ttl_ms = float(ttl_ms)
        self.clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._preloaded: Set[str] = set()
        self._tasks: Set[asyncio.Task] = set()

    def entry(self, user_id: str) -> Optional[CacheEntry]:
        return self._entries.get(user_id)

    def snapshot(self, user_id: str) -> Optional[List[CachedItem]]:
        entry = self._entries.get(user_id)
        return list(entry.items) if entry else None

    async def get(self, user_id: str, force_refresh: bool = False) -> List[ListItem]:
        cached = self._entries.get(user_id)
        now = self.clock()
        if not force_refresh and cached and cached.is_fresh(now, self.ttl_ms):
            return cached.list_items()

        try:
            items = await self.remote.query_items(user_id, self.collection)
        except Exception:
            if cached:
                logger.warning("Cache: %s read failed for %s; serving cached copy", self.collection, user_id, exc_info=True)
                return cached.list_items()
            raise

        self._entries[user_id] = CacheEntry(items=[Confirmed(it) for it in items], fetched_at=now)
        return list(items)

    async def contains(self, user_id: str, movie_id: int, verify: bool = False) -> bool:
        if not user_id:
            return False
        cached = self._entries.get(user_id)
        if cached and not verify:
            if any(int(c.item.movie_id) == int(movie_id) for c in cached.items):
                return True
        try:
            return await self.remote.has_movie(user_id, self.collection, int(movie_id))
        except Exception:
            logger.warning("Cache: existence check failed for %s/%s", user_id, movie_id, exc_info=True)
            return False

    async def add(self, user_id: str, item: ListItem) -> Pending:
        new_item = replace(item, id="", movie_id=int(item.movie_id), added_at=utcnow())
        item_id = await self.remote.create_item(user_id, self.collection, new_item)
        pending = Pending(with_id(new_item, item_id))

        cached = self._entries.get(user_id)
        if cached:
            self._entries[user_id] = CacheEntry(items=[pending, *cached.items], fetched_at=self.clock())
        logger.info("Cache: added %s to %s for %s", item_id, self.collection, user_id)
        return pending

    async def remove(self, user_id: str, item_id: str) -> None:
        cached = self._entries.get(user_id)
        if cached:
            kept = [c for c in cached.items if c.item.id != item_id]
            self._entries[user_id] = CacheEntry(items=kept, fetched_at=self.clock())
        await self.remote.delete_item(user_id, self.collection, item_id)
        logger.info("Cache: removed %s from %s for %s", item_id, self.collection, user_id)

    async def refresh(self, user_id: str) -> List[ListItem]:
        return await self.get(user_id, force_refresh=True)

    def preload(self, user_id: str) -> Optional[asyncio.Task]:
        """Warm the entry for a user in the background, once per session."""
        if not user_id or user_id in self._preloaded:
            return None

        async def _load() -> None:
            try:
                await self.get(user_id)
                self._preloaded.add(user_id)
            except Exception:
                logger.warning("Cache: preload failed for %s", user_id, exc_info=True)

        return self.spawn(_load())

    def spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait for background loads and refreshes started by this cache."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        await self.drain()
        self._entries.clear()
        self._preloaded.clear()
