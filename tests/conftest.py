"""Shared doubles for the streamverse test suite."""

from __future__ import annotations

import itertools
from dataclasses import replace
from typing import Any, Dict, List, Optional

import pytest

from streamverse.models import DocumentNotFound, ListItem, StoreError


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


class MemoryStore:
    """In-memory double of the remote document store that counts reads."""

    def __init__(self) -> None:
        self.collections: Dict[tuple, List[ListItem]] = {}
        self.users: Dict[str, Dict[str, Any]] = {}
        self.reads = 0
        self.point_queries = 0
        self.fail_reads = False
        self.fail_writes = False
        self._ids = itertools.count(1)

    def seed(self, user_id: str, collection: str, items: List[ListItem]) -> None:
        self.collections[(user_id, collection)] = list(items)

    def docs(self, user_id: str, collection: str) -> List[ListItem]:
        return self.collections.setdefault((user_id, collection), [])

    async def query_items(self, user_id: str, collection: str, limit: Optional[int] = None) -> List[ListItem]:
        self.reads += 1
        if self.fail_reads:
            raise StoreError("read failed")
        items = sorted(self.docs(user_id, collection), key=lambda it: it.added_at, reverse=True)
        return items[:limit] if limit else items

    async def has_movie(self, user_id: str, collection: str, movie_id: int) -> bool:
        self.point_queries += 1
        if self.fail_reads:
            raise StoreError("read failed")
        return any(it.movie_id == movie_id for it in self.docs(user_id, collection))

    async def create_item(self, user_id: str, collection: str, item: ListItem) -> str:
        if self.fail_writes:
            raise StoreError("write failed")
        doc_id = f"doc{next(self._ids)}"
        self.docs(user_id, collection).append(replace(item, id=doc_id))
        return doc_id

    async def delete_item(self, user_id: str, collection: str, item_id: str) -> None:
        if self.fail_writes:
            raise StoreError("write failed")
        self.collections[(user_id, collection)] = [it for it in self.docs(user_id, collection) if it.id != item_id]

    async def update_item(self, user_id: str, collection: str, item_id: str, data: Dict[str, Any]) -> None:
        if self.fail_writes:
            raise StoreError("write failed")
        for it in self.docs(user_id, collection):
            if it.id == item_id:
                if "progress" in data:
                    it.progress = data["progress"]
                return
        raise DocumentNotFound(item_id)

    async def delete_all(self, user_id: str, collection: str) -> int:
        removed = len(self.docs(user_id, collection))
        self.collections[(user_id, collection)] = []
        return removed

    async def get_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        doc = self.users.get(user_id)
        return dict(doc) if doc is not None else None

    async def set_user(self, user_id: str, data: Dict[str, Any]) -> None:
        self.users[user_id] = dict(data)

    async def update_user(self, user_id: str, data: Dict[str, Any]) -> None:
        if user_id not in self.users:
            raise DocumentNotFound(user_id)
        self.users[user_id].update(data)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def remote() -> MemoryStore:
    return MemoryStore()
