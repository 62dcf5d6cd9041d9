from __future__ import annotations

import json
import os
import sqlite3
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from streamverse.models import (
    TIMESTAMP_FIELDS,
    DocumentNotFound,
    ListItem,
    StoreError,
)


def _encode(data: Dict[str, Any]) -> str:
    return json.dumps(data, default=lambda v: v.isoformat() if isinstance(v, datetime) else str(v))


class DocumentStore:
    """SQLite-backed stand-in for the per-user document store."""

    def __init__(self, path: str) -> None:
        self.path = path
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.path, timeout=30.0, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
        with self._connect() as conn:
            conn.execute("PRAGMA foreign_keys=ON")
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS users (
                    user_id TEXT PRIMARY KEY,
                    data TEXT NOT NULL DEFAULT '{}'
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS list_items (
                    user_id TEXT NOT NULL,
                    collection TEXT NOT NULL,
                    doc_id TEXT NOT NULL,
                    movie_id INTEGER NOT NULL,
                    ts REAL NOT NULL,
                    data TEXT NOT NULL,
                    PRIMARY KEY (user_id, collection, doc_id)
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_list_items_movie ON list_items (user_id, collection, movie_id)"
            )
            conn.commit()

    def _run(self, fn, *args):
        try:
            return fn(*args)
        except sqlite3.Error as exc:
            raise StoreError(f"SQLite store failure: {exc}") from exc

    async def query_items(self, user_id: str, collection: str, limit: Optional[int] = None) -> List[ListItem]:
        return self._run(self._query_items, user_id, collection, limit)

    def _query_items(self, user_id: str, collection: str, limit: Optional[int]) -> List[ListItem]:
        ts_field = TIMESTAMP_FIELDS.get(collection, "addedAt")
        sql = "SELECT doc_id, data FROM list_items WHERE user_id=? AND collection=? ORDER BY ts DESC"
        args: List[Any] = [user_id, collection]
        if limit:
            sql += " LIMIT ?"
            args.append(int(limit))
        with self._connect() as conn:
            cur = conn.execute(sql, args)
            return [ListItem.from_fields(row["doc_id"], json.loads(row["data"]), ts_field) for row in cur.fetchall()]

    async def has_movie(self, user_id: str, collection: str, movie_id: int) -> bool:
        return self._run(self._has_movie, user_id, collection, movie_id)

    def _has_movie(self, user_id: str, collection: str, movie_id: int) -> bool:
        with self._connect() as conn:
            cur = conn.execute(
                "SELECT 1 FROM list_items WHERE user_id=? AND collection=? AND movie_id=? LIMIT 1",
                (user_id, collection, int(movie_id)),
            )
            return cur.fetchone() is not None

    async def create_item(self, user_id: str, collection: str, item: ListItem) -> str:
        return self._run(self._create_item, user_id, collection, item)

    def _create_item(self, user_id: str, collection: str, item: ListItem) -> str:
        ts_field = TIMESTAMP_FIELDS.get(collection, "addedAt")
        doc_id = uuid.uuid4().hex[:20]
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO list_items (user_id, collection, doc_id, movie_id, ts, data) VALUES (?, ?, ?, ?, ?, ?)",
                (user_id, collection, doc_id, int(item.movie_id), item.added_at.timestamp(), _encode(item.to_fields(ts_field))),
            )
            conn.commit()
        return doc_id

    async def delete_item(self, user_id: str, collection: str, item_id: str) -> None:
        self._run(self._delete_item, user_id, collection, item_id)

    def _delete_item(self, user_id: str, collection: str, item_id: str) -> None:
        with self._connect() as conn:
            conn.execute(
                "DELETE FROM list_items WHERE user_id=? AND collection=? AND doc_id=?",
                (user_id, collection, item_id),
            )
            conn.commit()

    async def update_item(self, user_id: str, collection: str, item_id: str, data: Dict[str, Any]) -> None:
        self._run(self._update_item, user_id, collection, item_id, data)

    def _update_item(self, user_id: str, collection: str, item_id: str, data: Dict[str, Any]) -> None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT data FROM list_items WHERE user_id=? AND collection=? AND doc_id=?",
                (user_id, collection, item_id),
            ).fetchone()
            if row is None:
                raise DocumentNotFound(f"users/{user_id}/{collection}/{item_id}")
            current = json.loads(row["data"])
            current.update(json.loads(_encode(data)))
            conn.execute(
                "UPDATE list_items SET data=? WHERE user_id=? AND collection=? AND doc_id=?",
                (_encode(current), user_id, collection, item_id),
            )
            conn.commit()

    async def delete_all(self, user_id: str, collection: str) -> int:
        return self._run(self._delete_all, user_id, collection)

    def _delete_all(self, user_id: str, collection: str) -> int:
        with self._connect() as conn:
            cur = conn.execute("DELETE FROM list_items WHERE user_id=? AND collection=?", (user_id, collection))
            conn.commit()
            return cur.rowcount

    async def get_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        return self._run(self._get_user, user_id)

    def _get_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        with self._connect() as conn:
            row = conn.execute("SELECT data FROM users WHERE user_id=?", (user_id,)).fetchone()
            return json.loads(row["data"]) if row else None

    async def set_user(self, user_id: str, data: Dict[str, Any]) -> None:
        self._run(self._set_user, user_id, data)

    def _set_user(self, user_id: str, data: Dict[str, Any]) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO users (user_id, data) VALUES (?, ?)
                ON CONFLICT(user_id) DO UPDATE SET data=excluded.data
                """,
                (user_id, _encode(data)),
            )
            conn.commit()

    async def update_user(self, user_id: str, data: Dict[str, Any]) -> None:
        self._run(self._update_user, user_id, data)

    def _update_user(self, user_id: str, data: Dict[str, Any]) -> None:
        with self._connect() as conn:
            row = conn.execute("SELECT data FROM users WHERE user_id=?", (user_id,)).fetchone()
            if row is None:
                raise DocumentNotFound(f"users/{user_id}")
            current = json.loads(row["data"])
            current.update(json.loads(_encode(data)))
            conn.execute("UPDATE users SET data=? WHERE user_id=?", (_encode(current), user_id))
            conn.commit()
