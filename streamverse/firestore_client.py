from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

from streamverse.models import (
    TIMESTAMP_FIELDS,
    DocumentNotFound,
    ListItem,
    StoreError,
)


logger = logging.getLogger("streamverse.firestore")

FIRESTORE_URL = "https://firestore.googleapis.com/v1"
_FRACTION = re.compile(r"\.\d+")


def encode_value(value: Any) -> Dict[str, Any]:
    """Convert a Python value into a Firestore REST typed value."""
    if value is None:
        return {"nullValue": None}
    if isinstance(value, bool):
        return {"booleanValue": value}
    if isinstance(value, int):
        return {"integerValue": str(value)}
    if isinstance(value, float):
        return {"doubleValue": value}
    if isinstance(value, datetime):
        ts = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
        return {"timestampValue": ts.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")}
    if isinstance(value, dict):
        return {"mapValue": {"fields": encode_fields(value)}}
    if isinstance(value, (list, tuple)):
        return {"arrayValue": {"values": [encode_value(v) for v in value]}}
    return {"stringValue": str(value)}


def encode_fields(data: Dict[str, Any]) -> Dict[str, Any]:
    return {str(k): encode_value(v) for k, v in data.items()}


def _parse_timestamp(raw: str) -> datetime:
    # Firestore returns up to nanosecond precision; datetime keeps microseconds.
    raw = _FRACTION.sub(lambda m: m.group(0)[:7], raw.replace("Z", "+00:00"))
    return datetime.fromisoformat(raw)


def decode_value(value: Dict[str, Any]) -> Any:
    if "nullValue" in value:
        return None
    if "booleanValue" in value:
        return bool(value["booleanValue"])
    if "integerValue" in value:
        return int(value["integerValue"])
    if "doubleValue" in value:
        return float(value["doubleValue"])
    if "timestampValue" in value:
        return _parse_timestamp(str(value["timestampValue"]))
    if "stringValue" in value:
        return str(value["stringValue"])
    if "mapValue" in value:
        return decode_fields((value.get("mapValue") or {}).get("fields") or {})
    if "arrayValue" in value:
        return [decode_value(v) for v in (value.get("arrayValue") or {}).get("values") or []]
    # referenceValue, geoPointValue, bytesValue: passed through untouched.
    for key in ("referenceValue", "geoPointValue", "bytesValue"):
        if key in value:
            return value[key]
    return None


def decode_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    return {k: decode_value(v or {}) for k, v in (fields or {}).items()}


def _doc_id(name: str) -> str:
    return name.rsplit("/", 1)[-1] if name else ""


class FirestoreClient:
    """Firestore REST client for the per-user list collections."""

    def __init__(
        self,
        project: str,
        api_key: str = "",
        token: str = "",
        database: str = "(default)",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.project = project.strip()
        self.api_key = api_key.strip()
        self.token = token.strip()
        self.database = database
        self.timeout = timeout
        self.transport = transport

    @property
    def root(self) -> str:
        return f"projects/{self.project}/databases/{self.database}/documents"

    def _user_path(self, user_id: str) -> str:
        return f"{self.root}/users/{user_id}"

    def _client(self) -> httpx.AsyncClient:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        params = {"key": self.api_key} if self.api_key else None
        return httpx.AsyncClient(
            base_url=FIRESTORE_URL,
            headers=headers,
            params=params,
            timeout=self.timeout,
            transport=self.transport,
        )

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            async with self._client() as client:
                r = await client.request(method, f"/{path}", **kwargs)
                if r.status_code == 404:
                    raise DocumentNotFound(path)
                r.raise_for_status()
                return r
        except httpx.HTTPError as exc:
            raise StoreError(f"Firestore {method} {path} failed: {exc}") from exc

    async def _json(self, method: str, path: str, **kwargs) -> Any:
        r = await self._request(method, path, **kwargs)
        try:
            return r.json()
        except ValueError as exc:
            raise StoreError(f"Firestore {method} {path} returned a non-JSON body") from exc

    async def _run_query(self, user_id: str, structured: Dict[str, Any]) -> List[Dict[str, Any]]:
        rows = await self._json("POST", f"{self._user_path(user_id)}:runQuery", json={"structuredQuery": structured})
        # Each row carries a "document" unless the result set is empty.
        return [row["document"] for row in rows or [] if row.get("document")]

    async def query_items(self, user_id: str, collection: str, limit: Optional[int] = None) -> List[ListItem]:
        ts_field = TIMESTAMP_FIELDS.get(collection, "addedAt")
        structured: Dict[str, Any] = {
            "from": [{"collectionId": collection}],
            "orderBy": [{"field": {"fieldPath": ts_field}, "direction": "DESCENDING"}],
        }
        if limit:
            structured["limit"] = int(limit)
        docs = await self._run_query(user_id, structured)
        return [
            ListItem.from_fields(_doc_id(d.get("name", "")), decode_fields(d.get("fields") or {}), ts_field)
            for d in docs
        ]

    async def has_movie(self, user_id: str, collection: str, movie_id: int) -> bool:
        structured = {
            "from": [{"collectionId": collection}],
            "where": {
                "fieldFilter": {
                    "field": {"fieldPath": "movieId"},
                    "op": "EQUAL",
                    "value": encode_value(int(movie_id)),
                }
            },
            "limit": 1,
        }
        docs = await self._run_query(user_id, structured)
        return bool(docs)

    async def create_item(self, user_id: str, collection: str, item: ListItem) -> str:
        ts_field = TIMESTAMP_FIELDS.get(collection, "addedAt")
        body = await self._json(
            "POST",
            f"{self._user_path(user_id)}/{collection}",
            json={"fields": encode_fields(item.to_fields(ts_field))},
        )
        return _doc_id(str((body or {}).get("name") or ""))

    async def delete_item(self, user_id: str, collection: str, item_id: str) -> None:
        try:
            await self._request("DELETE", f"{self._user_path(user_id)}/{collection}/{item_id}")
        except DocumentNotFound:
            # Deleting a missing document is not an error in Firestore either.
            logger.info("Firestore: %s/%s already gone for %s", collection, item_id, user_id)

    async def update_item(self, user_id: str, collection: str, item_id: str, data: Dict[str, Any]) -> None:
        await self._patch(f"{self._user_path(user_id)}/{collection}/{item_id}", data, must_exist=True)

    async def delete_all(self, user_id: str, collection: str) -> int:
        names: List[str] = []
        page_token = ""
        while True:
            params: Dict[str, Any] = {"pageSize": 300, "mask.fieldPaths": "__name__"}
            if page_token:
                params["pageToken"] = page_token
            try:
                body = await self._json("GET", f"{self._user_path(user_id)}/{collection}", params=params) or {}
            except DocumentNotFound:
                break
            names.extend(d["name"] for d in body.get("documents") or [] if d.get("name"))
            page_token = str(body.get("nextPageToken") or "")
            if not page_token:
                break

        # A single commit accepts at most 500 writes.
        for start in range(0, len(names), 500):
            writes = [{"delete": name} for name in names[start:start + 500]]
            await self._request("POST", f"projects/{self.project}/databases/{self.database}/documents:commit", json={"writes": writes})
        return len(names)

    async def get_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        try:
            body = await self._json("GET", self._user_path(user_id))
        except DocumentNotFound:
            return None
        return decode_fields((body or {}).get("fields") or {})

    async def set_user(self, user_id: str, data: Dict[str, Any]) -> None:
        await self._request("PATCH", self._user_path(user_id), json={"fields": encode_fields(data)})

    async def update_user(self, user_id: str, data: Dict[str, Any]) -> None:
        await self._patch(self._user_path(user_id), data, must_exist=True)

    async def _patch(self, path: str, data: Dict[str, Any], must_exist: bool = False) -> None:
        params: List[tuple] = [("updateMask.fieldPaths", k) for k in data.keys()]
        if must_exist:
            params.append(("currentDocument.exists", "true"))
        await self._request("PATCH", path, params=params, json={"fields": encode_fields(data)})
