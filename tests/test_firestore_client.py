"""Firestore REST client against a mocked transport."""

from __future__ import annotations

import json
from datetime import datetime, timezone

import httpx
import pytest

from streamverse.firestore_client import FirestoreClient, decode_fields, encode_value
from streamverse.models import WATCH_HISTORY, WATCHLATER, DocumentNotFound, ListItem, MediaKind, StoreError

ROOT = "projects/demo/databases/(default)/documents"


def _client(handler) -> FirestoreClient:
    return FirestoreClient("demo", api_key="k3y", token="tok", transport=httpx.MockTransport(handler))


def _doc(doc_id: str, movie_id: int, ts: str) -> dict:
    return {
        "name": f"{ROOT}/users/u1/watchlater/{doc_id}",
        "fields": {
            "movieId": {"integerValue": str(movie_id)},
            "title": {"stringValue": f"Title {movie_id}"},
            "posterPath": {"stringValue": "/p.jpg"},
            "mediaType": {"stringValue": "tv"},
            "addedAt": {"timestampValue": ts},
        },
    }


def test_encode_value_types() -> None:
    assert encode_value(True) == {"booleanValue": True}
    assert encode_value(3) == {"integerValue": "3"}
    assert encode_value(2.5) == {"doubleValue": 2.5}
    assert encode_value(None) == {"nullValue": None}
    assert encode_value("x") == {"stringValue": "x"}
    assert encode_value(datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)) == {"timestampValue": "2024-05-01T12:00:00Z"}
    assert encode_value({"theme": "dark"}) == {"mapValue": {"fields": {"theme": {"stringValue": "dark"}}}}


def test_decode_nested_settings() -> None:
    fields = {
        "settings": {
            "mapValue": {
                "fields": {
                    "theme": {"stringValue": "dark"},
                    "autoplay": {"booleanValue": False},
                }
            }
        },
        "tags": {"arrayValue": {"values": [{"stringValue": "a"}, {"integerValue": "2"}]}},
    }
    assert decode_fields(fields) == {"settings": {"theme": "dark", "autoplay": False}, "tags": ["a", 2]}


@pytest.mark.asyncio
async def test_query_items_orders_by_timestamp() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = request.url
        seen["auth"] = request.headers.get("Authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json=[
                {"document": _doc("a1", 10, "2024-05-02T00:00:00Z"), "readTime": "x"},
                {"document": _doc("a2", 11, "2024-05-01T00:00:00Z"), "readTime": "x"},
            ],
        )

    items = await _client(handler).query_items("u1", WATCHLATER)

    assert [it.id for it in items] == ["a1", "a2"]
    assert items[0].movie_id == 10
    assert items[0].media_type is MediaKind.SERIES
    assert items[0].added_at == datetime(2024, 5, 2, tzinfo=timezone.utc)
    assert seen["url"].host == "firestore.googleapis.com"
    assert seen["url"].path == f"/v1/{ROOT}/users/u1:runQuery"
    assert seen["url"].params.get("key") == "k3y"
    assert seen["auth"] == "Bearer tok"
    query = seen["body"]["structuredQuery"]
    assert query["from"] == [{"collectionId": "watchlater"}]
    assert query["orderBy"] == [{"field": {"fieldPath": "addedAt"}, "direction": "DESCENDING"}]


@pytest.mark.asyncio
async def test_history_query_uses_watched_at_and_limit() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=[{"readTime": "x"}])

    items = await _client(handler).query_items("u1", WATCH_HISTORY, limit=20)

    assert items == []
    query = seen["body"]["structuredQuery"]
    assert query["orderBy"][0]["field"]["fieldPath"] == "watchedAt"
    assert query["limit"] == 20


@pytest.mark.asyncio
async def test_has_movie_filters_on_movie_id() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=[{"document": _doc("a1", 42, "2024-05-02T00:00:00Z")}])

    assert await _client(handler).has_movie("u1", WATCHLATER, 42) is True
    where = seen["body"]["structuredQuery"]["where"]["fieldFilter"]
    assert where == {"field": {"fieldPath": "movieId"}, "op": "EQUAL", "value": {"integerValue": "42"}}
    assert seen["body"]["structuredQuery"]["limit"] == 1


@pytest.mark.asyncio
async def test_create_item_returns_document_id() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"name": f"{ROOT}/users/u1/watchlater/newDoc"})

    item = ListItem(id="", movie_id=42, title="X", added_at=datetime(2024, 5, 1, tzinfo=timezone.utc))
    doc_id = await _client(handler).create_item("u1", WATCHLATER, item)

    assert doc_id == "newDoc"
    assert seen["method"] == "POST"
    assert seen["path"].endswith("/users/u1/watchlater")
    fields = seen["body"]["fields"]
    assert fields["movieId"] == {"integerValue": "42"}
    assert fields["addedAt"] == {"timestampValue": "2024-05-01T00:00:00Z"}
    assert fields["mediaType"] == {"stringValue": "movie"}


@pytest.mark.asyncio
async def test_server_error_raises_store_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, json={"error": {"status": "UNAVAILABLE"}})

    with pytest.raises(StoreError):
        await _client(handler).query_items("u1", WATCHLATER)


@pytest.mark.asyncio
async def test_non_json_body_raises_store_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>captive portal</html>")

    client = _client(handler)
    with pytest.raises(StoreError):
        await client.query_items("u1", WATCHLATER)
    with pytest.raises(StoreError):
        await client.create_item("u1", WATCHLATER, ListItem(id="", movie_id=1, title="One"))
    with pytest.raises(StoreError):
        await client.get_user("u1")
    with pytest.raises(StoreError):
        await client.delete_all("u1", WATCH_HISTORY)


@pytest.mark.asyncio
async def test_transport_error_raises_store_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("offline", request=request)

    with pytest.raises(StoreError):
        await _client(handler).delete_item("u1", WATCHLATER, "a1")


@pytest.mark.asyncio
async def test_get_missing_user_returns_none_and_update_requires_existing() -> None:
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(404, json={"error": {"status": "NOT_FOUND"}})

    client = _client(handler)
    assert await client.get_user("u1") is None
    with pytest.raises(DocumentNotFound):
        await client.update_user("u1", {"name": "New"})
    params = seen[-1].url.params
    assert params.get_list("updateMask.fieldPaths") == ["name"]
    assert params.get("currentDocument.exists") == "true"


@pytest.mark.asyncio
async def test_delete_all_pages_and_commits() -> None:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        if request.method == "GET":
            if request.url.params.get("pageToken") == "next":
                return httpx.Response(200, json={"documents": [{"name": f"{ROOT}/users/u1/watchHistory/h3"}]})
            return httpx.Response(
                200,
                json={
                    "documents": [
                        {"name": f"{ROOT}/users/u1/watchHistory/h1"},
                        {"name": f"{ROOT}/users/u1/watchHistory/h2"},
                    ],
                    "nextPageToken": "next",
                },
            )
        return httpx.Response(200, json={"writeResults": []})

    removed = await _client(handler).delete_all("u1", WATCH_HISTORY)

    assert removed == 3
    commit = calls[-1]
    assert commit.url.path.endswith("/documents:commit")
    writes = json.loads(commit.content)["writes"]
    assert [w["delete"].rsplit("/", 1)[-1] for w in writes] == ["h1", "h2", "h3"]
