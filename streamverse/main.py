from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import Body, FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from streamverse.config import Settings
from streamverse.db import DocumentStore
from streamverse.firestore_client import FirestoreClient
from streamverse.models import (
    TIMESTAMP_FIELDS,
    WATCH_HISTORY,
    WATCHLATER,
    DocumentNotFound,
    Identity,
    ListItem,
    ListStore,
    MediaKind,
    Show,
    StoreError,
    UserNotFound,
)
from streamverse.store import ListCache
from streamverse.toggle import WatchLaterToggle
from streamverse.user_service import UserService


logger = logging.getLogger("streamverse")


def build_store(settings: Settings) -> ListStore:
    settings.validate()
    if settings.store_backend == "firestore":
        return FirestoreClient(
            settings.firestore_project,
            api_key=settings.firestore_api_key,
            token=settings.firestore_token,
            timeout=settings.firestore_timeout,
        )
    return DocumentStore(settings.store_path)


def _item_from_payload(payload: Dict[str, Any]) -> Optional[ListItem]:
    """Build a ListItem from a request body; None without a usable movie id.

    Raises ValueError when progress is present but not a number.
    """
    try:
        movie_id = int(payload.get("movieId") or payload.get("id") or 0)
    except (TypeError, ValueError):
        return None
    if not movie_id:
        return None
    progress = payload.get("progress")
    if progress is not None:
        try:
            progress = float(progress)
        except (TypeError, ValueError) as exc:
            raise ValueError("progress must be a number") from exc
    return ListItem(
        id="",
        movie_id=movie_id,
        title=str(payload.get("title") or payload.get("name") or "Unknown"),
        poster_path=str(payload.get("posterPath") or payload.get("poster_path") or ""),
        media_type=MediaKind.parse(payload.get("mediaType") or payload.get("media_type") or "movie"),
        progress=progress,
    )


def create_app(settings: Optional[Settings] = None, remote: Optional[ListStore] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    logger.setLevel(settings.log_level)
    remote = remote if remote is not None else build_store(settings)

    # One cache per process lifetime, torn down on shutdown.
    watchlist = ListCache(remote, WATCHLATER, ttl_ms=settings.watchlist_ttl_ms)
    users = UserService(remote, watchlist, history_limit=settings.history_limit)

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        yield
        await users.close()

    app = FastAPI(title="Streamverse", lifespan=lifespan)
    app.state.settings = settings
    app.state.users = users

    @app.exception_handler(StoreError)
    async def _store_error(_request: Request, exc: StoreError):
        if isinstance(exc, UserNotFound):
            return JSONResponse({"ok": False, "error": "user_not_found"}, status_code=404)
        if isinstance(exc, DocumentNotFound):
            return JSONResponse({"ok": False, "error": "not_found"}, status_code=404)
        logger.warning("Store request failed: %s", exc)
        return JSONResponse({"ok": False, "error": "store_unavailable"}, status_code=502)

    @app.get("/api/user/{user_id}/watchlater")
    async def api_watchlater(user_id: str, force: bool = False):
        items = await users.get_watchlist(user_id, force_refresh=force)
        return JSONResponse({"items": [it.to_dict() for it in items]})

    @app.post("/api/user/{user_id}/watchlater")
    async def api_watchlater_add(user_id: str, payload: Dict[str, Any] = Body(...)):
        try:
            item = _item_from_payload(payload)
        except ValueError:
            return JSONResponse({"ok": False, "error": "invalid_progress"}, status_code=400)
        if item is None:
            return JSONResponse({"ok": False, "error": "missing_movie_id"}, status_code=400)
        pending = await users.add_to_watchlist(user_id, item)
        return JSONResponse({"ok": True, "id": pending.item.id, "item": pending.item.to_dict()})

    @app.delete("/api/user/{user_id}/watchlater/{item_id}")
    async def api_watchlater_remove(user_id: str, item_id: str):
        await users.remove_from_watchlist(user_id, item_id)
        return JSONResponse({"ok": True})

    @app.post("/api/user/{user_id}/watchlater/refresh")
    async def api_watchlater_refresh(user_id: str):
        items = await users.refresh_watchlist(user_id)
        return JSONResponse({"ok": True, "items": [it.to_dict() for it in items]})

    @app.post("/api/user/{user_id}/watchlater/preload")
    async def api_watchlater_preload(user_id: str):
        users.preload_watchlist(user_id)
        return JSONResponse({"ok": True})

    @app.get("/api/user/{user_id}/watchlater/contains/{movie_id}")
    async def api_watchlater_contains(user_id: str, movie_id: int, verify: bool = False):
        found = await users.is_in_watchlist(user_id, movie_id, verify=verify)
        return JSONResponse({"inWatchlist": found})

    @app.post("/api/user/{user_id}/watchlater/toggle")
    async def api_watchlater_toggle(user_id: str, payload: Dict[str, Any] = Body(...)):
        """Flip Watch Later membership for a show starting from the displayed state."""
        show_data = payload.get("show") or {}
        try:
            show = Show.from_dict(show_data)
        except (AttributeError, TypeError, ValueError):
            return JSONResponse({"ok": False, "error": "invalid_show"}, status_code=400)
        if not show.id:
            return JSONResponse({"ok": False, "error": "missing_show"}, status_code=400)
        identity = Identity.from_dict({**(payload.get("identity") or {}), "id": user_id})
        toggle = WatchLaterToggle(users, identity, show, in_watchlist=bool(payload.get("inWatchlist", False)))
        state = await toggle.toggle()
        return JSONResponse(
            {
                "inWatchlist": state,
                "notifications": [n.to_dict() for n in toggle.notifications],
            }
        )

    @app.get("/api/user/{user_id}/history")
    async def api_history(user_id: str, limit: Optional[int] = None):
        items = await users.get_watch_history(user_id, limit=limit)
        watched_at = TIMESTAMP_FIELDS[WATCH_HISTORY]
        return JSONResponse({"items": [it.to_dict(watched_at) for it in items]})

    @app.post("/api/user/{user_id}/history")
    async def api_history_add(user_id: str, payload: Dict[str, Any] = Body(...)):
        try:
            item = _item_from_payload(payload)
            if item is None:
                return JSONResponse({"ok": False, "error": "missing_movie_id"}, status_code=400)
            item_id = await users.add_to_watch_history(user_id, item)
        except ValueError:
            return JSONResponse({"ok": False, "error": "invalid_progress"}, status_code=400)
        return JSONResponse({"ok": True, "id": item_id})

    @app.delete("/api/user/{user_id}/history")
    async def api_history_clear(user_id: str):
        removed = await users.clear_watch_history(user_id)
        return JSONResponse({"ok": True, "removed": removed})

    @app.delete("/api/user/{user_id}/history/{item_id}")
    async def api_history_remove(user_id: str, item_id: str):
        await users.remove_from_watch_history(user_id, item_id)
        return JSONResponse({"ok": True})

    @app.patch("/api/user/{user_id}/history/{item_id}/progress")
    async def api_history_progress(user_id: str, item_id: str, payload: Dict[str, Any] = Body(...)):
        try:
            await users.update_watch_progress(user_id, item_id, payload.get("progress"))
        except (TypeError, ValueError):
            return JSONResponse({"ok": False, "error": "invalid_progress"}, status_code=400)
        return JSONResponse({"ok": True})

    @app.get("/api/user/{user_id}/settings")
    async def api_settings(user_id: str):
        current = await users.get_user_settings(user_id)
        return JSONResponse(current.to_dict())

    @app.patch("/api/user/{user_id}/settings")
    async def api_settings_update(user_id: str, payload: Dict[str, Any] = Body(...)):
        merged = await users.update_user_settings(user_id, payload)
        return JSONResponse({"ok": True, "settings": merged.to_dict()})

    @app.get("/api/user/{user_id}/profile")
    async def api_profile(user_id: str):
        profile = await users.get_user_profile(user_id)
        return JSONResponse(jsonable_encoder({k: v for k, v in profile.items() if k != "settings"}))

    @app.patch("/api/user/{user_id}/profile")
    async def api_profile_update(user_id: str, payload: Dict[str, Any] = Body(...)):
        await users.update_user_profile(user_id, payload)
        return JSONResponse({"ok": True})

    return app


def run() -> None:
    import uvicorn

    logging.basicConfig(level=os.environ.get("LOG_LEVEL", "INFO").upper())
    uvicorn.run(
        create_app(),
        host=os.environ.get("HOST", "0.0.0.0"),
        port=int(os.environ.get("PORT", "8000")),
    )
