from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Union


WATCHLATER = "watchlater"
WATCH_HISTORY = "watchHistory"

# Timestamp field each collection is ordered by.
TIMESTAMP_FIELDS = {
    WATCHLATER: "addedAt",
    WATCH_HISTORY: "watchedAt",
}


class StoreError(Exception):
    """Raised when the remote document store cannot serve a request."""


class DocumentNotFound(StoreError):
    pass


class UserNotFound(StoreError):
    pass


class MediaKind(str, Enum):
    MOVIE = "movie"
    SERIES = "tv"

    @classmethod
    def parse(cls, value: Any) -> "MediaKind":
        raw = str(value or "").strip().lower()
        if raw in ("tv", "series", "show"):
            return cls.SERIES
        return cls.MOVIE


def utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def _as_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(float(value), tz=timezone.utc)
    if isinstance(value, str) and value:
        try:
            return _as_datetime(datetime.fromisoformat(value.replace("Z", "+00:00")))
        except ValueError:
            pass
    return utcnow()


@dataclass
class ListItem:
    """One saved or watched title in a user's personal list."""

    id: str
    movie_id: int
    title: str
    poster_path: str = ""
    media_type: MediaKind = MediaKind.MOVIE
    added_at: datetime = field(default_factory=utcnow)
    progress: Optional[float] = None

    def to_fields(self, timestamp_field: str = "addedAt") -> Dict[str, Any]:
        """Document fields as stored remotely (the id lives in the document name)."""
        data: Dict[str, Any] = {
            "movieId": int(self.movie_id),
            "title": self.title,
            "posterPath": self.poster_path,
            "mediaType": self.media_type.value,
            timestamp_field: self.added_at,
        }
        if self.progress is not None:
            data["progress"] = self.progress
        return data

    def to_dict(self, timestamp_field: str = "addedAt") -> Dict[str, Any]:
        data = self.to_fields(timestamp_field)
        data["id"] = self.id
        data[timestamp_field] = self.added_at.isoformat()
        return data

    @classmethod
    def from_fields(cls, doc_id: str, data: Dict[str, Any], timestamp_field: str = "addedAt") -> "ListItem":
        progress = data.get("progress")
        return cls(
            id=str(doc_id),
            movie_id=int(data.get("movieId") or 0),
            title=str(data.get("title") or ""),
            poster_path=str(data.get("posterPath") or ""),
            media_type=MediaKind.parse(data.get("mediaType")),
            added_at=_as_datetime(data.get(timestamp_field)),
            progress=float(progress) if progress is not None else None,
        )


@dataclass(frozen=True)
class Confirmed:
    """A list item as last read back from the remote store."""

    item: ListItem
    pending = False


@dataclass(frozen=True)
class Pending:
    """A list item written remotely but only known locally so far."""

    item: ListItem
    pending = True


CachedItem = Union[Confirmed, Pending]


@dataclass
class Show:
    """Catalog entry as handed over by the browsing UI (TMDB field names)."""

    id: int
    title: str = ""
    name: str = ""
    poster_path: str = ""
    backdrop_path: str = ""
    media_type: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Show":
        return cls(
            id=int(data.get("id") or 0),
            title=str(data.get("title") or ""),
            name=str(data.get("name") or ""),
            poster_path=str(data.get("poster_path") or ""),
            backdrop_path=str(data.get("backdrop_path") or ""),
            media_type=str(data.get("media_type") or ""),
        )

    def to_list_item(self) -> ListItem:
        return ListItem(
            id="",
            movie_id=int(self.id),
            title=self.title or self.name or "Unknown",
            poster_path=self.poster_path or self.backdrop_path or "",
            media_type=MediaKind.parse(self.media_type or "movie"),
        )


@dataclass(frozen=True)
class Identity:
    """Signed-in user as reported by the identity provider."""

    id: str
    email: str = ""
    name: str = ""
    photo_url: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Identity":
        return cls(
            id=str(data.get("id") or "").strip(),
            email=str(data.get("email") or "").strip(),
            name=str(data.get("name") or "").strip(),
            photo_url=str(data.get("photoURL") or data.get("photo_url") or "").strip(),
        )


THEMES = ("light", "dark", "system")


@dataclass
class UserSettings:
    theme: str = "system"
    email_notifications: bool = True
    autoplay: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "theme": self.theme,
            "emailNotifications": self.email_notifications,
            "autoplay": self.autoplay,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "UserSettings":
        data = data or {}
        theme = str(data.get("theme") or "system")
        return cls(
            theme=theme if theme in THEMES else "system",
            email_notifications=bool(data.get("emailNotifications", True)),
            autoplay=bool(data.get("autoplay", True)),
        )

    def merged(self, partial: Dict[str, Any]) -> "UserSettings":
        merged = self.to_dict()
        merged.update({k: v for k, v in (partial or {}).items() if k in merged})
        return UserSettings.from_dict(merged)


class ListStore(Protocol):
    """Per-user document store holding list collections and the user document."""

    async def query_items(
        self, user_id: str, collection: str, limit: Optional[int] = None
    ) -> List[ListItem]: ...

    async def has_movie(self, user_id: str, collection: str, movie_id: int) -> bool: ...

    async def create_item(self, user_id: str, collection: str, item: ListItem) -> str: ...

    async def delete_item(self, user_id: str, collection: str, item_id: str) -> None: ...

    async def update_item(self, user_id: str, collection: str, item_id: str, data: Dict[str, Any]) -> None: ...

    async def delete_all(self, user_id: str, collection: str) -> int: ...

    async def get_user(self, user_id: str) -> Optional[Dict[str, Any]]: ...

    async def set_user(self, user_id: str, data: Dict[str, Any]) -> None: ...

    async def update_user(self, user_id: str, data: Dict[str, Any]) -> None: ...


def with_id(item: ListItem, item_id: str) -> ListItem:
    return replace(item, id=item_id)
