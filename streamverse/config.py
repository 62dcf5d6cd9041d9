from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional


def _env(env: Mapping[str, str], name: str, default: str = "") -> str:
    return str(env.get(name, default) or default).strip()


@dataclass
class Settings:
    store_backend: str = "sqlite"
    store_path: str = "data/streamverse.db"
    firestore_project: str = ""
    firestore_api_key: str = ""
    firestore_token: str = ""
    firestore_timeout: float = 30.0
    watchlist_ttl_ms: int = 2 * 60 * 1000
    history_limit: int = 20
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if env is None else env
        return cls(
            store_backend=_env(env, "STORE_BACKEND", "sqlite").lower(),
            store_path=_env(env, "STORE_PATH", "data/streamverse.db"),
            firestore_project=_env(env, "FIRESTORE_PROJECT"),
            firestore_api_key=_env(env, "FIRESTORE_API_KEY"),
            firestore_token=_env(env, "FIRESTORE_TOKEN"),
            firestore_timeout=float(_env(env, "FIRESTORE_TIMEOUT", "30")),
            watchlist_ttl_ms=int(_env(env, "WATCHLIST_TTL_MS", "120000")),
            history_limit=int(_env(env, "HISTORY_LIMIT", "20")),
            log_level=_env(env, "LOG_LEVEL", "INFO").upper(),
        )

    def validate(self) -> None:
        if self.store_backend not in ("sqlite", "firestore"):
            raise RuntimeError(f"Unsupported STORE_BACKEND: {self.store_backend}")
        if self.store_backend == "firestore" and not self.firestore_project:
            raise RuntimeError("Missing required env var: FIRESTORE_PROJECT")
