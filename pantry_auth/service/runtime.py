from __future__ import annotations

import threading
from typing import Optional, Union
from urllib.parse import urlparse, urlunparse

from pantry_auth.config import Settings, get_settings, reset_settings_cache
from pantry_auth.logging import get_logger
from pantry_auth.service.auth import AuthService
from pantry_auth.service.guard import AuthorizationGuard
from pantry_auth.service.passwords import CredentialHasher
from pantry_auth.service.sessions import SessionManager
from pantry_auth.service.tokens import TokenCodec
from pantry_auth.storage.memory import MemoryStore
from pantry_auth.storage.postgres import PostgresStore

logger = get_logger(__name__)


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Mask the password component of a DSN for logging."""
    if not url:
        return url
    parsed = urlparse(url)
    if not parsed.password:
        return url
    netloc = parsed.hostname or ""
    if parsed.port:
        netloc = f"{netloc}:{parsed.port}"
    if parsed.username:
        netloc = f"{parsed.username}:***@{netloc}"
    else:
        netloc = f":***@{netloc}"
    return urlunparse(parsed._replace(netloc=netloc))


class Runtime:
    """Holds the wired service instances for the FastAPI app."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.store: Union[MemoryStore, PostgresStore]
        if self.settings.use_memory_store:
            self.store = MemoryStore()
        else:
            logger.info(
                "postgres_store_connecting",
                database_url=_mask_url_password(self.settings.database_url),
            )
            self.store = PostgresStore(self.settings.database_url)
        self.hasher = CredentialHasher(self.settings)
        self.codec = TokenCodec(self.settings)
        self.sessions = SessionManager(
            self.codec, self.store, self.store, self.settings
        )
        self.guard = AuthorizationGuard(self.codec)
        self.auth = AuthService(self.store, self.hasher, self.sessions)
        logger.info(
            "runtime_initialized",
            store=type(self.store).__name__,
        )

    def close(self) -> None:
        if isinstance(self.store, PostgresStore):
            self.store.close()


runtime: Optional[Runtime] = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Get or create the Runtime with double-checked locking."""
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests() -> Runtime:
    """Rebuild the runtime from a freshly read environment."""
    global runtime
    with _runtime_lock:
        if runtime is not None:
            runtime.close()
        reset_settings_cache()
        runtime = Runtime()
        return runtime
