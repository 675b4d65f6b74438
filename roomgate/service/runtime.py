from __future__ import annotations

import asyncio
import threading
from typing import Optional
from urllib.parse import urlsplit

from roomgate.config import Settings, get_settings, reset_settings_cache
from roomgate.logging import get_logger
from roomgate.service.auth import AuthService
from roomgate.service.clients import ClientRegistry
from roomgate.service.gate import RightsGate
from roomgate.service.password_policy import StrongPasswordPolicy
from roomgate.service.provisioning import ConfirmationNotifier, UserProvisioner
from roomgate.service.room_hash import RoomHashRegistry, RoomHashService
from roomgate.service.sessions import SessionService
from roomgate.service.user_service import UserWebService
from roomgate.storage.memory import MemoryStore
from roomgate.storage.redis_cache import RedisCache

logger = get_logger(__name__)


def _redis_target(url: Optional[str]) -> Optional[str]:
    """``scheme://host:port/db`` of a Redis URL, without credentials."""
    if not url:
        return url
    try:
        parts = urlsplit(url)
        host = parts.hostname or ""
        port = f":{parts.port}" if parts.port else ""
    except ValueError:
        return "<unparseable redis url>"
    return f"{parts.scheme}://{host}{port}{parts.path}"


def _connect_cache(settings: Settings) -> Optional[RedisCache]:
    """Return a verified Redis cache, or None when running without one is allowed."""
    failure: Optional[Exception] = None
    if settings.redis_url:
        try:
            cache = RedisCache(settings.redis_url)
            cache.verify_connection()
            return cache
        except Exception as exc:
            failure = exc

    if not (settings.test_mode or settings.allow_redis_fallback_dev):
        raise RuntimeError(
            "Redis is required for room hash records; start Redis or set "
            "TEST_MODE=true / ALLOW_REDIS_FALLBACK_DEV=true to keep them in memory."
        ) from failure

    logger.warning(
        "redis_disabled_fallback",
        redis_target=_redis_target(settings.redis_url),
        reason=type(failure).__name__ if failure else "redis_url_missing",
        mode="TEST_MODE" if settings.test_mode else "ALLOW_REDIS_FALLBACK_DEV",
    )
    return None


class Runtime:
    """Wires the store, the optional cache and every gateway service."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.store = MemoryStore(fs_root=self.settings.shared_fs_root)
        self.cache = _connect_cache(self.settings)

        self.sessions = SessionService(self.store, self.settings)
        self.auth = AuthService(self.store, self.sessions, self.settings)
        self.gate = RightsGate(self.sessions, self.store)
        self.provisioner = UserProvisioner(
            self.store,
            self.auth,
            StrongPasswordPolicy(self.settings.password_min_length),
            self.settings,
            notifier=ConfirmationNotifier(),
        )
        self.room_hash_registry = RoomHashRegistry(
            self.store,
            self.cache,
            ttl_seconds=self.settings.session_ttl_minutes * 60,
        )
        # Hashes of a removed session must not outlive it
        self.sessions.add_removal_hook(self.room_hash_registry.forget_session)
        self.room_hashes = RoomHashService(self.sessions, self.room_hash_registry)
        self.clients = ClientRegistry()
        self.users = UserWebService(
            self.store,
            self.sessions,
            self.auth,
            self.gate,
            self.provisioner,
            self.room_hashes,
            self.clients,
        )

        logger.info(
            "runtime_initialized",
            fs_root=self.settings.shared_fs_root,
            redis_enabled=self.cache is not None,
            session_ttl_minutes=self.settings.session_ttl_minutes,
        )


runtime: Runtime | None = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests() -> Runtime:
    """Rebuild the runtime from a freshly read environment (TEST_MODE only)."""
    global runtime

    with _runtime_lock:
        if runtime is not None and runtime.cache is not None:
            try:
                asyncio.get_running_loop().create_task(runtime.cache.close())
            except RuntimeError:
                asyncio.run(runtime.cache.close())

        reset_settings_cache()
        settings = get_settings()
        if not settings.test_mode:
            raise RuntimeError("runtime reset is only allowed in TEST_MODE")
        runtime = Runtime(settings)
        return runtime
