from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import AsyncIterator, Awaitable, Callable, Dict, List, Optional, Protocol

from roomgate.config import Settings
from roomgate.logging import get_logger
from roomgate.storage.models import Session, utcnow

logger = get_logger(__name__)


class SessionStore(Protocol):
    def create_session(self, user_id: int, language_id: int = 1) -> Session: ...

    def get_session(self, session_id: str) -> Optional[Session]: ...

    def upsert_session(self, session: Session) -> Session: ...

    def delete_session(self, session_id: str) -> bool: ...

    def list_sessions(self) -> List[Session]: ...


class KeyedLocks:
    """Per-key asyncio locks, dropped once nobody holds or waits on them."""

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}
        self._refs: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._refs[key] = self._refs.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._refs[key] -= 1
            if self._refs[key] == 0:
                self._refs.pop(key, None)
                self._locks.pop(key, None)

    def locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return bool(lock and lock.locked())

    def __len__(self) -> int:
        return len(self._locks)


RemovalHook = Callable[[str], Awaitable[object]]


class SessionService:
    """Creates, resolves and expires gateway sessions.

    A session that is not permanent expires once ``session_ttl_minutes``
    have passed since ``touched_at``. ``touched_at`` starts at creation and
    only moves when a room hash issued against the session is redeemed.
    """

    def __init__(self, store: SessionStore, settings: Settings) -> None:
        self.store = store
        self.settings = settings
        self.ttl = timedelta(minutes=settings.session_ttl_minutes)
        self._locks = KeyedLocks()
        self._removal_hooks: List[RemovalHook] = []

    def add_removal_hook(self, hook: RemovalHook) -> None:
        self._removal_hooks.append(hook)

    def lock(self, session_id: str):
        """Serialize work on one session id; other sessions are unaffected."""
        return self._locks.hold(session_id)

    def create(self, user_id: int, language_id: int = 1) -> Session:
        session = self.store.create_session(user_id, language_id)
        logger.info("session_created", user_id=user_id, session_id=session.id)
        return session

    def is_expired(self, session: Session, now: Optional[datetime] = None) -> bool:
        if session.permanent:
            return False
        now = now or utcnow()
        return now - session.touched_at >= self.ttl

    def get(self, session_id: str) -> Optional[Session]:
        """Return the session, or None when it is unknown or expired."""
        if not session_id:
            return None
        session = self.store.get_session(session_id)
        if session is None or self.is_expired(session):
            return None
        return session

    def update(self, session: Session) -> Session:
        return self.store.upsert_session(session)

    def touch(self, session: Session) -> Session:
        session.touched_at = utcnow()
        return self.store.upsert_session(session)

    async def remove(self, session_id: str) -> bool:
        removed = self.store.delete_session(session_id)
        for hook in self._removal_hooks:
            await hook(session_id)
        if removed:
            logger.info("session_removed", session_id=session_id)
        return removed

    async def sweep_expired(self, now: Optional[datetime] = None) -> int:
        """Remove expired sessions that no call is currently working on."""
        swept = 0
        for candidate in self.store.list_sessions():
            if not self.is_expired(candidate, now) or self._locks.locked(candidate.id):
                continue
            async with self.lock(candidate.id):
                current = self.store.get_session(candidate.id)
                if current is None or not self.is_expired(current, now):
                    continue
                await self.remove(candidate.id)
                swept += 1
        if swept:
            logger.info("sessions_swept", count=swept)
        return swept

    async def run_sweeper(self, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                await self.sweep_expired()
            except Exception:
                logger.exception("session_sweep_failed")
