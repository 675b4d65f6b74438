from __future__ import annotations

import secrets
from dataclasses import dataclass
from typing import Optional

from roomgate.logging import get_logger
from roomgate.service.errors import (
    ConflictError,
    InvalidSessionError,
    NotFoundError,
    UnknownError,
    ValidationError,
)
from roomgate.service.sessions import SessionService
from roomgate.storage.memory import MemoryStore
from roomgate.storage.models import RemoteSessionProfile, RoomHash, Session, utcnow
from roomgate.storage.redis_cache import RedisCache

logger = get_logger(__name__)


@dataclass
class RoomOptions:
    room_id: int
    moderator: bool = False
    show_audio_video_test: bool = False
    allow_same_url_multiple_times: bool = False
    recording_id: Optional[int] = None
    allow_recording: bool = False


@dataclass
class RoomEntry:
    """What the room side receives when a hash is redeemed."""

    room_id: int
    user_id: int
    moderator: bool
    show_audio_video_test: bool
    allow_recording: bool
    recording_id: Optional[int]
    reusable: bool
    profile: Optional[RemoteSessionProfile]


class RoomHashRegistry:
    """Records hash bindings in Redis when available, else in the memory store.

    Single-use records expire with the session TTL; reusable ones live
    until their session is removed.
    """

    def __init__(
        self,
        store: MemoryStore,
        cache: Optional[RedisCache] = None,
        *,
        ttl_seconds: int = 900,
    ) -> None:
        self.store = store
        self.cache = cache
        self.ttl_seconds = ttl_seconds

    async def add(self, session: Session, options: RoomOptions) -> Optional[str]:
        room = self.store.get_room(options.room_id)
        if room is None or room.closed:
            logger.warning("room_hash_rejected", room_id=options.room_id)
            return None
        record = RoomHash(
            hash=secrets.token_urlsafe(32),
            session_id=session.id,
            room_id=room.id,
            moderator=options.moderator,
            show_audio_video_test=options.show_audio_video_test,
            allow_same_url_multiple_times=options.allow_same_url_multiple_times,
            recording_id=options.recording_id,
            allow_recording=options.allow_recording,
        )
        if self.cache:
            ttl = None if record.allow_same_url_multiple_times else self.ttl_seconds
            await self.cache.save_room_hash(record, ttl)
        else:
            self.store.save_room_hash(record)
        return record.hash

    async def get(self, token: str) -> Optional[RoomHash]:
        if self.cache:
            return await self.cache.get_room_hash(token)
        return self.store.get_room_hash(token)

    async def save(self, record: RoomHash) -> None:
        if self.cache:
            await self.cache.update_room_hash(record)
        else:
            self.store.save_room_hash(record)

    async def forget_session(self, session_id: str) -> None:
        # The memory store drops its own records together with the session
        if self.cache:
            await self.cache.forget_session_hashes(session_id)


class RoomHashService:
    def __init__(self, sessions: SessionService, registry: RoomHashRegistry) -> None:
        self.sessions = sessions
        self.registry = registry

    async def issue(
        self,
        session: Session,
        profile: RemoteSessionProfile,
        options: RoomOptions,
    ) -> str:
        """Bind the session to a room and return the hash for it.

        Must run while the caller holds the session lock so that the
        permanent flag and the profile land in one update.
        """
        if options.room_id is None or options.room_id <= 0:
            raise ValidationError("room id must be a positive number")
        if options.recording_id is not None and options.recording_id <= 0:
            raise ValidationError("recording id must be a positive number")
        token = await self.registry.add(session, options)
        if not token:
            raise UnknownError()
        if options.allow_same_url_multiple_times:
            session.permanent = True
        session.profile = profile
        self.sessions.update(session)
        logger.info(
            "room_hash_issued",
            session_id=session.id,
            room_id=options.room_id,
            permanent=session.permanent,
        )
        return token

    async def redeem(self, token: str) -> RoomEntry:
        record = await self.registry.get(token) if token else None
        if record is None:
            raise NotFoundError("room hash not found")
        async with self.sessions.lock(record.session_id):
            record = await self.registry.get(token)
            if record is None:
                raise NotFoundError("room hash not found")
            if record.used and not record.allow_same_url_multiple_times:
                raise ConflictError("room hash already used")
            session = self.sessions.get(record.session_id)
            if session is None:
                raise InvalidSessionError()
            if not record.allow_same_url_multiple_times:
                record.used = True
                record.used_at = utcnow()
                await self.registry.save(record)
            self.sessions.touch(session)
        logger.info("room_hash_redeemed", session_id=session.id, room_id=record.room_id)
        return RoomEntry(
            room_id=record.room_id,
            user_id=session.user_id,
            moderator=record.moderator,
            show_audio_video_test=record.show_audio_video_test,
            allow_recording=record.allow_recording,
            recording_id=record.recording_id,
            reusable=record.allow_same_url_multiple_times,
            profile=session.profile,
        )
