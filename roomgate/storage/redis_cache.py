from __future__ import annotations

import json
from typing import List, Optional

import redis.asyncio as aioredis
from redis import Redis

from roomgate.storage.models import RoomHash


class RedisCache:
    """Thin Redis wrapper for room hash records."""

    DEFAULT_OPERATION_TIMEOUT = 5.0

    def __init__(self, redis_url: str, *, socket_timeout: float = 5.0, client=None):
        self.redis_url = redis_url
        self.client = client or aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )

    def verify_connection(self) -> None:
        """Assert Redis connectivity before enabling dependent features."""
        # Short-lived sync client so the async pool is not bound to a startup loop
        sync_client = Redis.from_url(self.redis_url, decode_responses=True)
        try:
            sync_client.ping()
        finally:
            sync_client.close()

    @staticmethod
    def _hash_key(token: str) -> str:
        return f"room_hash:{token}"

    @staticmethod
    def _session_key(session_id: str) -> str:
        return f"room_hash_session:{session_id}"

    async def save_room_hash(
        self, record: RoomHash, ttl_seconds: Optional[int] = None
    ) -> None:
        """Store a hash record; ``ttl_seconds=None`` keeps it until its session goes."""
        ex = max(1, int(ttl_seconds)) if ttl_seconds is not None else None
        await self.client.set(
            self._hash_key(record.hash), json.dumps(record.to_dict()), ex=ex
        )
        await self.client.sadd(self._session_key(record.session_id), record.hash)

    async def get_room_hash(self, token: str) -> Optional[RoomHash]:
        cached = await self.client.get(self._hash_key(token))
        if not cached:
            return None
        try:
            return RoomHash.from_dict(json.loads(cached))
        except (json.JSONDecodeError, TypeError, KeyError, ValueError):
            # Corrupted cache entry - treat as cache miss
            return None

    async def update_room_hash(self, record: RoomHash) -> None:
        """Rewrite a record in place without resetting its remaining TTL."""
        await self.client.set(
            self._hash_key(record.hash), json.dumps(record.to_dict()), keepttl=True
        )

    async def forget_session_hashes(self, session_id: str) -> List[str]:
        key = self._session_key(session_id)
        tokens = sorted(await self.client.smembers(key) or [])
        for token in tokens:
            await self.client.delete(self._hash_key(token))
        await self.client.delete(key)
        return tokens

    async def close(self) -> None:
        """Close Redis connection pool. Call when shutting down or resetting runtime."""
        await self.client.close()
        await self.client.connection_pool.disconnect()
