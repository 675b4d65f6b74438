from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from roomgate.logging import get_logger
from roomgate.storage.models import utcnow

logger = get_logger(__name__)


@dataclass
class Client:
    """A participant connection as seen by the conferencing runtime."""

    public_id: str
    user_id: int
    room_id: Optional[int] = None
    connected_at: datetime = field(default_factory=utcnow)


class ClientRegistry:
    """Connected clients, indexed by public id."""

    def __init__(self) -> None:
        self._clients: Dict[str, Client] = {}
        self._lock = threading.Lock()

    def register(self, client: Client) -> Client:
        with self._lock:
            self._clients[client.public_id] = client
        logger.info("client_registered", public_id=client.public_id, room_id=client.room_id)
        return client

    def get(self, public_id: str) -> Optional[Client]:
        with self._lock:
            return self._clients.get(public_id)

    def list_by_room(self, room_id: int) -> List[Client]:
        with self._lock:
            return [c for c in self._clients.values() if c.room_id == room_id]

    def kick(self, public_id: str) -> bool:
        with self._lock:
            client = self._clients.pop(public_id, None)
        if client is None:
            logger.info("client_kick_missed", public_id=public_id)
            return False
        logger.info("client_kicked", public_id=public_id, room_id=client.room_id)
        return True
