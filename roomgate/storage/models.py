from __future__ import annotations

import json
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Set


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Right(str, Enum):
    """Capability flags a user may hold; sessions inherit them from their owner."""

    ADMIN = "administrative"
    SOAP = "service-caller"
    ROOM = "room"
    LOGIN = "login"
    DASHBOARD = "dashboard"


class UserType(str, Enum):
    USER = "user"
    EXTERNAL = "external"


@dataclass
class Address:
    street: Optional[str] = None
    zip: Optional[str] = None
    town: Optional[str] = None
    country: Optional[str] = None
    phone: Optional[str] = None


@dataclass
class User:
    id: int
    login: str
    email: Optional[str] = None
    firstname: Optional[str] = None
    lastname: Optional[str] = None
    language_id: int = 1
    timezone_id: Optional[str] = None
    address: Optional[Address] = None
    external_id: Optional[str] = None
    external_type: Optional[str] = None
    type: UserType = UserType.USER
    rights: Set[Right] = field(default_factory=set)
    deleted: bool = False
    inserted_at: datetime = field(default_factory=utcnow)
    inserted_by: Optional[int] = None
    updated_at: Optional[datetime] = None
    updated_by: Optional[int] = None

    def has_right(self, right: Right) -> bool:
        return right in self.rights

    @property
    def is_external(self) -> bool:
        return bool(self.external_id or self.external_type)


@dataclass
class Group:
    id: int
    name: str
    deleted: bool = False
    inserted_at: datetime = field(default_factory=utcnow)
    inserted_by: Optional[int] = None
    updated_at: Optional[datetime] = None
    updated_by: Optional[int] = None


@dataclass
class GroupUser:
    group_id: int
    user_id: int
    moderator: bool = False
    inserted_at: datetime = field(default_factory=utcnow)


@dataclass
class Room:
    id: int
    name: str
    closed: bool = False
    deleted: bool = False


@dataclass
class RemoteSessionProfile:
    """Identity of an externally authenticated user attached to a session."""

    login: Optional[str] = None
    firstname: Optional[str] = None
    lastname: Optional[str] = None
    picture_url: Optional[str] = None
    email: Optional[str] = None
    external_id: Optional[str] = None
    external_type: Optional[str] = None

    def to_json(self) -> str:
        return json.dumps(asdict(self), sort_keys=True)

    @classmethod
    def from_json(cls, raw: str) -> "RemoteSessionProfile":
        data = json.loads(raw)
        if not isinstance(data, dict):
            raise ValueError("remote session profile must be a JSON object")
        known = {name: data.get(name) for name in cls.__dataclass_fields__}
        return cls(**known)


@dataclass
class Session:
    id: str
    user_id: int
    language_id: int
    created_at: datetime
    touched_at: datetime
    permanent: bool = False
    profile: Optional[RemoteSessionProfile] = None

    @classmethod
    def new(cls, user_id: int, language_id: int = 1) -> "Session":
        now = utcnow()
        return cls(
            id=str(uuid.uuid4()),
            user_id=user_id,
            language_id=language_id,
            created_at=now,
            touched_at=now,
        )


@dataclass
class RoomHash:
    """Binding between an issuing session and the room it grants entry to."""

    hash: str
    session_id: str
    room_id: int
    moderator: bool = False
    show_audio_video_test: bool = False
    allow_same_url_multiple_times: bool = False
    recording_id: Optional[int] = None
    allow_recording: bool = False
    created_at: datetime = field(default_factory=utcnow)
    used: bool = False
    used_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["created_at"] = self.created_at.isoformat()
        data["used_at"] = self.used_at.isoformat() if self.used_at else None
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RoomHash":
        used_at = data.get("used_at")
        return cls(
            hash=data["hash"],
            session_id=data["session_id"],
            room_id=int(data["room_id"]),
            moderator=bool(data.get("moderator", False)),
            show_audio_video_test=bool(data.get("show_audio_video_test", False)),
            allow_same_url_multiple_times=bool(
                data.get("allow_same_url_multiple_times", False)
            ),
            recording_id=data.get("recording_id"),
            allow_recording=bool(data.get("allow_recording", False)),
            created_at=datetime.fromisoformat(data["created_at"]),
            used=bool(data.get("used", False)),
            used_at=datetime.fromisoformat(used_at) if used_at else None,
        )
