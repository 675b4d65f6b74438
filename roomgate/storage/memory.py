from __future__ import annotations

import copy
import json
import threading
from dataclasses import asdict, replace
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from roomgate.logging import get_logger
from roomgate.storage.errors import DuplicateValue, MissingReference
from roomgate.storage.models import (
    Address,
    Group,
    GroupUser,
    RemoteSessionProfile,
    Right,
    Room,
    RoomHash,
    Session,
    User,
    UserType,
    utcnow,
)


class MemoryStore:
    """In-memory user, group, room and session store backed by a JSON state file."""

    def __init__(self, fs_root: str = "/tmp/roomgate") -> None:
        self.logger = get_logger(__name__)
        self.users: Dict[int, User] = {}
        self.credentials: Dict[int, tuple[str, str]] = {}
        self.groups: Dict[int, Group] = {}
        self.group_users: List[GroupUser] = []
        self.rooms: Dict[int, Room] = {}
        self.sessions: Dict[str, Session] = {}
        self.room_hashes: Dict[str, RoomHash] = {}
        self._user_seq: int = 1
        self._group_seq: int = 1
        self._room_seq: int = 1
        # Thread lock for sequence counters
        self._seq_lock = threading.Lock()
        # RLock so nested store calls from the same thread do not deadlock
        self._data_lock = threading.RLock()
        self.fs_root = Path(fs_root)
        self.fs_root.mkdir(parents=True, exist_ok=True)

        if not self._load_state():
            self.default_groups()
            self._persist_state()

    def _state_path(self) -> Path:
        state_dir = self.fs_root / "state"
        state_dir.mkdir(parents=True, exist_ok=True)
        return state_dir / "memory_store.json"

    @staticmethod
    def _serialize_datetime(dt: Optional[datetime]) -> Optional[str]:
        return dt.isoformat() if dt else None

    @staticmethod
    def _deserialize_datetime(raw: Optional[str]) -> Optional[datetime]:
        return datetime.fromisoformat(raw) if raw else None

    def default_groups(self) -> None:
        with self._data_lock:
            if not self.groups:
                self.create_group("default")

    def _next_user_id(self) -> int:
        with self._seq_lock:
            value = self._user_seq
            self._user_seq += 1
            return value

    def _next_group_id(self) -> int:
        with self._seq_lock:
            value = self._group_seq
            self._group_seq += 1
            return value

    def _next_room_id(self) -> int:
        with self._seq_lock:
            value = self._room_seq
            self._room_seq += 1
            return value

    @staticmethod
    def _stamp(entity, actor_id: Optional[int], *, new: bool) -> None:
        now = utcnow()
        if new:
            entity.inserted_at = now
            if actor_id is not None:
                entity.inserted_by = actor_id
        else:
            entity.updated_at = now
            if actor_id is not None:
                entity.updated_by = actor_id

    # users
    def _active_users(self) -> Iterable[User]:
        return (u for u in self.users.values() if not u.deleted)

    def _check_unique(self, user: User) -> None:
        for existing in self._active_users():
            if existing.id == user.id:
                continue
            if existing.login.lower() == user.login.lower():
                raise DuplicateValue("login")
            if (
                user.email
                and existing.email
                and existing.email.lower() == user.email.lower()
            ):
                raise DuplicateValue("email")
            if (
                user.external_id
                and user.external_type
                and existing.external_id == user.external_id
                and existing.external_type == user.external_type
            ):
                raise DuplicateValue("external_id", "external identity already registered")

    def create_user(
        self,
        login: str,
        *,
        email: Optional[str] = None,
        firstname: Optional[str] = None,
        lastname: Optional[str] = None,
        language_id: int = 1,
        timezone_id: Optional[str] = None,
        address: Optional[Address] = None,
        rights: Optional[Iterable[Right]] = None,
        actor_id: Optional[int] = None,
    ) -> User:
        with self._data_lock:
            user = User(
                id=0,
                login=login,
                email=email,
                firstname=firstname,
                lastname=lastname,
                language_id=language_id,
                timezone_id=timezone_id,
                address=copy.deepcopy(address),
                rights=set(rights or ()),
            )
            self._check_unique(user)
            user.id = self._next_user_id()
            self._stamp(user, actor_id, new=True)
            self.users[user.id] = user
            self._persist_state()
            return copy.deepcopy(user)

    def get_user(self, user_id: int, *, include_deleted: bool = False) -> Optional[User]:
        with self._data_lock:
            user = self.users.get(user_id)
            if not user or (user.deleted and not include_deleted):
                return None
            return copy.deepcopy(user)

    def get_user_by_login_or_email(self, identifier: str) -> Optional[User]:
        if not identifier:
            return None
        needle = identifier.lower()
        with self._data_lock:
            active = list(self._active_users())
            match = next((u for u in active if u.login.lower() == needle), None)
            if match is None:
                match = next(
                    (u for u in active if u.email and u.email.lower() == needle), None
                )
            return copy.deepcopy(match) if match else None

    def get_external_user(
        self, external_id: Optional[str], external_type: Optional[str]
    ) -> Optional[User]:
        if not external_id or not external_type:
            return None
        with self._data_lock:
            match = next(
                (
                    u
                    for u in self._active_users()
                    if u.external_id == external_id and u.external_type == external_type
                ),
                None,
            )
            return copy.deepcopy(match) if match else None

    def list_users(self) -> List[User]:
        with self._data_lock:
            return [copy.deepcopy(u) for u in sorted(self._active_users(), key=lambda u: u.id)]

    def update_user(self, user: User, actor_id: Optional[int] = None) -> User:
        with self._data_lock:
            if user.id not in self.users:
                raise MissingReference("user", user.id)
            stored = copy.deepcopy(user)
            if not stored.deleted:
                self._check_unique(stored)
            self._stamp(stored, actor_id, new=False)
            self.users[stored.id] = stored
            self._persist_state()
            return copy.deepcopy(stored)

    def add_user_rights(
        self, user_id: int, rights: Iterable[Right], actor_id: Optional[int] = None
    ) -> Optional[User]:
        with self._data_lock:
            user = self.get_user(user_id)
            if not user:
                return None
            user.rights.update(rights)
            return self.update_user(user, actor_id)

    def delete_user(self, user_id: int, actor_id: Optional[int] = None) -> Optional[User]:
        """Soft delete: the record stays, flagged and audit-stamped."""
        with self._data_lock:
            user = self.users.get(user_id)
            if not user or user.deleted:
                return None
            user.deleted = True
            self._stamp(user, actor_id, new=False)
            self._persist_state()
            return copy.deepcopy(user)

    def save_password(
        self, user_id: int, password_hash: str, password_algo: str
    ) -> None:
        with self._data_lock:
            if user_id not in self.users:
                raise MissingReference("user", user_id)
            self.credentials[user_id] = (password_hash, password_algo)
            self._persist_state()

    def get_password_record(self, user_id: int) -> Optional[tuple[str, str]]:
        with self._data_lock:
            return self.credentials.get(user_id)

    # groups
    def create_group(self, name: str, actor_id: Optional[int] = None) -> Group:
        with self._data_lock:
            group = Group(id=self._next_group_id(), name=name)
            self._stamp(group, actor_id, new=True)
            self.groups[group.id] = group
            self._persist_state()
            return copy.deepcopy(group)

    def get_group(self, group_id: int) -> Optional[Group]:
        with self._data_lock:
            group = self.groups.get(group_id)
            if not group or group.deleted:
                return None
            return copy.deepcopy(group)

    def update_group(self, group: Group, actor_id: Optional[int] = None) -> Group:
        with self._data_lock:
            if group.id not in self.groups:
                raise MissingReference("group", group.id)
            stored = copy.deepcopy(group)
            self._stamp(stored, actor_id, new=False)
            self.groups[stored.id] = stored
            self._persist_state()
            return copy.deepcopy(stored)

    def delete_group(self, group_id: int, actor_id: Optional[int] = None) -> bool:
        with self._data_lock:
            group = self.groups.get(group_id)
            if not group or group.deleted:
                return False
            self.group_users = [gu for gu in self.group_users if gu.group_id != group_id]
            group.deleted = True
            self._stamp(group, actor_id, new=False)
            self._persist_state()
            return True

    def add_group_user(self, group_id: int, user_id: int, *, moderator: bool = False) -> GroupUser:
        with self._data_lock:
            if group_id not in self.groups:
                raise MissingReference("group", group_id)
            if user_id not in self.users:
                raise MissingReference("user", user_id)
            for existing in self.group_users:
                if existing.group_id == group_id and existing.user_id == user_id:
                    return copy.deepcopy(existing)
            membership = GroupUser(group_id=group_id, user_id=user_id, moderator=moderator)
            self.group_users.append(membership)
            self._persist_state()
            return copy.deepcopy(membership)

    def list_user_groups(self, user_id: int) -> List[Group]:
        with self._data_lock:
            ids = [gu.group_id for gu in self.group_users if gu.user_id == user_id]
            return [
                copy.deepcopy(self.groups[gid])
                for gid in ids
                if gid in self.groups and not self.groups[gid].deleted
            ]

    # rooms
    def create_room(self, name: str, *, closed: bool = False) -> Room:
        with self._data_lock:
            room = Room(id=self._next_room_id(), name=name, closed=closed)
            self.rooms[room.id] = room
            self._persist_state()
            return copy.deepcopy(room)

    def get_room(self, room_id: int) -> Optional[Room]:
        with self._data_lock:
            room = self.rooms.get(room_id)
            if not room or room.deleted:
                return None
            return copy.deepcopy(room)

    # sessions
    def create_session(self, user_id: int, language_id: int = 1) -> Session:
        with self._data_lock:
            if user_id not in self.users:
                raise MissingReference("user", user_id)
            sess = Session.new(user_id=user_id, language_id=language_id)
            self.sessions[sess.id] = sess
            self._persist_state()
            return replace(sess)

    def get_session(self, session_id: str) -> Optional[Session]:
        with self._data_lock:
            sess = self.sessions.get(session_id)
            return replace(sess) if sess else None

    def upsert_session(self, session: Session) -> Session:
        with self._data_lock:
            self.sessions[session.id] = replace(session)
            self._persist_state()
            return replace(session)

    def delete_session(self, session_id: str) -> bool:
        with self._data_lock:
            removed = self.sessions.pop(session_id, None)
            stale = [h for h, rec in self.room_hashes.items() if rec.session_id == session_id]
            for token in stale:
                self.room_hashes.pop(token, None)
            if removed is not None or stale:
                self._persist_state()
            return removed is not None

    def list_sessions(self) -> List[Session]:
        with self._data_lock:
            return [replace(s) for s in self.sessions.values()]

    # room hashes (used when no Redis cache is configured)
    def save_room_hash(self, record: RoomHash) -> None:
        with self._data_lock:
            self.room_hashes[record.hash] = replace(record)
            self._persist_state()

    def get_room_hash(self, token: str) -> Optional[RoomHash]:
        with self._data_lock:
            record = self.room_hashes.get(token)
            return replace(record) if record else None

    def _persist_state(self) -> None:
        state = {
            "users": [self._serialize_user(u) for u in self.users.values()],
            "credentials": [
                {
                    "user_id": user_id,
                    "password_hash": creds[0],
                    "password_algo": creds[1],
                }
                for user_id, creds in self.credentials.items()
            ],
            "groups": [self._serialize_group(g) for g in self.groups.values()],
            "group_users": [
                {
                    "group_id": gu.group_id,
                    "user_id": gu.user_id,
                    "moderator": gu.moderator,
                    "inserted_at": self._serialize_datetime(gu.inserted_at),
                }
                for gu in self.group_users
            ],
            "rooms": [asdict(r) for r in self.rooms.values()],
            "sessions": [self._serialize_session(s) for s in self.sessions.values()],
            "room_hashes": [rec.to_dict() for rec in self.room_hashes.values()],
        }
        path = self._state_path()
        try:
            path.write_text(json.dumps(state, indent=2))
        except Exception as exc:
            raise RuntimeError(f"failed to persist in-memory state: {exc}")

    def _load_state(self) -> bool:
        path = self._state_path()
        try:
            data = json.loads(path.read_text())
        except FileNotFoundError:
            return False
        self.users = {u["id"]: self._deserialize_user(u) for u in data.get("users", [])}
        self.credentials = {
            int(entry["user_id"]): (entry["password_hash"], entry.get("password_algo", ""))
            for entry in data.get("credentials", [])
        }
        self.groups = {g["id"]: self._deserialize_group(g) for g in data.get("groups", [])}
        self.group_users = [
            GroupUser(
                group_id=int(gu["group_id"]),
                user_id=int(gu["user_id"]),
                moderator=gu.get("moderator", False),
                inserted_at=self._deserialize_datetime(gu.get("inserted_at")) or utcnow(),
            )
            for gu in data.get("group_users", [])
        ]
        self.rooms = {r["id"]: Room(**r) for r in data.get("rooms", [])}
        self.sessions = {
            s["id"]: self._deserialize_session(s) for s in data.get("sessions", [])
        }
        self.room_hashes = {
            rec["hash"]: RoomHash.from_dict(rec) for rec in data.get("room_hashes", [])
        }
        self._user_seq = max(self.users, default=0) + 1
        self._group_seq = max(self.groups, default=0) + 1
        self._room_seq = max(self.rooms, default=0) + 1
        return True

    def _serialize_user(self, user: User) -> dict:
        return {
            "id": user.id,
            "login": user.login,
            "email": user.email,
            "firstname": user.firstname,
            "lastname": user.lastname,
            "language_id": user.language_id,
            "timezone_id": user.timezone_id,
            "address": asdict(user.address) if user.address else None,
            "external_id": user.external_id,
            "external_type": user.external_type,
            "type": user.type.value,
            "rights": sorted(r.value for r in user.rights),
            "deleted": user.deleted,
            "inserted_at": self._serialize_datetime(user.inserted_at),
            "inserted_by": user.inserted_by,
            "updated_at": self._serialize_datetime(user.updated_at),
            "updated_by": user.updated_by,
        }

    def _deserialize_user(self, data: dict) -> User:
        address = data.get("address")
        return User(
            id=int(data["id"]),
            login=data["login"],
            email=data.get("email"),
            firstname=data.get("firstname"),
            lastname=data.get("lastname"),
            language_id=data.get("language_id", 1),
            timezone_id=data.get("timezone_id"),
            address=Address(**address) if address else None,
            external_id=data.get("external_id"),
            external_type=data.get("external_type"),
            type=UserType(data.get("type", UserType.USER.value)),
            rights={Right(r) for r in data.get("rights", [])},
            deleted=data.get("deleted", False),
            inserted_at=self._deserialize_datetime(data.get("inserted_at")) or utcnow(),
            inserted_by=data.get("inserted_by"),
            updated_at=self._deserialize_datetime(data.get("updated_at")),
            updated_by=data.get("updated_by"),
        )

    def _serialize_group(self, group: Group) -> dict:
        return {
            "id": group.id,
            "name": group.name,
            "deleted": group.deleted,
            "inserted_at": self._serialize_datetime(group.inserted_at),
            "inserted_by": group.inserted_by,
            "updated_at": self._serialize_datetime(group.updated_at),
            "updated_by": group.updated_by,
        }

    def _deserialize_group(self, data: dict) -> Group:
        return Group(
            id=int(data["id"]),
            name=data["name"],
            deleted=data.get("deleted", False),
            inserted_at=self._deserialize_datetime(data.get("inserted_at")) or utcnow(),
            inserted_by=data.get("inserted_by"),
            updated_at=self._deserialize_datetime(data.get("updated_at")),
            updated_by=data.get("updated_by"),
        )

    def _serialize_session(self, session: Session) -> dict:
        return {
            "id": session.id,
            "user_id": session.user_id,
            "language_id": session.language_id,
            "created_at": self._serialize_datetime(session.created_at),
            "touched_at": self._serialize_datetime(session.touched_at),
            "permanent": session.permanent,
            "profile": session.profile.to_json() if session.profile else None,
        }

    def _deserialize_session(self, data: dict) -> Session:
        raw_profile = data.get("profile")
        profile = None
        if raw_profile:
            try:
                profile = RemoteSessionProfile.from_json(raw_profile)
            except ValueError:
                self.logger.warning("session_profile_unreadable", session_id=data["id"])
        return Session(
            id=data["id"],
            user_id=int(data["user_id"]),
            language_id=data.get("language_id", 1),
            created_at=self._deserialize_datetime(data["created_at"]),
            touched_at=self._deserialize_datetime(data.get("touched_at") or data["created_at"]),
            permanent=data.get("permanent", False),
            profile=profile,
        )
