from __future__ import annotations

from typing import List, Optional, Protocol, Tuple

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHash, VerificationError, VerifyMismatchError

from roomgate.config import Settings
from roomgate.logging import get_logger
from roomgate.service.errors import AuthError, UnknownError
from roomgate.service.sessions import SessionService
from roomgate.storage.models import Right, Session, User

logger = get_logger(__name__)


class UserStore(Protocol):
    def get_user(self, user_id: int, *, include_deleted: bool = False) -> Optional[User]: ...

    def get_user_by_login_or_email(self, identifier: str) -> Optional[User]: ...

    def get_external_user(
        self, external_id: Optional[str], external_type: Optional[str]
    ) -> Optional[User]: ...

    def list_users(self) -> List[User]: ...

    def create_user(self, login: str, **kwargs) -> User: ...

    def update_user(self, user: User, actor_id: Optional[int] = None) -> User: ...

    def delete_user(self, user_id: int, actor_id: Optional[int] = None) -> Optional[User]: ...

    def save_password(
        self, user_id: int, password_hash: str, password_algo: str
    ) -> None: ...

    def get_password_record(self, user_id: int) -> Optional[tuple[str, str]]: ...


class AuthService:
    """Credential verification and password hashing."""

    def __init__(self, store: UserStore, sessions: SessionService, settings: Settings) -> None:
        self.store = store
        self.sessions = sessions
        self.settings = settings
        self.logger = logger
        self._pwd_hasher = PasswordHasher(type=Type.ID)
        self._dummy_hash: Optional[str] = None

    def login(self, identifier: str, secret: str) -> Session:
        """Verify credentials and mint a session for the matching account.

        Unknown identifiers, wrong secrets, deleted accounts and accounts
        without the login right all raise the same ``AuthError``. Store or
        hashing faults raise ``UnknownError`` after being logged here.
        """
        try:
            user = self.authenticate(identifier, secret)
            session = self.sessions.create(user.id, user.language_id)
        except AuthError:
            raise
        except Exception:
            self.logger.exception("login_failed_internal")
            raise UnknownError()
        self.logger.info("login_succeeded", user_id=user.id, session_id=session.id)
        return session

    def authenticate(self, identifier: str, secret: str) -> User:
        user = self.store.get_user_by_login_or_email(identifier or "")
        if not user:
            # Burn a verify so a missing account costs the same as a wrong secret
            self._verify_dummy(secret)
            self.logger.warning("login_unknown_identifier")
            raise AuthError()
        if not self.verify_password(user.id, secret):
            raise AuthError()
        if not user.has_right(Right.LOGIN):
            self.logger.warning("login_right_missing", user_id=user.id)
            raise AuthError()
        return user

    def _verify_dummy(self, secret: str) -> None:
        if self._dummy_hash is None:
            self._dummy_hash = self._pwd_hasher.hash("roomgate-dummy-secret")
        try:
            self._pwd_hasher.verify(self._dummy_hash, secret or "")
        except VerificationError:
            pass

    def hash_password(self, password: str) -> Tuple[str, str]:
        algo = "argon2id"
        digest = self._pwd_hasher.hash(password)
        return digest, algo

    def verify_password(self, user_id: int, password: str) -> bool:
        """Verify a user's password against stored hash."""
        record = self.store.get_password_record(user_id)
        if not record:
            self.logger.warning("password_record_missing", user_id=user_id)
            return False
        stored_hash, algo = record
        if algo != "argon2id":
            self.logger.warning("password_algo_mismatch", user_id=user_id, algo=algo)
            return False
        try:
            return self._pwd_hasher.verify(stored_hash, password or "")
        except (InvalidHash, VerifyMismatchError):
            self.logger.warning("password_verification_failed", user_id=user_id)
            return False

    def save_password(self, user_id: int, password: str) -> None:
        """Hash and save a new password for a user."""
        pwd_hash, algo = self.hash_password(password)
        self.store.save_password(user_id, pwd_hash, algo)
