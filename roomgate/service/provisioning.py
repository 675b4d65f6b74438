from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Optional

from roomgate.config import Settings
from roomgate.logging import get_logger, sanitize_error_message
from roomgate.service.auth import AuthService
from roomgate.service.errors import ConflictError, ProvisionError, ValidationError
from roomgate.service.password_policy import PasswordPolicy
from roomgate.storage.errors import ConstraintViolation
from roomgate.storage.memory import MemoryStore
from roomgate.storage.models import Address, Right, User, UserType

logger = get_logger(__name__)


@dataclass
class UserCandidate:
    """Account requested through the gateway, before defaults are applied."""

    login: str
    password: Optional[str] = None
    email: Optional[str] = None
    firstname: Optional[str] = None
    lastname: Optional[str] = None
    language_id: Optional[int] = None
    timezone_id: Optional[str] = None
    address: Optional[Address] = None
    external_id: Optional[str] = None
    external_type: Optional[str] = None

    @property
    def is_external(self) -> bool:
        return bool(self.external_id or self.external_type)


class ConfirmationNotifier:
    """Hands freshly created local accounts to the confirmation channel."""

    def request_confirmation(self, user: User) -> None:
        logger.info("confirmation_requested", user_id=user.id, email=user.email)


class UserProvisioner:
    def __init__(
        self,
        store: MemoryStore,
        auth: AuthService,
        policy: PasswordPolicy,
        settings: Settings,
        notifier: Optional[ConfirmationNotifier] = None,
    ) -> None:
        self.store = store
        self.auth = auth
        self.policy = policy
        self.settings = settings
        self.notifier = notifier or ConfirmationNotifier()

    def register(
        self,
        candidate: UserCandidate,
        requesting_user_id: int,
        send_confirmation: Optional[bool] = None,
    ) -> User:
        """Create an account and grant it the gateway's default rights.

        The external identity check comes first: a duplicate pair fails
        before the password is looked at or anything is written.
        """
        if candidate.external_id and candidate.external_type:
            if self.store.get_external_user(candidate.external_id, candidate.external_type):
                raise ConflictError(
                    "user already exists",
                    detail={"external_type": candidate.external_type},
                )

        candidate = self._with_defaults(candidate)
        context = User(
            id=0,
            login=candidate.login,
            email=candidate.email,
            firstname=candidate.firstname,
            lastname=candidate.lastname,
        )
        violations = self.policy.validate(candidate.password, context)
        if violations:
            raise ValidationError("\n".join(violations), detail={"violations": violations})

        created: Optional[User] = None
        try:
            password_hash, password_algo = self.auth.hash_password(candidate.password or "")
            user = created = self.store.create_user(
                candidate.login,
                email=candidate.email,
                firstname=candidate.firstname,
                lastname=candidate.lastname,
                language_id=candidate.language_id,
                timezone_id=candidate.timezone_id,
                address=candidate.address,
                actor_id=requesting_user_id,
            )
            self.store.save_password(user.id, password_hash, password_algo)
            self._join_default_group(user)

            user.rights.add(Right.ROOM)
            if candidate.is_external:
                user.type = UserType.EXTERNAL
                user.external_id = candidate.external_id
                user.external_type = candidate.external_type
            else:
                user.rights.update({Right.LOGIN, Right.DASHBOARD})
            user = self.store.update_user(user, requesting_user_id)
        except ConstraintViolation as exc:
            self._discard(created, requesting_user_id)
            raise ConflictError(sanitize_error_message(exc.message), detail=exc.detail)
        except Exception as exc:
            logger.exception(
                "user_provision_failed",
                login=candidate.login,
                error_type=type(exc).__name__,
            )
            self._discard(created, requesting_user_id)
            raise ProvisionError()

        logger.info(
            "user_provisioned",
            user_id=user.id,
            actor_id=requesting_user_id,
            external=candidate.is_external,
        )
        if send_confirmation is not False and not candidate.is_external:
            self.notifier.request_confirmation(user)
        return user

    def _with_defaults(self, candidate: UserCandidate) -> UserCandidate:
        """Copy of ``candidate`` with missing locale, timezone and country filled in."""
        address = replace(candidate.address) if candidate.address else Address()
        if not address.country:
            address.country = self.settings.default_country
        return replace(
            candidate,
            timezone_id=candidate.timezone_id or self.settings.default_timezone,
            language_id=candidate.language_id or self.settings.default_language_id,
            address=address,
        )

    def _discard(self, created: Optional[User], actor_id: int) -> None:
        """Soft-delete a partly provisioned account so its login and email free up."""
        if created is None:
            return
        try:
            self.store.delete_user(created.id, actor_id)
        except Exception:
            logger.exception("user_provision_rollback_failed", user_id=created.id)
        else:
            logger.info("user_provision_rolled_back", user_id=created.id)

    def _join_default_group(self, user: User) -> None:
        group = self.store.get_group(self.settings.default_group_id)
        if group is None:
            logger.warning("default_group_missing", group_id=self.settings.default_group_id)
            return
        self.store.add_group_user(group.id, user.id)
