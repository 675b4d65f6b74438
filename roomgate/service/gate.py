from __future__ import annotations

import inspect
from typing import Any, Awaitable, Callable, Optional, Protocol, Union

from roomgate.logging import get_logger
from roomgate.service.errors import AccessDeniedError, InvalidSessionError, ServiceError
from roomgate.service.results import Envelope
from roomgate.service.sessions import SessionService
from roomgate.storage.models import Right, Session, User

logger = get_logger(__name__)

Operation = Callable[[Session], Union[Any, Awaitable[Any]]]


class UserLookup(Protocol):
    def get_user(self, user_id: int, *, include_deleted: bool = False) -> Optional[User]: ...


async def run_enveloped(call: Callable[[], Any], *, action: str) -> Envelope:
    """Run ``call`` and fold its result or failure into an ``Envelope``.

    ``ServiceError`` becomes an ERROR envelope carrying its code and message.
    Anything else is logged with its traceback and reported as UNKNOWN.
    """
    try:
        result = call()
        if inspect.isawaitable(result):
            result = await result
    except ServiceError as exc:
        logger.warning(
            "call_rejected",
            action=action,
            error_code=exc.error_code,
            message=exc.message,
        )
        return Envelope.from_error(exc)
    except Exception as exc:
        logger.exception("call_failed", action=action, error_type=type(exc).__name__)
        return Envelope.unknown()
    if isinstance(result, Envelope):
        return result
    return Envelope.success(data=result)


class RightsGate:
    """Single chokepoint for privileged calls.

    Resolves the session, checks its owner holds the required right, runs
    the operation and folds every outcome into one ``Envelope``. Work on a
    given session id is serialized; different session ids never wait on
    each other.
    """

    def __init__(self, sessions: SessionService, users: UserLookup) -> None:
        self.sessions = sessions
        self.users = users

    async def perform_call(
        self,
        session_id: Optional[str],
        required: Right,
        operation: Operation,
        *,
        action: Optional[str] = None,
    ) -> Envelope:
        action = action or getattr(operation, "__name__", "operation")
        if not session_id:
            return Envelope.from_error(InvalidSessionError())

        async def _locked() -> Any:
            async with self.sessions.lock(session_id):
                session = self.resolve(session_id, required)
                result = operation(session)
                if inspect.isawaitable(result):
                    result = await result
                return result

        return await run_enveloped(_locked, action=action)

    def resolve(self, session_id: str, required: Right) -> Session:
        session = self.sessions.get(session_id)
        if session is None:
            raise InvalidSessionError()
        user = self.users.get_user(session.user_id)
        if user is None or not user.has_right(required):
            raise AccessDeniedError(detail={"required": required.value})
        return session
