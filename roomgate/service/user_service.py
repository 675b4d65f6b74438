from __future__ import annotations

from dataclasses import asdict
from typing import Any, Dict, Optional

from roomgate.logging import get_logger
from roomgate.service.auth import AuthService
from roomgate.service.clients import ClientRegistry
from roomgate.service.errors import InvalidSessionError, NotFoundError
from roomgate.service.gate import RightsGate, run_enveloped
from roomgate.service.provisioning import UserCandidate, UserProvisioner
from roomgate.service.results import Envelope
from roomgate.service.room_hash import RoomHashService, RoomOptions
from roomgate.service.sessions import KeyedLocks, SessionService
from roomgate.storage.memory import MemoryStore
from roomgate.storage.models import RemoteSessionProfile, Right, Session, User

logger = get_logger(__name__)


def user_payload(user: User) -> Dict[str, Any]:
    """Caller-facing view of an account; credentials never appear here."""
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
    }


class UserWebService:
    """Boundary operations of the gateway.

    Everything except ``login`` and room hash redemption goes through the
    rights gate; every method returns an ``Envelope`` and never raises.
    """

    def __init__(
        self,
        store: MemoryStore,
        sessions: SessionService,
        auth: AuthService,
        gate: RightsGate,
        provisioner: UserProvisioner,
        room_hashes: RoomHashService,
        clients: ClientRegistry,
    ) -> None:
        self.store = store
        self.sessions = sessions
        self.auth = auth
        self.gate = gate
        self.provisioner = provisioner
        self.room_hashes = room_hashes
        self.clients = clients
        self._user_locks = KeyedLocks()

    async def login(self, identifier: str, secret: str) -> Envelope:
        def _login() -> Envelope:
            session = self.auth.login(identifier, secret)
            return Envelope.success(
                message=session.id,
                data={"session_id": session.id, "user_id": session.user_id},
            )

        return await run_enveloped(_login, action="login")

    async def logout(self, sid: Optional[str]) -> Envelope:
        async def _logout() -> Envelope:
            if not sid:
                raise InvalidSessionError()
            async with self.sessions.lock(sid):
                if self.sessions.get(sid) is None:
                    raise InvalidSessionError()
                await self.sessions.remove(sid)
            return Envelope.success(message="logged out")

        return await run_enveloped(_logout, action="logout")

    async def list_users(self, sid: Optional[str]) -> Envelope:
        def list_users(session: Session) -> Envelope:
            users = [user_payload(u) for u in self.store.list_users()]
            return Envelope.success(message=str(len(users)), data=users)

        return await self.gate.perform_call(sid, Right.SOAP, list_users)

    async def create_user(
        self,
        sid: Optional[str],
        candidate: UserCandidate,
        send_confirmation: Optional[bool] = None,
    ) -> Envelope:
        def create_user(session: Session) -> Envelope:
            user = self.provisioner.register(candidate, session.user_id, send_confirmation)
            return Envelope.success(message=str(user.id), data=user_payload(user))

        return await self.gate.perform_call(sid, Right.SOAP, create_user)

    async def delete_user(self, sid: Optional[str], user_id: int) -> Envelope:
        async def delete_user(session: Session) -> Envelope:
            return await self._soft_delete(user_id, session.user_id)

        return await self.gate.perform_call(sid, Right.ADMIN, delete_user)

    async def delete_user_by_external_identity(
        self, sid: Optional[str], external_type: str, external_id: str
    ) -> Envelope:
        async def delete_external_user(session: Session) -> Envelope:
            user = self.store.get_external_user(external_id, external_type)
            if user is None:
                raise NotFoundError("user not found")
            return await self._soft_delete(user.id, session.user_id)

        return await self.gate.perform_call(sid, Right.ADMIN, delete_external_user)

    async def _soft_delete(self, user_id: int, actor_id: int) -> Envelope:
        async with self._user_locks.hold(str(user_id)):
            deleted = self.store.delete_user(user_id, actor_id)
        if deleted is None:
            raise NotFoundError("user not found")
        logger.info("user_deleted", user_id=user_id, actor_id=actor_id)
        return Envelope.success(message="deleted", data={"user_id": user_id})

    async def issue_room_hash(
        self,
        sid: Optional[str],
        profile: RemoteSessionProfile,
        options: RoomOptions,
    ) -> Envelope:
        async def issue_room_hash(session: Session) -> Envelope:
            token = await self.room_hashes.issue(session, profile, options)
            return Envelope.success(message=token, data={"hash": token})

        return await self.gate.perform_call(sid, Right.SOAP, issue_room_hash)

    async def redeem_room_hash(self, token: str) -> Envelope:
        async def _redeem() -> Envelope:
            entry = await self.room_hashes.redeem(token)
            data = asdict(entry)
            return Envelope.success(message=str(entry.room_id), data=data)

        return await run_enveloped(_redeem, action="redeem_room_hash")

    async def kick(self, sid: Optional[str], public_id: str) -> Envelope:
        def kick(session: Session) -> Envelope:
            kicked = self.clients.kick(public_id)
            return Envelope.success(
                message="kicked" if kicked else "not kicked", data={"kicked": kicked}
            )

        return await self.gate.perform_call(sid, Right.SOAP, kick)

    async def count_in_room(self, sid: Optional[str], room_id: int) -> Envelope:
        def count_in_room(session: Session) -> Envelope:
            count = len(self.clients.list_by_room(room_id))
            return Envelope.success(message=str(count), data={"count": count})

        return await self.gate.perform_call(sid, Right.SOAP, count_in_room)
