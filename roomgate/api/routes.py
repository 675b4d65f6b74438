from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Header, Query
from fastapi.responses import JSONResponse

from roomgate.api.schemas import CreateUserRequest, LoginRequest, RoomHashRequest
from roomgate.logging import get_logger
from roomgate.service.results import Envelope
from roomgate.service.runtime import get_runtime

logger = get_logger(__name__)

router = APIRouter(prefix="/v1")


def _respond(envelope: Envelope) -> JSONResponse:
    return JSONResponse(
        status_code=envelope.http_status(), content=envelope.model_dump(mode="json")
    )


async def get_sid(
    sid: Optional[str] = Query(None),
    session_id: Optional[str] = Header(None, convert_underscores=False),
) -> Optional[str]:
    """Session id from the ``sid`` query parameter or the ``session_id`` header."""
    return sid or session_id


@router.post("/user/login", response_model=Envelope, tags=["user"])
async def login(body: LoginRequest):
    """Verify credentials; the session id comes back as the envelope message."""
    runtime = get_runtime()
    return _respond(await runtime.users.login(body.user, body.password))


@router.post("/user/logout", response_model=Envelope, tags=["user"])
async def logout(sid: Optional[str] = Depends(get_sid)):
    runtime = get_runtime()
    return _respond(await runtime.users.logout(sid))


@router.get("/user", response_model=Envelope, tags=["user"])
async def list_users(sid: Optional[str] = Depends(get_sid)):
    runtime = get_runtime()
    return _respond(await runtime.users.list_users(sid))


@router.post("/user", response_model=Envelope, tags=["user"])
async def create_user(body: CreateUserRequest, sid: Optional[str] = Depends(get_sid)):
    runtime = get_runtime()
    envelope = await runtime.users.create_user(
        sid, body.user.to_candidate(), send_confirmation=body.confirm
    )
    return _respond(envelope)


@router.delete("/user/{user_id}", response_model=Envelope, tags=["user"])
async def delete_user(user_id: int, sid: Optional[str] = Depends(get_sid)):
    runtime = get_runtime()
    return _respond(await runtime.users.delete_user(sid, user_id))


@router.delete(
    "/user/{external_type}/{external_id}", response_model=Envelope, tags=["user"]
)
async def delete_external_user(
    external_type: str, external_id: str, sid: Optional[str] = Depends(get_sid)
):
    runtime = get_runtime()
    envelope = await runtime.users.delete_user_by_external_identity(
        sid, external_type, external_id
    )
    return _respond(envelope)


@router.post("/user/hash", response_model=Envelope, tags=["user"])
async def issue_room_hash(body: RoomHashRequest, sid: Optional[str] = Depends(get_sid)):
    """Mint a room hash for an externally authenticated user."""
    runtime = get_runtime()
    envelope = await runtime.users.issue_room_hash(
        sid, body.user.to_profile(), body.options.to_options()
    )
    return _respond(envelope)


@router.post("/user/hash/{token}/redeem", response_model=Envelope, tags=["user"])
async def redeem_room_hash(token: str):
    runtime = get_runtime()
    return _respond(await runtime.users.redeem_room_hash(token))


@router.post("/user/kick/{public_id}", response_model=Envelope, tags=["user"])
async def kick(public_id: str, sid: Optional[str] = Depends(get_sid)):
    runtime = get_runtime()
    return _respond(await runtime.users.kick(sid, public_id))


@router.get("/user/count/{room_id}", response_model=Envelope, tags=["user"])
async def count_in_room(room_id: int, sid: Optional[str] = Depends(get_sid)):
    runtime = get_runtime()
    return _respond(await runtime.users.count_in_room(sid, room_id))
