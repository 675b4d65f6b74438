"""Rights gate: session resolution, right checks and envelope folding."""

import asyncio
from datetime import timedelta

import pytest

from roomgate.config import Settings
from roomgate.service.errors import ConflictError, ValidationError
from roomgate.service.gate import RightsGate, run_enveloped
from roomgate.service.results import Envelope, ResultStatus
from roomgate.service.sessions import SessionService
from roomgate.storage.memory import MemoryStore
from roomgate.storage.models import Right, utcnow


@pytest.fixture
def memory_store(tmp_path):
    return MemoryStore(fs_root=str(tmp_path))


@pytest.fixture
def sessions(memory_store, tmp_path):
    return SessionService(memory_store, Settings(shared_fs_root=str(tmp_path)))


@pytest.fixture
def gate(sessions, memory_store):
    return RightsGate(sessions, memory_store)


@pytest.fixture
def caller_sid(memory_store, sessions):
    user = memory_store.create_user("portal", rights={Right.LOGIN, Right.SOAP})
    return sessions.create(user.id).id


@pytest.fixture
def admin_sid(memory_store, sessions):
    user = memory_store.create_user(
        "root", rights={Right.LOGIN, Right.SOAP, Right.ADMIN}
    )
    return sessions.create(user.id).id


class TestSessionResolution:
    async def test_missing_sid_is_invalid_session(self, gate):
        calls = []
        envelope = await gate.perform_call(None, Right.SOAP, calls.append)

        assert envelope.status == ResultStatus.ERROR
        assert envelope.error.code == "invalid_session"
        assert envelope.message == "invalid session"
        assert calls == []

    async def test_unknown_sid_is_invalid_session(self, gate):
        envelope = await gate.perform_call("nope", Right.SOAP, lambda s: "never")

        assert envelope.error.code == "invalid_session"

    async def test_expired_sid_is_invalid_session_whatever_the_operation(
        self, gate, caller_sid, memory_store
    ):
        session = memory_store.get_session(caller_sid)
        session.touched_at = utcnow() - timedelta(minutes=20)
        memory_store.upsert_session(session)

        for required in (Right.SOAP, Right.ADMIN):
            envelope = await gate.perform_call(caller_sid, required, lambda s: "never")
            assert envelope.status == ResultStatus.ERROR
            assert envelope.message == "invalid session"


class TestRightChecks:
    async def test_service_caller_cannot_run_admin_operation(self, gate, caller_sid):
        calls = []
        envelope = await gate.perform_call(caller_sid, Right.ADMIN, calls.append)

        assert envelope.status == ResultStatus.ERROR
        assert envelope.error.code == "access_denied"
        assert envelope.message == "access denied"
        assert envelope.http_status() == 403
        assert calls == []

    async def test_admin_passes_admin_check(self, gate, admin_sid):
        envelope = await gate.perform_call(admin_sid, Right.ADMIN, lambda s: "done")

        assert envelope.ok
        assert envelope.data == "done"

    async def test_deleted_owner_is_denied(self, gate, caller_sid, memory_store, sessions):
        owner = sessions.get(caller_sid).user_id
        memory_store.delete_user(owner)

        envelope = await gate.perform_call(caller_sid, Right.SOAP, lambda s: "never")

        assert envelope.error.code == "access_denied"

    async def test_rights_are_read_at_call_time(self, gate, caller_sid, memory_store, sessions):
        owner = sessions.get(caller_sid).user_id
        memory_store.add_user_rights(owner, {Right.ADMIN})

        envelope = await gate.perform_call(caller_sid, Right.ADMIN, lambda s: s.user_id)

        assert envelope.ok
        assert envelope.data == owner


class TestOutcomeFolding:
    async def test_operation_receives_resolved_session(self, gate, caller_sid):
        seen = []

        def operation(session):
            seen.append(session.id)
            return Envelope.success(message="ok")

        envelope = await gate.perform_call(caller_sid, Right.SOAP, operation)

        assert envelope.message == "ok"
        assert seen == [caller_sid]

    async def test_async_operation_is_awaited(self, gate, caller_sid):
        async def operation(session):
            await asyncio.sleep(0)
            return {"answer": 42}

        envelope = await gate.perform_call(caller_sid, Right.SOAP, operation)

        assert envelope.status == ResultStatus.SUCCESS
        assert envelope.data == {"answer": 42}

    async def test_domain_error_becomes_error_envelope(self, gate, caller_sid):
        def operation(session):
            raise ValidationError("room id must be a positive number")

        envelope = await gate.perform_call(caller_sid, Right.SOAP, operation)

        assert envelope.status == ResultStatus.ERROR
        assert envelope.error.code == "validation_error"
        assert envelope.message == "room id must be a positive number"

    async def test_unexpected_fault_becomes_opaque_unknown(self, gate, caller_sid):
        def operation(session):
            raise KeyError("internal table users_by_login")

        envelope = await gate.perform_call(caller_sid, Right.SOAP, operation)

        assert envelope.status == ResultStatus.UNKNOWN
        assert envelope.error.code == "unknown"
        assert "users_by_login" not in envelope.model_dump_json()
        assert envelope.http_status() == 500

    async def test_store_fault_during_resolution_is_unknown(
        self, gate, caller_sid, memory_store, monkeypatch
    ):
        def broken(session_id):
            raise OSError("state file locked")

        monkeypatch.setattr(memory_store, "get_session", broken)

        envelope = await gate.perform_call(caller_sid, Right.SOAP, lambda s: "never")

        assert envelope.status == ResultStatus.UNKNOWN

    async def test_run_enveloped_passes_envelopes_through(self):
        envelope = await run_enveloped(lambda: Envelope.success(message="x"), action="t")

        assert envelope.message == "x"

    async def test_run_enveloped_folds_conflict(self):
        def call():
            raise ConflictError("user already exists")

        envelope = await run_enveloped(call, action="t")

        assert envelope.error.code == "conflict"
        assert envelope.http_status() == 409


class TestSerialization:
    async def test_calls_on_one_session_do_not_interleave(self, gate, caller_sid):
        trace = []

        async def operation(session):
            trace.append("start")
            await asyncio.sleep(0.01)
            trace.append("end")

        await asyncio.gather(
            gate.perform_call(caller_sid, Right.SOAP, operation),
            gate.perform_call(caller_sid, Right.SOAP, operation),
        )

        assert trace == ["start", "end", "start", "end"]

    async def test_calls_on_different_sessions_run_concurrently(
        self, gate, caller_sid, admin_sid
    ):
        both_inside = asyncio.Event()
        inside = []

        async def operation(session):
            inside.append(session.id)
            if len(inside) == 2:
                both_inside.set()
            await asyncio.wait_for(both_inside.wait(), timeout=1)

        results = await asyncio.gather(
            gate.perform_call(caller_sid, Right.SOAP, operation),
            gate.perform_call(admin_sid, Right.SOAP, operation),
        )

        assert all(r.ok for r in results)
