"""Session lifecycle: creation, expiry, touch, sweep and per-session locks."""

import asyncio
from datetime import timedelta

import pytest

from roomgate.config import Settings
from roomgate.service.sessions import KeyedLocks, SessionService
from roomgate.storage.memory import MemoryStore
from roomgate.storage.models import Right, utcnow


@pytest.fixture
def memory_store(tmp_path):
    return MemoryStore(fs_root=str(tmp_path))


@pytest.fixture
def sessions(memory_store, tmp_path):
    return SessionService(memory_store, Settings(shared_fs_root=str(tmp_path)))


@pytest.fixture
def user(memory_store):
    return memory_store.create_user("bob", rights={Right.LOGIN})


def _age(memory_store, session, minutes):
    session.touched_at = utcnow() - timedelta(minutes=minutes)
    memory_store.upsert_session(session)
    return session


class TestSessionExpiry:
    def test_fresh_session_resolves(self, sessions, user):
        session = sessions.create(user.id, 2)

        resolved = sessions.get(session.id)
        assert resolved is not None
        assert resolved.user_id == user.id
        assert resolved.language_id == 2

    def test_unknown_and_empty_ids_resolve_to_none(self, sessions):
        assert sessions.get("does-not-exist") is None
        assert sessions.get("") is None

    def test_session_expires_after_fifteen_minutes(self, sessions, user, memory_store):
        session = sessions.create(user.id)
        _age(memory_store, session, 15)

        assert sessions.get(session.id) is None

    def test_session_just_inside_ttl_is_valid(self, sessions, user, memory_store):
        session = sessions.create(user.id)
        _age(memory_store, session, 14)

        assert sessions.get(session.id) is not None

    def test_permanent_session_never_expires(self, sessions, user, memory_store):
        session = sessions.create(user.id)
        session.permanent = True
        sessions.update(session)
        _age(memory_store, session, 60 * 24 * 30)

        assert sessions.get(session.id) is not None

    def test_update_does_not_extend_lifetime(self, sessions, user, memory_store):
        session = _age(memory_store, sessions.create(user.id), 16)
        sessions.update(session)

        assert sessions.get(session.id) is None

    def test_touch_extends_lifetime(self, sessions, user, memory_store):
        session = _age(memory_store, sessions.create(user.id), 14)
        sessions.touch(session)
        stored = memory_store.get_session(session.id)

        assert utcnow() - stored.touched_at < timedelta(minutes=1)
        assert sessions.get(session.id) is not None

    def test_update_is_idempotent_upsert(self, sessions, user, memory_store):
        session = sessions.create(user.id)
        sessions.update(session)
        sessions.update(session)

        assert [s.id for s in memory_store.list_sessions()] == [session.id]


class TestSweep:
    async def test_sweep_removes_only_expired(self, sessions, user, memory_store):
        live = sessions.create(user.id)
        dead = _age(memory_store, sessions.create(user.id), 30)
        permanent = sessions.create(user.id)
        permanent.permanent = True
        _age(memory_store, permanent, 30)

        swept = await sessions.sweep_expired()

        assert swept == 1
        remaining = {s.id for s in memory_store.list_sessions()}
        assert remaining == {live.id, permanent.id}
        assert dead.id not in remaining

    async def test_sweep_skips_session_held_by_a_call(self, sessions, user, memory_store):
        busy = _age(memory_store, sessions.create(user.id), 30)

        async with sessions.lock(busy.id):
            swept = await sessions.sweep_expired()

        assert swept == 0
        assert memory_store.get_session(busy.id) is not None

    async def test_removal_hooks_run(self, sessions, user):
        removed = []

        async def hook(session_id):
            removed.append(session_id)

        sessions.add_removal_hook(hook)
        session = sessions.create(user.id)

        assert await sessions.remove(session.id) is True
        assert removed == [session.id]

    async def test_sweeper_task_can_be_cancelled(self, sessions, user, memory_store):
        _age(memory_store, sessions.create(user.id), 30)

        task = asyncio.create_task(sessions.run_sweeper(0.01))
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert memory_store.list_sessions() == []


class TestKeyedLocks:
    async def test_same_key_is_serialized(self):
        locks = KeyedLocks()
        order = []

        async def worker(name):
            async with locks.hold("sid"):
                order.append(f"{name}-in")
                await asyncio.sleep(0.01)
                order.append(f"{name}-out")

        await asyncio.gather(worker("a"), worker("b"))

        assert order in (
            ["a-in", "a-out", "b-in", "b-out"],
            ["b-in", "b-out", "a-in", "a-out"],
        )

    async def test_different_keys_do_not_wait(self):
        locks = KeyedLocks()
        entered = asyncio.Event()

        async def holder():
            async with locks.hold("one"):
                await asyncio.wait_for(entered.wait(), timeout=1)

        async def other():
            async with locks.hold("two"):
                entered.set()

        await asyncio.gather(holder(), other())

    async def test_locks_are_dropped_after_release(self):
        locks = KeyedLocks()
        async with locks.hold("sid"):
            assert locks.locked("sid")
            assert len(locks) == 1

        assert not locks.locked("sid")
        assert len(locks) == 0
