"""Unit tests for the credential verifier.

Tests for:
- Password hashing and verification
- Login by login name or email
- Generic failures that do not reveal whether an account exists
- Internal faults reported as unknown
"""

import pytest

from roomgate.config import Settings
from roomgate.service.auth import AuthService
from roomgate.service.errors import AuthError, UnknownError
from roomgate.service.sessions import SessionService
from roomgate.storage.memory import MemoryStore
from roomgate.storage.models import Right

PASSWORD = "Corr3ct-Horse"


@pytest.fixture
def settings(tmp_path):
    return Settings(shared_fs_root=str(tmp_path))


@pytest.fixture
def memory_store(tmp_path):
    """Create memory store for testing."""
    return MemoryStore(fs_root=str(tmp_path))


@pytest.fixture
def auth_service(memory_store, settings):
    sessions = SessionService(memory_store, settings)
    return AuthService(memory_store, sessions, settings)


@pytest.fixture
def alice(memory_store, auth_service):
    user = memory_store.create_user(
        "alice", email="alice@example.com", rights={Right.LOGIN, Right.SOAP}, language_id=3
    )
    auth_service.save_password(user.id, PASSWORD)
    return user


class TestPasswordHashing:
    """Tests for password hashing."""

    def test_hash_is_argon2id_and_not_plaintext(self, auth_service):
        pwd_hash, algo = auth_service.hash_password(PASSWORD)

        assert algo == "argon2id"
        assert pwd_hash != PASSWORD
        assert pwd_hash.startswith("$argon2id$")

    def test_same_password_produces_different_hashes(self, auth_service):
        hash1, _ = auth_service.hash_password(PASSWORD)
        hash2, _ = auth_service.hash_password(PASSWORD)

        assert hash1 != hash2

    def test_verify_password(self, auth_service, alice):
        assert auth_service.verify_password(alice.id, PASSWORD) is True
        assert auth_service.verify_password(alice.id, "wrong") is False

    def test_verify_password_without_record(self, auth_service, memory_store):
        user = memory_store.create_user("nopass", rights={Right.LOGIN})

        assert auth_service.verify_password(user.id, PASSWORD) is False

    def test_verify_password_rejects_foreign_algorithm(self, auth_service, memory_store):
        user = memory_store.create_user("legacy", rights={Right.LOGIN})
        memory_store.save_password(user.id, "5f4dcc3b5aa765d61d8327deb882cf99", "md5")

        assert auth_service.verify_password(user.id, "password") is False


class TestLogin:
    """Tests for login and session minting."""

    def test_login_by_login_name(self, auth_service, alice, memory_store):
        session = auth_service.login("alice", PASSWORD)

        assert session.id
        assert session.user_id == alice.id
        assert session.language_id == 3
        assert session.permanent is False
        assert memory_store.get_session(session.id) is not None

    def test_login_by_email_is_case_insensitive(self, auth_service, alice):
        session = auth_service.login("Alice@Example.com", PASSWORD)

        assert session.user_id == alice.id

    def test_each_login_mints_a_new_session(self, auth_service, alice):
        first = auth_service.login("alice", PASSWORD)
        second = auth_service.login("alice", PASSWORD)

        assert first.id != second.id

    def test_wrong_secret_and_unknown_identifier_look_the_same(self, auth_service, alice):
        with pytest.raises(AuthError) as wrong_secret:
            auth_service.login("alice", "not-it")
        with pytest.raises(AuthError) as unknown_user:
            auth_service.login("mallory", "not-it")

        assert wrong_secret.value.message == unknown_user.value.message == "bad credentials"
        assert wrong_secret.value.error_code == unknown_user.value.error_code

    def test_empty_identifier_is_rejected(self, auth_service):
        with pytest.raises(AuthError):
            auth_service.login("", PASSWORD)

    def test_deleted_account_cannot_login(self, auth_service, alice, memory_store):
        memory_store.delete_user(alice.id)

        with pytest.raises(AuthError):
            auth_service.login("alice", PASSWORD)

    def test_account_without_login_right_cannot_login(self, auth_service, memory_store):
        user = memory_store.create_user("ext", rights={Right.ROOM})
        auth_service.save_password(user.id, PASSWORD)

        with pytest.raises(AuthError):
            auth_service.login("ext", PASSWORD)

    def test_store_fault_is_reported_as_unknown(self, auth_service, alice, monkeypatch):
        def broken_lookup(identifier):
            raise OSError("disk /srv/roomgate/state unavailable")

        monkeypatch.setattr(auth_service.store, "get_user_by_login_or_email", broken_lookup)

        with pytest.raises(UnknownError) as excinfo:
            auth_service.login("alice", PASSWORD)

        assert "srv" not in excinfo.value.message
        assert excinfo.value.message == "unknown error"
