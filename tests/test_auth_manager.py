"""
Tests for the registration, login and logout flows
"""

import os
import statistics
import tempfile
import time
from unittest.mock import patch

import pytest
from infrastructure.config.settings import AppConfig, AuthConfig, reload_config
from services.auth_service.auth_manager import AuthManager, create_auth_manager
from services.auth_service.clock import ManualClock
from services.auth_service.errors import (
    AuthenticationError,
    ConflictError,
    PersistenceError,
    ValidationError,
)
from services.auth_service.memory_store import InMemoryAuthStore
from services.auth_service.password_hasher import PasswordHasher
from services.auth_service.sqlite_store import SQLiteAuthStore


class AuthManagerContract:
    """Flow behaviour shared by every store; subclasses provide make_store()"""

    def make_store(self):
        raise NotImplementedError

    def make_config(self, **overrides) -> AuthConfig:
        config = AuthConfig(bcrypt_rounds=4, max_login_attempts=3, lockout_duration_minutes=15)
        for key, value in overrides.items():
            setattr(config, key, value)
        return config

    def setup_method(self):
        self.clock = ManualClock()
        self.store = self.make_store()
        self.manager = AuthManager(self.store, config=self.make_config(), clock=self.clock)

    def test_end_to_end_scenario(self):
        """Register, fail a login, then succeed with a fresh session"""
        registered = self.manager.register("a@x.com", "pw123!", "alice")

        assert registered.user.email == "a@x.com"
        assert registered.user.username == "alice"
        assert registered.user.password_digest != "pw123!"
        assert registered.session is not None

        with pytest.raises(AuthenticationError):
            self.manager.login("a@x.com", "wrong")
        assert self.store.get_user_by_email("a@x.com").failed_login_attempts == 1

        result = self.manager.login("a@x.com", "pw123!")

        assert result.session.token != registered.session.token
        assert result.user.failed_login_attempts == 0
        assert result.user.last_login_at == self.clock.now()
        assert self.store.get_user_by_email("a@x.com").failed_login_attempts == 0
        assert self.manager.validate_session(result.session.token).user.username == "alice"

    def test_duplicate_email_conflicts(self):
        """Second registration with the same email fails; the first user is untouched"""
        first = self.manager.register("a@x.com", "pw123!", "alice")

        with pytest.raises(ConflictError) as exc_info:
            self.manager.register("A@X.com", "other-pass", "alice2")

        assert exc_info.value.field == "email"
        stored = self.store.get_user_by_email("a@x.com")
        assert stored.user_id == first.user.user_id
        assert stored.username == "alice"
        assert stored.password_digest == first.user.password_digest
        assert self.store.get_user_by_username("alice2") is None

    def test_duplicate_username_conflicts(self):
        """Usernames are unique too"""
        self.manager.register("a@x.com", "pw123!", "alice")

        with pytest.raises(ConflictError) as exc_info:
            self.manager.register("b@x.com", "pw123!", "alice")

        assert exc_info.value.field == "username"

    def test_store_level_conflict_is_translated(self):
        """A uniqueness race caught by the store still surfaces as ConflictError"""
        self.manager.register("a@x.com", "pw123!", "alice")

        with patch.object(self.store, "get_user_by_email", return_value=None):
            with pytest.raises(ConflictError) as exc_info:
                self.manager.register("a@x.com", "pw123!", "alice2")

        assert exc_info.value.field == "email"

    @pytest.mark.parametrize("email,password,username,field", [
        ("not-an-email", "pw123!", "alice", "email"),
        ("", "pw123!", "alice", "email"),
        ("a@x.com", "short", "alice", "password"),
        ("a@x.com", "x" * 73, "alice", "password"),
        ("a@x.com", "pw123!", "al", "username"),
        ("a@x.com", "pw123!", "alice smith", "username"),
    ])
    def test_registration_validation(self, email, password, username, field):
        """Malformed input is rejected before anything is stored"""
        with pytest.raises(ValidationError) as exc_info:
            self.manager.register(email, password, username)

        assert exc_info.value.field == field
        assert self.store.get_user_by_username(username) is None

    def test_self_registration_can_be_disabled(self):
        """Registration is refused when self-registration is off"""
        manager = AuthManager(
            self.store, config=self.make_config(allow_self_registration=False), clock=self.clock
        )

        with pytest.raises(ValidationError):
            manager.register("a@x.com", "pw123!", "alice")

    def test_register_without_auto_login(self):
        """Auto-login can be turned off"""
        manager = AuthManager(
            self.store, config=self.make_config(auto_login_on_register=False), clock=self.clock
        )

        result = manager.register("a@x.com", "pw123!", "alice")

        assert result.session is None
        assert self.store.list_user_sessions(result.user.user_id) == []

    def test_register_is_atomic(self):
        """If session issuance fails, no user row survives"""
        with patch.object(self.manager.session_store, "create_session",
                          side_effect=PersistenceError("disk full")):
            with pytest.raises(PersistenceError):
                self.manager.register("a@x.com", "pw123!", "alice")

        assert self.store.get_user_by_email("a@x.com") is None
        assert self.store.get_user_by_username("alice") is None

        # The same identity can register afterwards
        assert self.manager.register("a@x.com", "pw123!", "alice").session is not None

    def test_unknown_email_and_wrong_password_are_indistinguishable(self):
        """Both failures carry the same message"""
        self.manager.register("a@x.com", "pw123!", "alice")

        with pytest.raises(AuthenticationError) as unknown:
            self.manager.login("nobody@x.com", "pw123!")
        with pytest.raises(AuthenticationError) as wrong:
            self.manager.login("a@x.com", "nope")

        assert str(unknown.value) == str(wrong.value) == "Invalid email or password"

    def test_unknown_email_pays_hashing_cost(self):
        """The dummy digest is checked when no user matches"""
        with patch.object(self.manager.hasher, "verify", return_value=False) as verify:
            with pytest.raises(AuthenticationError):
                self.manager.login("nobody@x.com", "pw123!")

        verify.assert_called_once_with("pw123!", self.manager.hasher.dummy_digest)

    def test_failed_login_never_issues_session(self):
        """No session row is written for a failed verification"""
        registered = self.manager.register("a@x.com", "pw123!", "alice")

        with pytest.raises(AuthenticationError):
            self.manager.login("a@x.com", "wrong")

        sessions = self.store.list_user_sessions(registered.user.user_id)
        assert [s.token for s in sessions] == [registered.session.token]

    def test_login_racing_user_deletion_is_an_auth_failure(self):
        """A user deleted between lookup and update fails like any bad login"""
        registered = self.manager.register("a@x.com", "pw123!", "alice")
        stale = self.store.get_user_by_email("a@x.com")
        self.store.delete_user(registered.user.user_id)

        with patch.object(self.store, "get_user_by_email", return_value=stale):
            with pytest.raises(AuthenticationError):
                self.manager.login("a@x.com", "pw123!")
            with pytest.raises(AuthenticationError):
                self.manager.login("a@x.com", "wrong")

        assert self.store.list_user_sessions(registered.user.user_id) == []

    def test_lockout_after_max_attempts(self):
        """The account locks after max_login_attempts failures, then recovers"""
        self.manager.register("a@x.com", "pw123!", "alice")

        for _ in range(3):
            with pytest.raises(AuthenticationError):
                self.manager.login("a@x.com", "wrong")

        locked = self.store.get_user_by_email("a@x.com")
        assert locked.failed_login_attempts == 3
        assert locked.locked_until is not None

        # Even the right password fails while locked, with the same message
        with pytest.raises(AuthenticationError) as exc_info:
            self.manager.login("a@x.com", "pw123!")
        assert str(exc_info.value) == "Invalid email or password"

        self.clock.advance(minutes=15)
        result = self.manager.login("a@x.com", "pw123!")

        assert result.user.failed_login_attempts == 0
        assert result.user.locked_until is None

    def test_login_normalizes_email(self):
        """Email lookup ignores case and surrounding whitespace"""
        self.manager.register("Alice@Example.com", "pw123!", "alice")

        result = self.manager.login("  ALICE@example.COM ", "pw123!")

        assert result.user.email == "alice@example.com"

    def test_remember_me_login(self):
        """Remember-me logins get the long expiry"""
        self.manager.register("a@x.com", "pw123!", "alice")

        result = self.manager.login("a@x.com", "pw123!", remember_me=True)

        assert result.session.remember_me is True
        self.clock.advance(days=29)
        assert self.manager.validate_session(result.session.token) is not None

    def test_login_rehashes_outdated_digest(self):
        """A digest at an old cost factor is upgraded on successful login"""
        self.manager.register("a@x.com", "pw123!", "alice")
        upgraded = AuthManager(
            self.store, config=self.make_config(bcrypt_rounds=5), clock=self.clock
        )

        upgraded.login("a@x.com", "pw123!")

        digest = self.store.get_user_by_email("a@x.com").password_digest
        assert PasswordHasher.cost_of(digest) == 5
        assert upgraded.login("a@x.com", "pw123!").session is not None

    def test_logout_is_idempotent(self):
        """Logout invalidates the session and tolerates repeats"""
        result = self.manager.register("a@x.com", "pw123!", "alice")
        token = result.session.token

        self.manager.logout(token)
        self.manager.logout(token)
        self.manager.logout("unknown-token")

        assert self.manager.validate_session(token) is None

    def test_logout_survives_store_failure(self):
        """Logout does not raise even when the store is down"""
        with patch.object(self.manager.session_store, "invalidate_session",
                          side_effect=PersistenceError("unavailable")):
            self.manager.logout("some-token")

    def test_change_password_invalidates_other_sessions(self):
        """Changing the password keeps the current session only"""
        registered = self.manager.register("a@x.com", "pw123!", "alice")
        other = self.manager.login("a@x.com", "pw123!")

        invalidated = self.manager.change_password(registered.session.token, "pw123!", "new-pass-1")

        assert invalidated == 1
        assert self.manager.validate_session(registered.session.token) is not None
        assert self.manager.validate_session(other.session.token) is None
        with pytest.raises(AuthenticationError):
            self.manager.login("a@x.com", "pw123!")
        assert self.manager.login("a@x.com", "new-pass-1").session is not None

    def test_change_password_requires_current_password(self):
        """Wrong current password or dead session is rejected"""
        registered = self.manager.register("a@x.com", "pw123!", "alice")

        with pytest.raises(AuthenticationError):
            self.manager.change_password(registered.session.token, "wrong", "new-pass-1")
        with pytest.raises(AuthenticationError):
            self.manager.change_password("dead-token", "pw123!", "new-pass-1")

    def test_profile_upsert(self):
        """Profiles are created on first update and merged afterwards"""
        user = self.manager.register("a@x.com", "pw123!", "alice").user
        assert self.manager.get_profile(user.user_id) is None

        created = self.manager.update_profile(user.user_id, bio="Hello", social_links={"github": "https://github.com/alice"})
        self.clock.advance(minutes=1)
        updated = self.manager.update_profile(user.user_id, avatar_url="https://cdn.example.com/a.png")

        assert updated.profile_id == created.profile_id
        assert updated.bio == "Hello"
        assert updated.avatar_url == "https://cdn.example.com/a.png"
        assert updated.social_links == {"github": "https://github.com/alice"}
        assert updated.updated_at == self.clock.now()

    def test_profile_validation(self):
        """Profile fields are checked"""
        user = self.manager.register("a@x.com", "pw123!", "alice").user

        with pytest.raises(ValidationError):
            self.manager.update_profile(user.user_id, avatar_url="javascript:alert(1)")
        with pytest.raises(ValidationError):
            self.manager.update_profile("no-such-user", bio="x")

    def test_cleanup_expired(self):
        """Housekeeping purges expired sessions and stale reset tokens"""
        self.manager.register("a@x.com", "pw123!", "alice")
        self.manager.request_password_reset("a@x.com")

        self.clock.advance(days=2)
        counts = self.manager.cleanup_expired()

        assert counts == {"sessions": 1, "reset_tokens": 1}


class TestInMemoryAuthManager(AuthManagerContract):
    """Flows over the in-memory store (compensating rollback)"""

    def make_store(self):
        return InMemoryAuthStore()

    def test_login_timing_does_not_reveal_accounts(self):
        """Unknown-email and wrong-password logins cost about the same"""
        config = self.make_config(bcrypt_rounds=8, max_login_attempts=1000)
        manager = AuthManager(InMemoryAuthStore(), config=config, clock=self.clock)
        manager.register("a@x.com", "pw123!", "alice")

        def sample(email):
            start = time.perf_counter()
            with pytest.raises(AuthenticationError):
                manager.login(email, "wrong-password")
            return time.perf_counter() - start

        unknown, known = [], []
        for _ in range(7):
            unknown.append(sample("nobody@x.com"))
            known.append(sample("a@x.com"))

        ratio = statistics.median(unknown) / statistics.median(known)
        assert 0.5 < ratio < 2.0


class TestSQLiteAuthManager(AuthManagerContract):
    """Flows over SQLite (transactional rollback)"""

    def make_store(self):
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.temp_dir, "test_auth.db")
        return SQLiteAuthStore(self.db_path)

    def teardown_method(self):
        """Clean up test environment"""
        if os.path.exists(self.db_path):
            os.remove(self.db_path)
        os.rmdir(self.temp_dir)


class TestCreateAuthManager:
    """Wiring from application config"""

    def test_uses_configured_sqlite_path(self):
        config = AppConfig()
        config.database.path = ":memory:"
        config.auth.bcrypt_rounds = 4

        manager = create_auth_manager(config=config, clock=ManualClock())

        assert isinstance(manager.store, SQLiteAuthStore)
        assert manager.hasher.rounds == 4
        assert manager.register("a@x.com", "pw123!", "alice").session is not None

    def test_accepts_injected_store(self):
        config = AppConfig()
        config.auth.bcrypt_rounds = 4
        store = InMemoryAuthStore()

        manager = create_auth_manager(config=config, store=store)

        assert manager.store is store

    def test_production_overrides_reach_manager(self, monkeypatch):
        """APP_ENV=production hardens the global config the factory wires in"""
        monkeypatch.setenv("APP_ENV", "production")
        monkeypatch.setenv("AUTH_DB_PATH", ":memory:")
        try:
            reload_config()
            manager = create_auth_manager(store=InMemoryAuthStore())

            assert manager.config.max_login_attempts == 3
            assert manager.config.lockout_duration_minutes == 30
            assert manager.hasher.rounds == 12
        finally:
            monkeypatch.undo()
            reload_config()

    def test_development_overrides_reach_manager(self, monkeypatch):
        monkeypatch.setenv("APP_ENV", "development")
        monkeypatch.setenv("AUTH_DB_PATH", ":memory:")
        try:
            reload_config()
            manager = create_auth_manager(store=InMemoryAuthStore())

            assert manager.config.max_login_attempts == 10
        finally:
            monkeypatch.undo()
            reload_config()


if __name__ == "__main__":
    pytest.main([__file__])
