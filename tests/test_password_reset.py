"""
Tests for password reset tokens
"""

import os
import tempfile
from unittest.mock import patch

import pytest
from infrastructure.config.settings import AuthConfig
from services.auth_service.auth_manager import AuthManager
from services.auth_service.clock import ManualClock
from services.auth_service.errors import AuthenticationError, PersistenceError, ValidationError
from services.auth_service.memory_store import InMemoryAuthStore
from services.auth_service.sqlite_store import SQLiteAuthStore


class PasswordResetContract:
    """Reset behaviour shared by every store; subclasses provide make_store()"""

    def make_store(self):
        raise NotImplementedError

    def setup_method(self):
        self.clock = ManualClock()
        self.store = self.make_store()
        config = AuthConfig(bcrypt_rounds=4, max_login_attempts=2, reset_token_ttl_minutes=60)
        self.manager = AuthManager(self.store, config=config, clock=self.clock)
        self.registered = self.manager.register("a@x.com", "pw123!", "alice")

    def test_unknown_email_gets_no_token(self):
        assert self.manager.request_password_reset("nobody@x.com") is None

    def test_token_is_hex_and_resolves_to_user(self):
        token = self.manager.request_password_reset("A@X.com")

        assert len(token) == 64
        int(token, 16)
        assert self.manager.password_reset.validate_reset_token(token) == self.registered.user.user_id

    def test_reset_changes_password(self):
        token = self.manager.request_password_reset("a@x.com")

        assert self.manager.reset_password(token, "new-secret") is True

        with pytest.raises(AuthenticationError):
            self.manager.login("a@x.com", "pw123!")
        assert self.manager.login("a@x.com", "new-secret").session is not None

    def test_token_is_single_use(self):
        token = self.manager.request_password_reset("a@x.com")

        assert self.manager.reset_password(token, "new-secret") is True
        assert self.manager.reset_password(token, "another-secret") is False
        assert self.manager.password_reset.validate_reset_token(token) is None

    def test_token_expires(self):
        token = self.manager.request_password_reset("a@x.com")
        self.clock.advance(minutes=61)

        assert self.manager.reset_password(token, "new-secret") is False
        assert self.manager.login("a@x.com", "pw123!").session is not None

    def test_unknown_token_rejected(self):
        assert self.manager.reset_password("f" * 64, "new-secret") is False
        assert self.manager.reset_password("", "new-secret") is False

    def test_short_password_rejected(self):
        token = self.manager.request_password_reset("a@x.com")

        with pytest.raises(ValidationError) as exc_info:
            self.manager.reset_password(token, "abc")

        assert exc_info.value.field == "password"
        # Token survives a rejected attempt
        assert self.manager.password_reset.validate_reset_token(token) is not None

    def test_reset_invalidates_sessions_and_clears_lockout(self):
        user_id = self.registered.user.user_id
        for _ in range(2):
            with pytest.raises(AuthenticationError):
                self.manager.login("a@x.com", "wrong")
        assert self.store.get_user_by_id(user_id).locked_until is not None

        token = self.manager.request_password_reset("a@x.com")
        assert self.manager.reset_password(token, "new-secret") is True

        user = self.store.get_user_by_id(user_id)
        assert user.failed_login_attempts == 0
        assert user.locked_until is None
        assert self.store.list_user_sessions(user_id) == []
        assert self.manager.validate_session(self.registered.session.token) is None

    def test_failed_reset_leaves_token_usable(self):
        """A store failure after the token is claimed does not spend it"""
        token = self.manager.request_password_reset("a@x.com")

        with patch.object(self.store, "update_password", side_effect=PersistenceError("disk full")):
            with pytest.raises(PersistenceError):
                self.manager.reset_password(token, "new-secret")

        assert self.manager.password_reset.validate_reset_token(token) is not None
        assert self.manager.login("a@x.com", "pw123!").session is not None
        assert self.manager.reset_password(token, "new-secret") is True

    def test_cleanup_removes_used_and_expired(self):
        used = self.manager.request_password_reset("a@x.com")
        self.manager.reset_password(used, "new-secret")
        live = self.manager.request_password_reset("a@x.com")

        assert self.manager.password_reset.cleanup_expired_reset_tokens() == 1
        assert self.store.find_reset_token(live) is not None

        self.clock.advance(minutes=60)
        assert self.manager.password_reset.cleanup_expired_reset_tokens() == 1
        assert self.store.find_reset_token(live) is None


class TestInMemoryPasswordReset(PasswordResetContract):

    def make_store(self):
        return InMemoryAuthStore()


class TestSQLitePasswordReset(PasswordResetContract):

    def make_store(self):
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.temp_dir, "test_auth.db")
        return SQLiteAuthStore(self.db_path)

    def teardown_method(self):
        """Clean up test environment"""
        if os.path.exists(self.db_path):
            os.remove(self.db_path)
        os.rmdir(self.temp_dir)


if __name__ == "__main__":
    pytest.main([__file__])
