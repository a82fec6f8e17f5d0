"""
Password reset - single-use, short-lived tokens that let a user set a new password.
"""

import uuid
from datetime import timedelta
from typing import Optional

from services.auth_service.clock import SystemClock
from services.auth_service.errors import PersistenceError, UniqueViolationError
from services.auth_service.models import PasswordResetToken
from services.auth_service.password_hasher import PasswordHasher
from services.auth_service.session_store import SessionStore
from services.auth_service.store import AuthStore
from services.auth_service.token_generator import TokenGenerator
from services.auth_service.validators import normalize_email, validate_password
from infrastructure.monitoring.logging_service import get_logger, log_auth_event, mask_token
from infrastructure.resilience.retry_service import RetryService


class PasswordResetService:
    """Issues and redeems password reset tokens"""

    def __init__(
        self,
        store: AuthStore,
        hasher: PasswordHasher,
        session_store: SessionStore,
        token_generator: Optional[TokenGenerator] = None,
        clock=None,
        ttl_minutes: int = 60,
        min_password_length: int = 6,
        retry_service: Optional[RetryService] = None
    ):
        self.store = store
        self.hasher = hasher
        self.session_store = session_store
        self.clock = clock or SystemClock()
        self.token_generator = token_generator or TokenGenerator(clock=self.clock)
        self.ttl_minutes = ttl_minutes
        self.min_password_length = min_password_length
        self.retry_service = retry_service or RetryService()
        self.logger = get_logger(__name__)

    def create_reset_token(self, email: str) -> Optional[str]:
        """
        Create a password reset token for a user

        Args:
            email: User's email address

        Returns:
            Reset token if the email is registered, None otherwise
        """
        user = self.store.get_user_by_email(normalize_email(email))
        if user is None:
            self.logger.warning("Password reset requested for unregistered email")
            return None

        def _attempt() -> PasswordResetToken:
            now = self.clock.now()
            record = PasswordResetToken(
                token_id=str(uuid.uuid4()),
                user_id=user.user_id,
                token=self.token_generator.generate_token(),
                created_at=now,
                expires_at=now + timedelta(minutes=self.ttl_minutes)
            )
            return self.store.insert_reset_token(record)

        record = self.retry_service.retry_with_backoff(
            _attempt,
            retriable=(UniqueViolationError,),
            max_retries=1
        )

        log_auth_event(self.logger, "password_reset_requested", user_id=user.user_id)
        return record.token

    def validate_reset_token(self, token: str) -> Optional[str]:
        """
        Validate a password reset token

        Returns:
            User ID if the token is unused and unexpired, None otherwise
        """
        if not token:
            return None
        record = self.store.find_reset_token(token)
        if record is None or not record.is_usable(self.clock.now()):
            return None
        return record.user_id

    def reset_password(self, token: str, new_password: str) -> bool:
        """
        Reset password using a valid token

        The token is consumed, the lockout cleared and every session of the user
        invalidated.

        Raises:
            ValidationError: If the new password is malformed
        """
        validate_password(new_password, self.min_password_length)

        user_id = self.validate_reset_token(token)
        if user_id is None:
            return False

        digest = self.hasher.hash(new_password)
        now = self.clock.now()

        with self.store.transaction():
            # Losing this race to a concurrent redemption means the token is spent
            if not self.store.mark_reset_token_used(token, now):
                return False
            try:
                self.store.update_password(user_id, digest, now)
                self.store.reset_login_failures(user_id, now)
                self.session_store.invalidate_user_sessions(user_id)
            except Exception:
                if not self.store.supports_transactions:
                    self._release_token(token)
                raise

        log_auth_event(self.logger, "password_reset_completed", user_id=user_id)
        return True

    def _release_token(self, token: str):
        """Give the token back when the store cannot roll back for us"""
        try:
            self.store.release_reset_token(token)
            self.logger.warning(f"Released reset token {mask_token(token)} after a failed reset")
        except PersistenceError:
            self.logger.error(f"Failed to release reset token {mask_token(token)}", exc_info=True)

    def cleanup_expired_reset_tokens(self) -> int:
        """Clean up expired and used reset tokens"""
        count = self.store.delete_stale_reset_tokens(self.clock.now())
        if count > 0:
            self.logger.info(f"Cleaned up {count} expired/used reset tokens")
        return count
