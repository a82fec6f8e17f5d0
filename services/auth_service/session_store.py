"""
Session store accessor - create, find and invalidate persisted sessions.
"""

import uuid
from typing import Optional

from services.auth_service.clock import SystemClock
from services.auth_service.errors import UniqueViolationError
from services.auth_service.models import Session
from services.auth_service.store import AuthStore
from services.auth_service.token_generator import TokenGenerator
from infrastructure.monitoring.logging_service import get_logger, mask_token
from infrastructure.resilience.retry_service import RetryService


class SessionStore:
    """
    Session persistence keyed by opaque token.

    Liveness is not decided here; SessionValidator owns the expiry check.
    """

    def __init__(
        self,
        store: AuthStore,
        token_generator: Optional[TokenGenerator] = None,
        clock=None,
        session_timeout_hours: int = 24,
        remember_me_days: int = 30,
        retry_service: Optional[RetryService] = None
    ):
        self.store = store
        self.clock = clock or SystemClock()
        self.token_generator = token_generator or TokenGenerator(clock=self.clock)
        self.session_timeout_hours = session_timeout_hours
        self.remember_me_days = remember_me_days
        self.retry_service = retry_service or RetryService()
        self.logger = get_logger(__name__)

    def create_session(
        self,
        user_id: str,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        remember_me: bool = False
    ) -> Session:
        """
        Create a new user session

        Args:
            user_id: Owning user
            ip_address: Client address snapshot
            user_agent: Client user-agent snapshot
            remember_me: If True, create extended session (remember_me_days vs session_timeout_hours)

        Returns:
            The persisted Session

        Raises:
            PersistenceError: If the insert fails, or a token collision repeats after one retry
        """
        hours = self.remember_me_days * 24 if remember_me else self.session_timeout_hours

        def _attempt() -> Session:
            now = self.clock.now()
            session = Session(
                session_id=str(uuid.uuid4()),
                user_id=user_id,
                token=self.token_generator.generate_token(),
                expires_at=self.token_generator.compute_expiry(hours),
                ip_address=ip_address,
                user_agent=user_agent,
                last_active_at=now,
                remember_me=remember_me,
                created_at=now,
                updated_at=now
            )
            return self.store.insert_session(session)

        # A fresh token is drawn on the retry
        session = self.retry_service.retry_with_backoff(
            _attempt,
            retriable=(UniqueViolationError,),
            max_retries=1
        )

        self.logger.info(f"Session {mask_token(session.token)} created for user {user_id}")
        return session

    def find_session(self, token: str) -> Optional[Session]:
        """Point lookup by token; expired rows are returned as-is"""
        if not token:
            return None
        return self.store.find_session(token)

    def touch_session(self, token: str):
        self.store.touch_session(token, self.clock.now())

    def invalidate_session(self, token: str) -> None:
        """Delete the session for token. Unknown tokens are ignored."""
        if not token:
            return
        if self.store.delete_session(token):
            self.logger.info(f"Session invalidated: {mask_token(token)}")
        else:
            self.logger.debug(f"No session to invalidate for {mask_token(token)}")

    def invalidate_user_sessions(self, user_id: str, except_token: Optional[str] = None) -> int:
        """Delete every session of a user, optionally keeping one"""
        count = self.store.delete_user_sessions(user_id, except_token=except_token)
        if count:
            self.logger.info(f"Invalidated {count} sessions for user {user_id}")
        return count

    def purge_expired_sessions(self) -> int:
        """Clean up expired sessions"""
        count = self.store.delete_expired_sessions(self.clock.now())
        if count > 0:
            self.logger.info(f"Cleaned up {count} expired sessions")
        return count
