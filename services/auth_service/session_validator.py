"""
Session validation - the single gate every authenticated request goes through.
"""

from typing import Optional

from services.auth_service.clock import SystemClock
from services.auth_service.models import ValidatedSession
from services.auth_service.session_store import SessionStore
from services.auth_service.store import AuthQueries
from infrastructure.monitoring.logging_service import get_logger, mask_token


class SessionValidator:
    """
    Decides whether a token belongs to a live session.

    Missing, expired and orphaned sessions all come back as None so callers
    cannot tell which one they hit.
    """

    def __init__(self, session_store: SessionStore, users: AuthQueries, clock=None):
        self.session_store = session_store
        self.users = users
        self.clock = clock or SystemClock()
        self.logger = get_logger(__name__)

    def get_valid_session(self, token: Optional[str]) -> Optional[ValidatedSession]:
        """
        Validate and refresh user session

        Args:
            token: Opaque session token presented by the client

        Returns:
            ValidatedSession (session and owning user) if live, None otherwise
        """
        if not token:
            return None

        session = self.session_store.find_session(token)
        if session is None:
            return None

        now = self.clock.now()
        if session.is_expired(now):
            self.logger.debug(f"Session {mask_token(token)} expired at {session.expires_at.isoformat()}")
            return None

        # Only join to the user once the session is known to be live
        user = self.users.get_user_by_id(session.user_id)
        if user is None:
            return None

        self.session_store.touch_session(token)
        session.last_active_at = now
        session.updated_at = now

        return ValidatedSession(session=session, user=user)
