"""
Authentication service - handles registration, login, logout and session validation.
Collaborators are injected so the same flows run against SQLite or an in-memory store.
"""

import uuid
from datetime import timedelta
from typing import Dict, Optional

from services.auth_service.clock import SystemClock
from services.auth_service.errors import (
    AuthenticationError,
    ConflictError,
    InvalidDigestError,
    PersistenceError,
    RecordNotFoundError,
    UniqueViolationError,
    ValidationError,
)
from services.auth_service.models import AuthResult, Profile, Role, User, ValidatedSession
from services.auth_service.password_hasher import PasswordHasher
from services.auth_service.password_reset import PasswordResetService
from services.auth_service.session_store import SessionStore
from services.auth_service.session_validator import SessionValidator
from services.auth_service.sqlite_store import SQLiteAuthStore
from services.auth_service.store import AuthStore
from services.auth_service.token_generator import TokenGenerator
from services.auth_service.validators import normalize_email, validate_password, validate_registration
from infrastructure.config.settings import AppConfig, AuthConfig, get_config
from infrastructure.monitoring.logging_service import (
    get_logger,
    log_auth_event,
    log_execution_time,
    mask_token,
)


class AuthManager:
    """
    Main authentication manager service.
    Handles user registration, authentication, session management and profiles.
    """

    def __init__(
        self,
        store: AuthStore,
        config: Optional[AuthConfig] = None,
        clock=None,
        hasher: Optional[PasswordHasher] = None,
        session_store: Optional[SessionStore] = None
    ):
        self.store = store
        self.config = config or AuthConfig()
        self.clock = clock or SystemClock()
        self.logger = get_logger(__name__)

        self.hasher = hasher or PasswordHasher(rounds=self.config.bcrypt_rounds)
        token_generator = TokenGenerator(clock=self.clock, byte_length=self.config.token_bytes)
        self.session_store = session_store or SessionStore(
            store,
            token_generator=token_generator,
            clock=self.clock,
            session_timeout_hours=self.config.session_timeout_hours,
            remember_me_days=self.config.remember_me_days
        )
        self.validator = SessionValidator(self.session_store, store, clock=self.clock)
        self.password_reset = PasswordResetService(
            store,
            self.hasher,
            self.session_store,
            token_generator=token_generator,
            clock=self.clock,
            ttl_minutes=self.config.reset_token_ttl_minutes,
            min_password_length=self.config.password_min_length
        )

        # Pay for the dummy digest up front so the first unknown-email login is not slower
        _ = self.hasher.dummy_digest

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(
        self,
        email: str,
        password: str,
        username: str,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None
    ) -> AuthResult:
        """
        Register a new user

        Args:
            email: Email address (stored lower-cased)
            password: Plain text password (will be hashed)
            username: Desired username
            ip_address: Client address for the auto-login session
            user_agent: Client user-agent for the auto-login session

        Returns:
            AuthResult with the new user and, when auto-login is on, a session

        Raises:
            ValidationError: Malformed input or registration disabled
            ConflictError: Email or username already taken
            PersistenceError: Store failure; nothing is left behind
        """
        if not self.config.allow_self_registration:
            raise ValidationError("registration", "Self-registration is disabled")

        email, username = validate_registration(
            email, password, username, self.config.password_min_length
        )

        if self.store.get_user_by_email(email) is not None:
            self.logger.warning("Registration rejected: email already exists")
            raise ConflictError("email")
        if self.store.get_user_by_username(username) is not None:
            self.logger.warning(f"Registration rejected: username already exists: {username}")
            raise ConflictError("username")

        digest = self.hasher.hash(password)
        now = self.clock.now()
        user = User(
            user_id=str(uuid.uuid4()),
            email=email,
            username=username,
            password_digest=digest,
            role=Role.USER,
            created_at=now,
            updated_at=now
        )

        with log_execution_time(self.logger, "register", username=username):
            with self.store.transaction():
                self._insert_user(user)
                session = None
                if self.config.auto_login_on_register:
                    try:
                        session = self.session_store.create_session(
                            user.user_id, ip_address=ip_address, user_agent=user_agent
                        )
                    except Exception:
                        if not self.store.supports_transactions:
                            self._compensate_registration(user.user_id)
                        raise

        log_auth_event(self.logger, "register", user_id=user.user_id, username=username)
        return AuthResult(user=user, session=session)

    def _insert_user(self, user: User):
        try:
            self.store.insert_user(user)
        except UniqueViolationError as e:
            # Lost a race with a concurrent registration
            if e.column in ("email", "username"):
                self.logger.warning(f"Registration rejected by store: {e.column} already exists")
                raise ConflictError(e.column) from e
            raise

    def _compensate_registration(self, user_id: str):
        """Undo a user insert when the store cannot roll back for us"""
        try:
            self.store.delete_user(user_id)
            self.logger.warning(f"Rolled back registration of user {user_id}")
        except PersistenceError:
            self.logger.error(f"Failed to roll back registration of user {user_id}", exc_info=True)

    # ------------------------------------------------------------------
    # Login / logout
    # ------------------------------------------------------------------

    def login(
        self,
        email: str,
        password: str,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        remember_me: bool = False
    ) -> AuthResult:
        """
        Authenticate user and create session

        Args:
            email: Email address
            password: Password
            ip_address: Client address snapshot for the session
            user_agent: Client user-agent snapshot for the session
            remember_me: If True, create extended session

        Returns:
            AuthResult with the refreshed user and a new session

        Raises:
            AuthenticationError: Unknown email, wrong password or locked account
        """
        password = password or ""
        user = self.store.get_user_by_email(normalize_email(email))

        if user is None:
            # Burn the same hashing cost as a real check
            self.hasher.verify(password, self.hasher.dummy_digest)
            log_auth_event(self.logger, "login_failure", reason="unknown_email")
            raise AuthenticationError()

        now = self.clock.now()
        if user.is_locked(now):
            self._verify(password, user)
            log_auth_event(self.logger, "login_failure", user_id=user.user_id, reason="locked")
            raise AuthenticationError()

        if not self._verify(password, user):
            self._record_failure(user)
            raise AuthenticationError()

        try:
            self.store.record_login_success(user.user_id, now)
        except RecordNotFoundError as e:
            # Deleted between lookup and update
            log_auth_event(self.logger, "login_failure", user_id=user.user_id, reason="user_deleted")
            raise AuthenticationError() from e
        if self.hasher.needs_rehash(user.password_digest):
            self.store.update_password(user.user_id, self.hasher.hash(password), now)
            self.logger.info(f"Re-hashed password for user {user.user_id} at cost {self.hasher.rounds}")

        session = self.session_store.create_session(
            user.user_id, ip_address=ip_address, user_agent=user_agent, remember_me=remember_me
        )

        log_auth_event(self.logger, "login_success", user_id=user.user_id, remember_me=remember_me)
        return AuthResult(user=self.store.get_user_by_id(user.user_id) or user, session=session)

    def _verify(self, password: str, user: User) -> bool:
        try:
            return self.hasher.verify(password, user.password_digest)
        except InvalidDigestError:
            self.logger.error(f"Stored password digest is malformed for user {user.user_id}")
            raise

    def _record_failure(self, user: User):
        now = self.clock.now()
        try:
            attempts = self.store.increment_failed_logins(user.user_id, now)
        except RecordNotFoundError:
            log_auth_event(self.logger, "login_failure", user_id=user.user_id, reason="user_deleted")
            return
        log_auth_event(
            self.logger, "login_failure",
            user_id=user.user_id, reason="bad_password", failed_attempts=attempts
        )

        if attempts >= self.config.max_login_attempts:
            locked_until = now + timedelta(minutes=self.config.lockout_duration_minutes)
            self.store.lock_user(user.user_id, locked_until, now)
            log_auth_event(
                self.logger, "lockout",
                user_id=user.user_id, locked_until=locked_until.isoformat()
            )

    def logout(self, token: str) -> None:
        """
        Logout by invalidating the session for token

        Never raises: an unknown token or a store failure still leaves the
        caller logged out from its own point of view.
        """
        try:
            self.session_store.invalidate_session(token)
            log_auth_event(self.logger, "logout", session=mask_token(token))
        except PersistenceError:
            self.logger.error(f"Error during logout of {mask_token(token)}", exc_info=True)

    def validate_session(self, token: Optional[str]) -> Optional[ValidatedSession]:
        """Return the live session and its user, or None when not authenticated"""
        return self.validator.get_valid_session(token)

    # ------------------------------------------------------------------
    # Account management
    # ------------------------------------------------------------------

    def change_password(self, token: str, current_password: str, new_password: str) -> int:
        """
        Change the password of the user owning token

        Returns:
            Number of other sessions that were invalidated

        Raises:
            AuthenticationError: Session not valid or current password wrong
            ValidationError: New password malformed
        """
        validated = self.validate_session(token)
        if validated is None or not self._verify(current_password or "", validated.user):
            raise AuthenticationError()

        validate_password(new_password, self.config.password_min_length)
        digest = self.hasher.hash(new_password)
        now = self.clock.now()
        user_id = validated.user.user_id

        with self.store.transaction():
            self.store.update_password(user_id, digest, now)
            invalidated = self.session_store.invalidate_user_sessions(user_id, except_token=token)

        log_auth_event(self.logger, "password_changed", user_id=user_id, sessions_invalidated=invalidated)
        return invalidated

    def get_profile(self, user_id: str) -> Optional[Profile]:
        return self.store.get_profile(user_id)

    def update_profile(
        self,
        user_id: str,
        bio: Optional[str] = None,
        avatar_url: Optional[str] = None,
        social_links: Optional[Dict[str, str]] = None
    ) -> Profile:
        """
        Create or update the profile of a user

        Arguments left as None keep their stored value.
        """
        if self.store.get_user_by_id(user_id) is None:
            raise ValidationError("user_id", "Unknown user")
        if avatar_url is not None and not avatar_url.startswith(("http://", "https://")):
            raise ValidationError("avatar_url", "Avatar URL must be an http(s) URL")
        if social_links is not None and not all(
            isinstance(k, str) and isinstance(v, str) for k, v in social_links.items()
        ):
            raise ValidationError("social_links", "Social links must map names to URLs")

        now = self.clock.now()
        existing = self.store.get_profile(user_id)
        profile = existing or Profile(
            profile_id=str(uuid.uuid4()),
            user_id=user_id,
            created_at=now,
            updated_at=now
        )
        if bio is not None:
            profile.bio = bio
        if avatar_url is not None:
            profile.avatar_url = avatar_url
        if social_links is not None:
            profile.social_links = dict(social_links)
        profile.updated_at = now

        return self.store.upsert_profile(profile)

    def request_password_reset(self, email: str) -> Optional[str]:
        return self.password_reset.create_reset_token(email)

    def reset_password(self, token: str, new_password: str) -> bool:
        return self.password_reset.reset_password(token, new_password)

    def cleanup_expired(self) -> Dict[str, int]:
        """Purge expired sessions and stale reset tokens"""
        return {
            "sessions": self.session_store.purge_expired_sessions(),
            "reset_tokens": self.password_reset.cleanup_expired_reset_tokens(),
        }


def create_auth_manager(
    config: Optional[AppConfig] = None,
    store: Optional[AuthStore] = None,
    clock=None
) -> AuthManager:
    """
    Wire an AuthManager from configuration

    Args:
        config: Application config (defaults to the global configuration)
        store: Store to use (defaults to SQLite at config.database.path)
        clock: Time source (defaults to the system clock)
    """
    config = config or get_config()
    if store is None:
        store = SQLiteAuthStore(config.database.path, timeout=config.database.timeout_seconds)

    get_logger(__name__).info("Auth manager configured", extra=config.auth.to_dict())
    return AuthManager(store, config=config.auth, clock=clock)
