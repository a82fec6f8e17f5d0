"""
Persistence capabilities consumed by the authentication service.

Reads and writes are split into two protocols so a component that only needs to
look things up can be handed an AuthQueries and nothing more.
"""

from datetime import datetime
from typing import ContextManager, List, Optional, Protocol

from services.auth_service.models import PasswordResetToken, Profile, Session, User


class AuthQueries(Protocol):
    """Read-only access to users, sessions, profiles and reset tokens"""

    def get_user_by_id(self, user_id: str) -> Optional[User]: ...

    def get_user_by_email(self, email: str) -> Optional[User]: ...

    def get_user_by_username(self, username: str) -> Optional[User]: ...

    def find_session(self, token: str) -> Optional[Session]: ...

    def list_user_sessions(self, user_id: str) -> List[Session]: ...

    def get_profile(self, user_id: str) -> Optional[Profile]: ...

    def find_reset_token(self, token: str) -> Optional[PasswordResetToken]: ...


class AuthMutations(Protocol):
    """
    Writes against the same tables.

    Implementations raise UniqueViolationError on unique-constraint collisions,
    RecordNotFoundError when an update names a user that does not exist, and
    PersistenceError for any other store failure. touch_session and the delete
    methods treat missing rows as a no-op.
    """

    supports_transactions: bool

    def transaction(self) -> ContextManager[None]:
        """Group writes so they commit or roll back together (a no-op when unsupported)"""
        ...

    def insert_user(self, user: User) -> User: ...

    def update_password(self, user_id: str, password_digest: str, now: datetime) -> None: ...

    def increment_failed_logins(self, user_id: str, now: datetime) -> int:
        """Atomically bump the counter and return its new value"""
        ...

    def lock_user(self, user_id: str, locked_until: datetime, now: datetime) -> None: ...

    def record_login_success(self, user_id: str, now: datetime) -> None:
        """Reset the failure counter and lock, stamp last_login_at"""
        ...

    def reset_login_failures(self, user_id: str, now: datetime) -> None:
        """Reset the failure counter and lock without touching last_login_at"""
        ...

    def delete_user(self, user_id: str) -> bool:
        """Delete a user; sessions, profile and reset tokens cascade"""
        ...

    def insert_session(self, session: Session) -> Session: ...

    def touch_session(self, token: str, now: datetime) -> None: ...

    def delete_session(self, token: str) -> bool: ...

    def delete_user_sessions(self, user_id: str, except_token: Optional[str] = None) -> int: ...

    def delete_expired_sessions(self, now: datetime) -> int: ...

    def upsert_profile(self, profile: Profile) -> Profile: ...

    def insert_reset_token(self, record: PasswordResetToken) -> PasswordResetToken: ...

    def mark_reset_token_used(self, token: str, now: datetime) -> bool:
        """Mark an unused token used; False if it was already used or is unknown"""
        ...

    def release_reset_token(self, token: str) -> None:
        """Clear used_at again; undoes mark_reset_token_used on stores without transactions"""
        ...

    def delete_stale_reset_tokens(self, now: datetime) -> int: ...


class AuthStore(AuthQueries, AuthMutations, Protocol):
    """A store offering both capabilities"""
