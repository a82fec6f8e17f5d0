"""
User, session and profile data models for the authentication service.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Optional


class Role(str, Enum):
    """User roles"""
    ADMIN = "ADMIN"
    USER = "USER"


@dataclass
class User:
    """User data model"""
    user_id: str
    email: str
    username: str
    password_digest: str = field(repr=False)
    created_at: datetime
    updated_at: datetime
    role: Role = Role.USER
    last_login_at: Optional[datetime] = None
    failed_login_attempts: int = 0
    locked_until: Optional[datetime] = None

    def is_locked(self, now: datetime) -> bool:
        """Whether a lockout is in force at `now`"""
        return self.locked_until is not None and now < self.locked_until


@dataclass
class Session:
    """User session data model"""
    session_id: str
    user_id: str
    token: str = field(repr=False)
    expires_at: datetime
    last_active_at: datetime
    created_at: datetime
    updated_at: datetime
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    remember_me: bool = False

    def is_expired(self, now: datetime) -> bool:
        # A session is live only while now < expires_at
        return now >= self.expires_at


@dataclass
class Profile:
    """Optional display data attached 1:1 to a user"""
    profile_id: str
    user_id: str
    created_at: datetime
    updated_at: datetime
    bio: Optional[str] = None
    avatar_url: Optional[str] = None
    social_links: Dict[str, str] = field(default_factory=dict)


@dataclass
class PasswordResetToken:
    """Single-use password reset token"""
    token_id: str
    user_id: str
    token: str = field(repr=False)
    expires_at: datetime
    created_at: datetime
    used_at: Optional[datetime] = None

    def is_usable(self, now: datetime) -> bool:
        return self.used_at is None and now < self.expires_at


@dataclass
class ValidatedSession:
    """A live session joined with its owning user"""
    session: Session
    user: User


@dataclass
class AuthResult:
    """Outcome of a successful register or login"""
    user: User
    session: Optional[Session] = None
