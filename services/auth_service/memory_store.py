"""
In-memory auth store for tests and throwaway environments.

Enforces the same unique and cascade rules as the SQLite store but has no
transactions, so callers fall back to compensating deletes.
"""

import copy
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Dict, Iterator, List, Optional

from services.auth_service.errors import RecordNotFoundError, UniqueViolationError
from services.auth_service.models import PasswordResetToken, Profile, Session, User


class InMemoryAuthStore:
    """Dict-backed implementation of AuthQueries and AuthMutations"""

    supports_transactions = False

    def __init__(self):
        self._lock = threading.RLock()
        self._users: Dict[str, User] = {}
        self._sessions: Dict[str, Session] = {}  # keyed by token
        self._profiles: Dict[str, Profile] = {}  # keyed by user_id
        self._reset_tokens: Dict[str, PasswordResetToken] = {}  # keyed by token

    @contextmanager
    def transaction(self) -> Iterator[None]:
        yield

    def _require_user(self, user_id: str) -> User:
        user = self._users.get(user_id)
        if user is None:
            raise RecordNotFoundError(f"No user {user_id}")
        return user

    # Queries

    def get_user_by_id(self, user_id: str) -> Optional[User]:
        with self._lock:
            return copy.deepcopy(self._users.get(user_id))

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self._lock:
            for user in self._users.values():
                if user.email == email:
                    return copy.deepcopy(user)
        return None

    def get_user_by_username(self, username: str) -> Optional[User]:
        with self._lock:
            for user in self._users.values():
                if user.username == username:
                    return copy.deepcopy(user)
        return None

    def find_session(self, token: str) -> Optional[Session]:
        with self._lock:
            return copy.deepcopy(self._sessions.get(token))

    def list_user_sessions(self, user_id: str) -> List[Session]:
        with self._lock:
            sessions = [copy.deepcopy(s) for s in self._sessions.values() if s.user_id == user_id]
        return sorted(sessions, key=lambda s: s.created_at, reverse=True)

    def get_profile(self, user_id: str) -> Optional[Profile]:
        with self._lock:
            return copy.deepcopy(self._profiles.get(user_id))

    def find_reset_token(self, token: str) -> Optional[PasswordResetToken]:
        with self._lock:
            return copy.deepcopy(self._reset_tokens.get(token))

    # Mutations

    def insert_user(self, user: User) -> User:
        with self._lock:
            if user.user_id in self._users:
                raise UniqueViolationError("user_id")
            for existing in self._users.values():
                if existing.email == user.email:
                    raise UniqueViolationError("email")
                if existing.username == user.username:
                    raise UniqueViolationError("username")
            self._users[user.user_id] = copy.deepcopy(user)
        return user

    def update_password(self, user_id: str, password_digest: str, now: datetime) -> None:
        with self._lock:
            user = self._require_user(user_id)
            user.password_digest = password_digest
            user.updated_at = now

    def increment_failed_logins(self, user_id: str, now: datetime) -> int:
        with self._lock:
            user = self._require_user(user_id)
            user.failed_login_attempts += 1
            user.updated_at = now
            return user.failed_login_attempts

    def lock_user(self, user_id: str, locked_until: datetime, now: datetime) -> None:
        with self._lock:
            user = self._require_user(user_id)
            user.locked_until = locked_until
            user.updated_at = now

    def record_login_success(self, user_id: str, now: datetime) -> None:
        with self._lock:
            user = self._require_user(user_id)
            user.failed_login_attempts = 0
            user.locked_until = None
            user.last_login_at = now
            user.updated_at = now

    def reset_login_failures(self, user_id: str, now: datetime) -> None:
        with self._lock:
            user = self._require_user(user_id)
            user.failed_login_attempts = 0
            user.locked_until = None
            user.updated_at = now

    def delete_user(self, user_id: str) -> bool:
        with self._lock:
            if self._users.pop(user_id, None) is None:
                return False
            self._profiles.pop(user_id, None)
            self._sessions = {t: s for t, s in self._sessions.items() if s.user_id != user_id}
            self._reset_tokens = {
                t: r for t, r in self._reset_tokens.items() if r.user_id != user_id
            }
            return True

    def insert_session(self, session: Session) -> Session:
        with self._lock:
            self._require_user(session.user_id)
            if session.token in self._sessions:
                raise UniqueViolationError("token")
            self._sessions[session.token] = copy.deepcopy(session)
        return session

    def touch_session(self, token: str, now: datetime) -> None:
        with self._lock:
            session = self._sessions.get(token)
            if session is not None:
                session.last_active_at = now
                session.updated_at = now

    def delete_session(self, token: str) -> bool:
        with self._lock:
            return self._sessions.pop(token, None) is not None

    def delete_user_sessions(self, user_id: str, except_token: Optional[str] = None) -> int:
        with self._lock:
            doomed = [
                t for t, s in self._sessions.items()
                if s.user_id == user_id and t != except_token
            ]
            for token in doomed:
                del self._sessions[token]
            return len(doomed)

    def delete_expired_sessions(self, now: datetime) -> int:
        with self._lock:
            doomed = [t for t, s in self._sessions.items() if s.expires_at <= now]
            for token in doomed:
                del self._sessions[token]
            return len(doomed)

    def upsert_profile(self, profile: Profile) -> Profile:
        with self._lock:
            self._require_user(profile.user_id)
            existing = self._profiles.get(profile.user_id)
            if existing is None:
                self._profiles[profile.user_id] = copy.deepcopy(profile)
            else:
                existing.bio = profile.bio
                existing.avatar_url = profile.avatar_url
                existing.social_links = dict(profile.social_links)
                existing.updated_at = profile.updated_at
            return copy.deepcopy(self._profiles[profile.user_id])

    def insert_reset_token(self, record: PasswordResetToken) -> PasswordResetToken:
        with self._lock:
            self._require_user(record.user_id)
            if record.token in self._reset_tokens:
                raise UniqueViolationError("token")
            self._reset_tokens[record.token] = copy.deepcopy(record)
        return record

    def mark_reset_token_used(self, token: str, now: datetime) -> bool:
        with self._lock:
            record = self._reset_tokens.get(token)
            if record is None or record.used_at is not None:
                return False
            record.used_at = now
            return True

    def release_reset_token(self, token: str) -> None:
        with self._lock:
            record = self._reset_tokens.get(token)
            if record is not None:
                record.used_at = None

    def delete_stale_reset_tokens(self, now: datetime) -> int:
        with self._lock:
            doomed = [
                t for t, r in self._reset_tokens.items()
                if r.expires_at <= now or r.used_at is not None
            ]
            for token in doomed:
                del self._reset_tokens[token]
            return len(doomed)
