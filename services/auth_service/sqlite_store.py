"""
SQLite-backed auth store - handles user, session and profile persistence.
"""

import json
import sqlite3
import threading
from contextlib import contextmanager, nullcontext
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, List, Optional

from services.auth_service.errors import PersistenceError, RecordNotFoundError, UniqueViolationError
from services.auth_service.models import PasswordResetToken, Profile, Role, Session, User
from infrastructure.monitoring.logging_service import get_logger


def _to_db(value: Optional[datetime]) -> Optional[str]:
    """Store timestamps as fixed-width UTC ISO strings so they sort lexically"""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _from_db(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class SQLiteAuthStore:
    """
    Store for user data persistence and operations.
    Handles database interactions for users, sessions, profiles and reset tokens.

    Each call opens its own connection unless the calling thread is inside
    transaction(), in which case the transaction's connection is reused. A
    ":memory:" database has one shared connection, so other threads wait until
    an open transaction on it finishes.
    """

    supports_transactions = True

    def __init__(self, db_path: str, timeout: float = 5.0):
        """
        Initialize the store

        Args:
            db_path: Path to the SQLite database file, or ":memory:"
            timeout: Seconds to wait on a locked database
        """
        self.logger = get_logger(__name__)
        self.db_path = db_path
        self.timeout = timeout
        self._local = threading.local()
        self._shared_conn: Optional[sqlite3.Connection] = None
        # Serializes use of the shared connection; held for a whole transaction
        self._shared_lock = threading.RLock()

        if db_path == ":memory:":
            # Every new connection to :memory: is a fresh database, so keep one
            self._shared_conn = self._open()
        else:
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        self._init_database()

    def _open(self) -> sqlite3.Connection:
        if self._shared_conn is not None:
            return self._shared_conn
        conn = sqlite3.connect(self.db_path, timeout=self.timeout, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def _release(self, conn: sqlite3.Connection):
        if conn is not self._shared_conn:
            conn.close()

    def _guard(self, needed: bool = True):
        if needed and self._shared_conn is not None:
            return self._shared_lock
        return nullcontext()

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        tx_conn = getattr(self._local, "conn", None)
        with self._guard(tx_conn is None):
            conn = tx_conn or self._open()
            try:
                yield conn
                if tx_conn is None:
                    conn.commit()
            except sqlite3.IntegrityError as e:
                if tx_conn is None:
                    conn.rollback()
                raise self._translate_integrity_error(e) from e
            except sqlite3.Error as e:
                if tx_conn is None:
                    conn.rollback()
                self.logger.error(f"Database error: {e}", exc_info=True)
                raise PersistenceError(f"Store operation failed: {e}") from e
            finally:
                if tx_conn is None:
                    self._release(conn)

    def _translate_integrity_error(self, error: sqlite3.IntegrityError) -> PersistenceError:
        message = str(error)
        if "UNIQUE constraint failed" in message:
            # "UNIQUE constraint failed: users.email"
            column = message.split(":", 1)[1].strip().split(",")[0].split(".")[-1]
            return UniqueViolationError(column)
        self.logger.error(f"Database integrity error: {message}")
        return PersistenceError(f"Integrity error: {message}")

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Run the enclosed store calls on one connection, committed or rolled back together"""
        if getattr(self._local, "conn", None) is not None:
            # Nested transactions join the outer one
            yield
            return

        with self._guard():
            conn = self._open()
            self._local.conn = conn
            try:
                yield
                conn.commit()
            except BaseException:
                conn.rollback()
                raise
            finally:
                self._local.conn = None
                self._release(conn)

    def _init_database(self):
        """Initialize auth database tables"""
        with self._connection() as conn:
            cursor = conn.cursor()

            # Users table
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    user_id TEXT PRIMARY KEY,
                    email TEXT UNIQUE NOT NULL,
                    username TEXT UNIQUE NOT NULL,
                    password_digest TEXT NOT NULL,
                    role TEXT NOT NULL DEFAULT 'USER' CHECK (role IN ('ADMIN', 'USER')),
                    last_login_at TEXT,
                    failed_login_attempts INTEGER NOT NULL DEFAULT 0,
                    locked_until TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)

            # Sessions table
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS sessions (
                    session_id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    token TEXT UNIQUE NOT NULL,
                    expires_at TEXT NOT NULL,
                    ip_address TEXT,
                    user_agent TEXT,
                    last_active_at TEXT NOT NULL,
                    remember_me BOOLEAN DEFAULT 0,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    FOREIGN KEY (user_id) REFERENCES users (user_id) ON DELETE CASCADE
                )
            """)
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_sessions_user_id ON sessions (user_id)")
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_sessions_expires_at ON sessions (expires_at)")

            # Profiles table
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS profiles (
                    profile_id TEXT PRIMARY KEY,
                    user_id TEXT UNIQUE NOT NULL,
                    bio TEXT,
                    avatar_url TEXT,
                    social_links TEXT DEFAULT '{}',
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    FOREIGN KEY (user_id) REFERENCES users (user_id) ON DELETE CASCADE
                )
            """)

            # Password reset tokens table
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS password_reset_tokens (
                    token_id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    token TEXT NOT NULL UNIQUE,
                    created_at TEXT NOT NULL,
                    expires_at TEXT NOT NULL,
                    used_at TEXT,
                    FOREIGN KEY (user_id) REFERENCES users (user_id) ON DELETE CASCADE
                )
            """)

            # Run database migrations
            self._run_migrations(cursor)

        self.logger.info(f"Auth database initialized at {self.db_path}")

    def _run_migrations(self, cursor):
        """Run database schema migrations"""
        cursor.execute("PRAGMA table_info(users)")
        user_columns = [column[1] for column in cursor.fetchall()]

        if 'locked_until' not in user_columns:
            self.logger.info("Adding locked_until column to users table")
            cursor.execute("ALTER TABLE users ADD COLUMN locked_until TEXT")
            self.logger.info("Migration completed: locked_until column added")

        cursor.execute("PRAGMA table_info(sessions)")
        session_columns = [column[1] for column in cursor.fetchall()]

        if 'remember_me' not in session_columns:
            self.logger.info("Adding remember_me column to sessions table")
            cursor.execute("ALTER TABLE sessions ADD COLUMN remember_me BOOLEAN DEFAULT 0")
            self.logger.info("Migration completed: remember_me column added")

    # ------------------------------------------------------------------
    # Row mapping
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_user(row: sqlite3.Row) -> User:
        return User(
            user_id=row["user_id"],
            email=row["email"],
            username=row["username"],
            password_digest=row["password_digest"],
            role=Role(row["role"]),
            last_login_at=_from_db(row["last_login_at"]),
            failed_login_attempts=row["failed_login_attempts"],
            locked_until=_from_db(row["locked_until"]),
            created_at=_from_db(row["created_at"]),
            updated_at=_from_db(row["updated_at"])
        )

    @staticmethod
    def _row_to_session(row: sqlite3.Row) -> Session:
        return Session(
            session_id=row["session_id"],
            user_id=row["user_id"],
            token=row["token"],
            expires_at=_from_db(row["expires_at"]),
            ip_address=row["ip_address"],
            user_agent=row["user_agent"],
            last_active_at=_from_db(row["last_active_at"]),
            remember_me=bool(row["remember_me"]),
            created_at=_from_db(row["created_at"]),
            updated_at=_from_db(row["updated_at"])
        )

    @staticmethod
    def _row_to_profile(row: sqlite3.Row) -> Profile:
        return Profile(
            profile_id=row["profile_id"],
            user_id=row["user_id"],
            bio=row["bio"],
            avatar_url=row["avatar_url"],
            social_links=json.loads(row["social_links"] or "{}"),
            created_at=_from_db(row["created_at"]),
            updated_at=_from_db(row["updated_at"])
        )

    @staticmethod
    def _row_to_reset_token(row: sqlite3.Row) -> PasswordResetToken:
        return PasswordResetToken(
            token_id=row["token_id"],
            user_id=row["user_id"],
            token=row["token"],
            created_at=_from_db(row["created_at"]),
            expires_at=_from_db(row["expires_at"]),
            used_at=_from_db(row["used_at"])
        )

    @staticmethod
    def _require_updated(cursor: sqlite3.Cursor, user_id: str):
        if cursor.rowcount == 0:
            raise RecordNotFoundError(f"No user {user_id}")

    def _fetch_user(self, column: str, value: str) -> Optional[User]:
        with self._connection() as conn:
            row = conn.execute(f"SELECT * FROM users WHERE {column} = ?", (value,)).fetchone()
        return self._row_to_user(row) if row else None

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_user_by_id(self, user_id: str) -> Optional[User]:
        return self._fetch_user("user_id", user_id)

    def get_user_by_email(self, email: str) -> Optional[User]:
        return self._fetch_user("email", email)

    def get_user_by_username(self, username: str) -> Optional[User]:
        return self._fetch_user("username", username)

    def find_session(self, token: str) -> Optional[Session]:
        with self._connection() as conn:
            row = conn.execute("SELECT * FROM sessions WHERE token = ?", (token,)).fetchone()
        return self._row_to_session(row) if row else None

    def list_user_sessions(self, user_id: str) -> List[Session]:
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT * FROM sessions WHERE user_id = ? ORDER BY created_at DESC",
                (user_id,)
            ).fetchall()
        return [self._row_to_session(row) for row in rows]

    def get_profile(self, user_id: str) -> Optional[Profile]:
        with self._connection() as conn:
            row = conn.execute("SELECT * FROM profiles WHERE user_id = ?", (user_id,)).fetchone()
        return self._row_to_profile(row) if row else None

    def find_reset_token(self, token: str) -> Optional[PasswordResetToken]:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM password_reset_tokens WHERE token = ?", (token,)
            ).fetchone()
        return self._row_to_reset_token(row) if row else None

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def insert_user(self, user: User) -> User:
        with self._connection() as conn:
            conn.execute("""
                INSERT INTO users (user_id, email, username, password_digest, role,
                                   last_login_at, failed_login_attempts, locked_until,
                                   created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (user.user_id, user.email, user.username, user.password_digest,
                  user.role.value, _to_db(user.last_login_at), user.failed_login_attempts,
                  _to_db(user.locked_until), _to_db(user.created_at), _to_db(user.updated_at)))
        return user

    def update_password(self, user_id: str, password_digest: str, now: datetime) -> None:
        with self._connection() as conn:
            cursor = conn.execute("""
                UPDATE users SET password_digest = ?, updated_at = ? WHERE user_id = ?
            """, (password_digest, _to_db(now), user_id))
        self._require_updated(cursor, user_id)

    def increment_failed_logins(self, user_id: str, now: datetime) -> int:
        with self._connection() as conn:
            cursor = conn.execute("""
                UPDATE users
                SET failed_login_attempts = failed_login_attempts + 1, updated_at = ?
                WHERE user_id = ?
            """, (_to_db(now), user_id))
            row = conn.execute(
                "SELECT failed_login_attempts FROM users WHERE user_id = ?", (user_id,)
            ).fetchone()
        self._require_updated(cursor, user_id)
        return row[0]

    def lock_user(self, user_id: str, locked_until: datetime, now: datetime) -> None:
        with self._connection() as conn:
            cursor = conn.execute("""
                UPDATE users SET locked_until = ?, updated_at = ? WHERE user_id = ?
            """, (_to_db(locked_until), _to_db(now), user_id))
        self._require_updated(cursor, user_id)

    def record_login_success(self, user_id: str, now: datetime) -> None:
        with self._connection() as conn:
            cursor = conn.execute("""
                UPDATE users
                SET failed_login_attempts = 0, locked_until = NULL,
                    last_login_at = ?, updated_at = ?
                WHERE user_id = ?
            """, (_to_db(now), _to_db(now), user_id))
        self._require_updated(cursor, user_id)

    def reset_login_failures(self, user_id: str, now: datetime) -> None:
        with self._connection() as conn:
            cursor = conn.execute("""
                UPDATE users
                SET failed_login_attempts = 0, locked_until = NULL, updated_at = ?
                WHERE user_id = ?
            """, (_to_db(now), user_id))
        self._require_updated(cursor, user_id)

    def delete_user(self, user_id: str) -> bool:
        with self._connection() as conn:
            cursor = conn.execute("DELETE FROM users WHERE user_id = ?", (user_id,))
        return cursor.rowcount > 0

    def insert_session(self, session: Session) -> Session:
        with self._connection() as conn:
            conn.execute("""
                INSERT INTO sessions (session_id, user_id, token, expires_at, ip_address,
                                      user_agent, last_active_at, remember_me,
                                      created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (session.session_id, session.user_id, session.token, _to_db(session.expires_at),
                  session.ip_address, session.user_agent, _to_db(session.last_active_at),
                  session.remember_me, _to_db(session.created_at), _to_db(session.updated_at)))
        return session

    def touch_session(self, token: str, now: datetime) -> None:
        with self._connection() as conn:
            conn.execute("""
                UPDATE sessions SET last_active_at = ?, updated_at = ? WHERE token = ?
            """, (_to_db(now), _to_db(now), token))

    def delete_session(self, token: str) -> bool:
        with self._connection() as conn:
            cursor = conn.execute("DELETE FROM sessions WHERE token = ?", (token,))
        return cursor.rowcount > 0

    def delete_user_sessions(self, user_id: str, except_token: Optional[str] = None) -> int:
        with self._connection() as conn:
            if except_token is None:
                cursor = conn.execute("DELETE FROM sessions WHERE user_id = ?", (user_id,))
            else:
                cursor = conn.execute(
                    "DELETE FROM sessions WHERE user_id = ? AND token != ?",
                    (user_id, except_token)
                )
        return cursor.rowcount

    def delete_expired_sessions(self, now: datetime) -> int:
        with self._connection() as conn:
            cursor = conn.execute("DELETE FROM sessions WHERE expires_at <= ?", (_to_db(now),))
        return cursor.rowcount

    def upsert_profile(self, profile: Profile) -> Profile:
        with self._connection() as conn:
            conn.execute("""
                INSERT INTO profiles (profile_id, user_id, bio, avatar_url, social_links,
                                      created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (user_id) DO UPDATE SET
                    bio = excluded.bio,
                    avatar_url = excluded.avatar_url,
                    social_links = excluded.social_links,
                    updated_at = excluded.updated_at
            """, (profile.profile_id, profile.user_id, profile.bio, profile.avatar_url,
                  json.dumps(profile.social_links), _to_db(profile.created_at),
                  _to_db(profile.updated_at)))
            row = conn.execute(
                "SELECT * FROM profiles WHERE user_id = ?", (profile.user_id,)
            ).fetchone()
        return self._row_to_profile(row)

    def insert_reset_token(self, record: PasswordResetToken) -> PasswordResetToken:
        with self._connection() as conn:
            conn.execute("""
                INSERT INTO password_reset_tokens (token_id, user_id, token, created_at,
                                                   expires_at, used_at)
                VALUES (?, ?, ?, ?, ?, ?)
            """, (record.token_id, record.user_id, record.token, _to_db(record.created_at),
                  _to_db(record.expires_at), _to_db(record.used_at)))
        return record

    def mark_reset_token_used(self, token: str, now: datetime) -> bool:
        with self._connection() as conn:
            cursor = conn.execute("""
                UPDATE password_reset_tokens SET used_at = ?
                WHERE token = ? AND used_at IS NULL
            """, (_to_db(now), token))
        return cursor.rowcount == 1

    def release_reset_token(self, token: str) -> None:
        with self._connection() as conn:
            conn.execute(
                "UPDATE password_reset_tokens SET used_at = NULL WHERE token = ?", (token,)
            )

    def delete_stale_reset_tokens(self, now: datetime) -> int:
        with self._connection() as conn:
            cursor = conn.execute("""
                DELETE FROM password_reset_tokens
                WHERE expires_at <= ? OR used_at IS NOT NULL
            """, (_to_db(now),))
        return cursor.rowcount
