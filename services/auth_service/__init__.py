"""
Auth service - credential hashing, session lifecycle and registration/login flows.
"""

from .auth_manager import AuthManager, create_auth_manager
from .clock import ManualClock, SystemClock
from .errors import (
    AuthError,
    AuthenticationError,
    ConflictError,
    InvalidDigestError,
    PersistenceError,
    UniqueViolationError,
    ValidationError
)
from .memory_store import InMemoryAuthStore
from .models import AuthResult, Profile, Role, Session, User, ValidatedSession
from .sqlite_store import SQLiteAuthStore

__all__ = [
    'AuthManager',
    'create_auth_manager',
    'ManualClock',
    'SystemClock',
    'AuthError',
    'AuthenticationError',
    'ConflictError',
    'InvalidDigestError',
    'PersistenceError',
    'UniqueViolationError',
    'ValidationError',
    'InMemoryAuthStore',
    'AuthResult',
    'Profile',
    'Role',
    'Session',
    'User',
    'ValidatedSession',
    'SQLiteAuthStore'
]
