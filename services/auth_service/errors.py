"""
Error taxonomy for the authentication service.

Domain errors derive from AuthError. Store implementations raise PersistenceError
(or a subclass) and never let raw driver exceptions escape.
"""

from typing import Optional

# Same message for unknown email, wrong password and locked account
GENERIC_AUTH_FAILURE = "Invalid email or password"


class AuthError(Exception):
    """Base class for authentication domain errors"""


class ValidationError(AuthError):
    """Malformed input; the caller can correct it and retry"""

    def __init__(self, field: str, message: str):
        self.field = field
        self.message = message
        super().__init__(f"{field}: {message}")


class ConflictError(AuthError):
    """A uniqueness rule rejected a registration"""

    def __init__(self, field: str):
        self.field = field
        super().__init__(f"{field} already registered")


class AuthenticationError(AuthError):
    """Credentials were not accepted"""

    def __init__(self):
        super().__init__(GENERIC_AUTH_FAILURE)


class InvalidDigestError(AuthError):
    """A stored password digest could not be parsed"""


class PersistenceError(Exception):
    """The store is unavailable or rejected a write"""


class UniqueViolationError(PersistenceError):
    """A write collided with a unique constraint"""

    def __init__(self, column: str, message: Optional[str] = None):
        self.column = column
        super().__init__(message or f"Unique constraint violated on '{column}'")


class RecordNotFoundError(PersistenceError):
    """An update targeted a row that does not exist"""
