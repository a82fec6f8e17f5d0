"""
Opaque token generation and expiry arithmetic.
"""

import secrets
from datetime import datetime, timedelta
from typing import Optional

from services.auth_service.clock import SystemClock

DEFAULT_TOKEN_BYTES = 32


class TokenGenerator:
    """Produces unguessable session identifiers and their expiry timestamps"""

    def __init__(self, clock=None, byte_length: int = DEFAULT_TOKEN_BYTES):
        self.clock = clock or SystemClock()
        self.byte_length = byte_length

    def generate_token(self, byte_length: Optional[int] = None) -> str:
        """Hex-encode byte_length bytes from the OS CSPRNG"""
        return secrets.token_hex(byte_length or self.byte_length)

    def compute_expiry(self, hours: float = 24) -> datetime:
        return self.clock.now() + timedelta(hours=hours)
