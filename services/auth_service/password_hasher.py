"""
Credential hashing - bcrypt digests with the salt and cost factor embedded.
"""

import secrets
from typing import Optional

import bcrypt

from services.auth_service.errors import InvalidDigestError

# bcrypt ignores everything past the first 72 bytes of a secret
MAX_PASSWORD_BYTES = 72
DEFAULT_ROUNDS = 10


class PasswordHasher:
    """
    One-way password hashing and verification.

    Digests look like ``$2b$10$<22-char salt><31-char hash>``; verify() reads the
    cost and salt back out of the digest, so no other lookup is needed.
    """

    def __init__(self, rounds: int = DEFAULT_ROUNDS):
        self.rounds = rounds
        self._dummy_digest: Optional[str] = None

    def hash(self, plaintext: str) -> str:
        """Hash password using bcrypt"""
        secret = plaintext.encode('utf-8')
        if len(secret) > MAX_PASSWORD_BYTES:
            raise ValueError(f"Password exceeds {MAX_PASSWORD_BYTES} bytes")
        salt = bcrypt.gensalt(rounds=self.rounds)
        return bcrypt.hashpw(secret, salt).decode('utf-8')

    def verify(self, plaintext: str, digest: str) -> bool:
        """
        Verify password against digest

        Returns:
            True on match, False otherwise

        Raises:
            InvalidDigestError: If the digest is not a bcrypt digest
        """
        secret = plaintext.encode('utf-8')
        too_long = len(secret) > MAX_PASSWORD_BYTES
        try:
            # Long secrets still pay the hashing cost but can never match
            matched = bcrypt.checkpw(secret[:MAX_PASSWORD_BYTES], digest.encode('utf-8'))
        except ValueError as e:
            raise InvalidDigestError(f"Malformed password digest: {e}") from e
        return matched and not too_long

    def needs_rehash(self, digest: str) -> bool:
        """Check whether a digest was produced with a different cost factor"""
        return self.cost_of(digest) != self.rounds

    @staticmethod
    def cost_of(digest: str) -> int:
        """Read the cost factor embedded in a digest"""
        parts = digest.split('$')
        # ['', '2b', '10', '<salt+hash>']
        if len(parts) != 4 or not parts[2].isdigit():
            raise InvalidDigestError("Malformed password digest")
        return int(parts[2])

    @property
    def dummy_digest(self) -> str:
        """Digest of a random secret, used to equalize timing for unknown accounts"""
        if self._dummy_digest is None:
            self._dummy_digest = self.hash(secrets.token_hex(16))
        return self._dummy_digest
