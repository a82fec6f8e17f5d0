"""
Input shape checks for registration and password changes.
"""

import re
from typing import Tuple

from services.auth_service.errors import ValidationError
from services.auth_service.password_hasher import MAX_PASSWORD_BYTES

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
USERNAME_PATTERN = re.compile(r"^[A-Za-z0-9_.-]{3,32}$")


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def validate_email(email: str) -> str:
    normalized = normalize_email(email)
    if not normalized:
        raise ValidationError("email", "Email is required")
    if not EMAIL_PATTERN.match(normalized):
        raise ValidationError("email", "Please enter a valid email address")
    return normalized


def validate_username(username: str) -> str:
    cleaned = (username or "").strip()
    if not cleaned:
        raise ValidationError("username", "Username is required")
    if not USERNAME_PATTERN.match(cleaned):
        raise ValidationError(
            "username",
            "Username must be 3-32 characters of letters, digits, '_', '.' or '-'"
        )
    return cleaned


def validate_password(password: str, min_length: int) -> str:
    if not password:
        raise ValidationError("password", "Password is required")
    if len(password) < min_length:
        raise ValidationError("password", f"Password must be at least {min_length} characters")
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValidationError("password", f"Password must be at most {MAX_PASSWORD_BYTES} bytes")
    return password


def validate_registration(email: str, password: str, username: str,
                          min_password_length: int) -> Tuple[str, str]:
    """
    Validate registration input

    Returns:
        (normalized email, cleaned username)

    Raises:
        ValidationError: On the first field that fails
    """
    normalized_email = validate_email(email)
    cleaned_username = validate_username(username)
    validate_password(password, min_password_length)
    return normalized_email, cleaned_username
