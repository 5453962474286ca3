"""
Security utilities for credential validation and token extraction
"""
import re
from typing import Optional

EMAIL_PATTERN = re.compile(r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$')

MIN_PASSWORD_LENGTH = 12


def validate_email(email: str) -> bool:
    """Validate email format"""
    return bool(email) and EMAIL_PATTERN.match(email) is not None


def validate_password_strength(password: str) -> None:
    """
    Validate password strength according to security requirements.

    Enforces:
    - Minimum length: 12 characters
    - At least one uppercase letter (A-Z)
    - At least one lowercase letter (a-z)
    - At least one digit (0-9)
    - At least one special character (!@#$%^&*(),.?":{}|<>])

    Args:
        password: Password string to validate

    Raises:
        ValueError: If password does not meet strength requirements
    """
    if not password:
        raise ValueError("Password cannot be empty")

    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")

    if not re.search(r'[A-Z]', password):
        raise ValueError("Password must contain at least one uppercase letter (A-Z)")

    if not re.search(r'[a-z]', password):
        raise ValueError("Password must contain at least one lowercase letter (a-z)")

    if not re.search(r'[0-9]', password):
        raise ValueError("Password must contain at least one digit (0-9)")

    if not re.search(r'[!@#$%&*(),.?":{}|<>\[\]^]', password):
        raise ValueError("Password must contain at least one special character")


def extract_token(auth_token: Optional[str], authorization: Optional[str]) -> Optional[str]:
    """
    Pick the JWT from the auth_token cookie (preferred) or a Bearer Authorization header.
    """
    if auth_token:
        return auth_token
    if authorization and authorization.startswith("Bearer "):
        return authorization[len("Bearer "):].strip() or None
    return None
