"""Input checks shared by the lifecycle manager and the creation gateway."""

import re
from typing import Optional

from party_admin.core.config import settings
from party_admin.core.exceptions import ValidationError

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

# bcrypt only accepts this many bytes of input
MAX_PASSWORD_BYTES = 72


def normalize_email(email: str) -> str:
    return email.strip().lower()


def validate_email(email: Optional[str]) -> str:
    """Check the address and return it in its stored (lower-case) form."""
    if not email or not EMAIL_PATTERN.match(email.strip()):
        raise ValidationError("Invalid email format")
    return normalize_email(email)


def validate_password(password: Optional[str]) -> str:
    if not password or len(password) < settings.MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password must be at least {settings.MIN_PASSWORD_LENGTH} characters long"
        )
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValidationError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes long")
    return password


def validate_full_name(full_name: Optional[str]) -> str:
    if full_name is None or not full_name.strip():
        raise ValidationError("Full name is required")
    return full_name.strip()
