import re
from typing import Optional

from app.core.errors import AppError, ErrorKind
from app.models.allowlist import (
    EMAIL_MAX_LENGTH,
    LABEL_MAX_LENGTH,
    NOTES_MAX_LENGTH,
)
from app.schemas.enums import AllowedEmailStatus

# local@domain.tld: no whitespace or extra "@", at least one dot after the "@"
EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

STATUS_VALUES = [status.value for status in AllowedEmailStatus]

__all__ = [
    "EMAIL_MAX_LENGTH",
    "LABEL_MAX_LENGTH",
    "NOTES_MAX_LENGTH",
    "normalize_email",
    "assert_email",
    "assert_status",
    "ensure_max_length",
]


def normalize_email(email: str) -> str:
    return email.strip().lower()


def assert_email(value: Optional[str]) -> str:
    """Validates an email address and returns it trimmed (case preserved)."""
    if not value or not value.strip():
        raise AppError(
            ErrorKind.VALIDATION, "EMAIL_REQUIRED", "An email address is required."
        )

    trimmed = value.strip()
    if len(trimmed) > EMAIL_MAX_LENGTH:
        raise AppError(
            ErrorKind.VALIDATION,
            "EMAIL_TOO_LONG",
            f"The email address is too long (max {EMAIL_MAX_LENGTH} characters).",
            {"max": EMAIL_MAX_LENGTH},
        )

    if not EMAIL_PATTERN.match(trimmed):
        raise AppError(
            ErrorKind.VALIDATION, "EMAIL_INVALID", "The email address format is invalid."
        )

    return trimmed


def assert_status(value: Optional[str]) -> AllowedEmailStatus:
    normalized = (value or "").strip().lower()
    try:
        return AllowedEmailStatus(normalized)
    except ValueError:
        raise AppError(
            ErrorKind.VALIDATION,
            "STATUS_INVALID",
            f"status must be one of {'/'.join(STATUS_VALUES)}.",
            {"allowed": STATUS_VALUES},
        ) from None


def ensure_max_length(value: Optional[str], max_length: int) -> Optional[str]:
    """
    Trims ``value``; blank collapses to None so empty strings are never stored.
    """
    if value is None:
        return None
    trimmed = value.strip()
    if not trimmed:
        return None
    if len(trimmed) > max_length:
        raise AppError(
            ErrorKind.VALIDATION,
            "FIELD_TOO_LONG",
            f"Value is too long (max {max_length} characters).",
            {"max": max_length},
        )
    return trimmed
