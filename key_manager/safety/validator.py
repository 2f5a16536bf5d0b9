"""Input validation for key manager operations.

Checks user-supplied values before they reach the provisioning API and
builds key names in the "<email> <tags...> <YYYY-MM-DD>" convention.
"""

import re
from datetime import date, datetime
from typing import List, Optional, Sequence

from ..client.models import KeyManagerError

EMAIL_REGEX = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
DATE_REGEX = re.compile(r"^\d{4}-\d{2}-\d{2}$")


class ValidationError(KeyManagerError):
    """Raised when a user-supplied value is invalid."""

    def __init__(self, message: str):
        super().__init__(message, "VALIDATION_ERROR")


def validate_limit(limit: Optional[float]) -> float:
    """Limits must be positive numbers."""
    if limit is None or limit != limit or limit <= 0:
        raise ValidationError("Limit must be a positive number")
    return float(limit)


def validate_email(email: str) -> str:
    if not EMAIL_REGEX.match(email):
        raise ValidationError(f"Invalid email format: {email}")
    return email


def validate_date(value: str) -> str:
    """Dates must be real calendar dates written as YYYY-MM-DD."""
    if not DATE_REGEX.match(value):
        raise ValidationError(f"Invalid date format: {value}. Use YYYY-MM-DD")
    try:
        datetime.strptime(value, "%Y-%m-%d")
    except ValueError:
        raise ValidationError(f"Invalid date: {value}")
    return value


def validate_tags(tags: Sequence[str]) -> List[str]:
    cleaned = [t for t in tags if t.strip()]
    if len(cleaned) != len(tags):
        raise ValidationError("Tags cannot be empty")
    return cleaned


def today() -> str:
    return date.today().isoformat()


def generate_key_name(email: str, tags: Sequence[str], issued: str) -> str:
    """Build "<email> <tag> <tag> <date>", tag whitespace collapsed to "_"."""
    parts = [email]
    tag_string = " ".join(re.sub(r"\s+", "_", tag.strip()) for tag in tags)
    if tag_string:
        parts.append(tag_string)
    parts.append(issued)
    return " ".join(parts)
