"""
Input validation utilities shared by the routers.
"""
import os
import re
from datetime import date, datetime
from enum import Enum
from typing import Optional, Tuple, Type, TypeVar

from core.errors import ValidationError

E = TypeVar("E", bound=Enum)

TIME_PATTERN = re.compile(r"^([0-1]?[0-9]|2[0-3]):[0-5][0-9]$")


def sanitize_filename(filename: str) -> str:
    """
    Sanitize filename to prevent path traversal attacks.

    Args:
        filename: Original filename

    Returns:
        Sanitized filename safe for use
    """
    if not filename:
        raise ValueError("Filename cannot be empty")

    # Remove directory separators and path components
    filename = os.path.basename(filename)

    # Keep alphanumeric, dots, dashes, underscores
    sanitized = "".join(
        char if char.isalnum() or char in "._-" else "_"
        for char in filename
    )

    if len(sanitized) > 255:
        sanitized = sanitized[:255]

    if not sanitized.strip("._"):
        raise ValueError("Filename became empty after sanitization")

    return sanitized


def validate_file_extension(filename: str, allowed_extensions: set) -> bool:
    _, ext = os.path.splitext(filename.lower())
    return ext in allowed_extensions


def validate_file_size(file_size: int, max_size_bytes: int) -> Tuple[bool, Optional[str]]:
    """
    Validate file size.

    Args:
        file_size: File size in bytes
        max_size_bytes: Maximum allowed size in bytes

    Returns:
        Tuple of (is_valid, error_message)
    """
    if file_size <= 0:
        return False, "File size must be greater than 0"

    if file_size > max_size_bytes:
        max_size_mb = max_size_bytes / (1024 * 1024)
        actual_size_mb = file_size / (1024 * 1024)
        return False, f"File too large: {actual_size_mb:.2f}MB (max: {max_size_mb:.2f}MB)"

    return True, None


def is_valid_time(value: str) -> bool:
    """True for HH:MM (24h) strings such as ``9:00`` or ``23:59``."""
    return bool(value) and TIME_PATTERN.match(value) is not None


def time_to_minutes(value: str) -> int:
    hours, minutes = value.split(":")
    return int(hours) * 60 + int(minutes)


def parse_enum(enum_class: Type[E], value: Optional[str], field: str) -> Optional[E]:
    """
    Parse a query/body string into ``enum_class`` by value or by member name.

    Raises:
        ValidationError: If the value matches neither
    """
    if value is None or value == "":
        return None
    try:
        return enum_class(value)
    except ValueError:
        pass
    try:
        return enum_class[value.upper()]
    except KeyError:
        raise ValidationError(f"Invalid {field}: {value}")


def parse_date(value: Optional[str], field: str) -> Optional[date]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).date()
    except ValueError:
        raise ValidationError(f"Invalid {field} date format. Use ISO 8601 format.")
