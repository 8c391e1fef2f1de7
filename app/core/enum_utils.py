"""
Helpers for VARCHAR-backed enum columns.

Status and type columns are String(50) holding UPPERCASE values. Pydantic
schemas validate input against ``str, Enum`` classes; database rows keep
plain strings, so code reading either side goes through these helpers.
"""

from enum import Enum
from typing import Any, Optional


def get_enum_value(value: Any) -> Optional[str]:
    """
    Safely get string value from an enum or string.

    Examples:
        >>> get_enum_value(OrderStatus.PENDING)
        'PENDING'
        >>> get_enum_value("PENDING")
        'PENDING'
        >>> get_enum_value(None)
    """
    if value is None:
        return None
    if isinstance(value, Enum):
        return value.value
    return str(value)


def normalize_to_uppercase(value: Any) -> Optional[str]:
    """Uppercase and trim an enum-like input ("pending " -> "PENDING")."""
    value = get_enum_value(value)
    if value is None:
        return None
    return value.strip().upper()
