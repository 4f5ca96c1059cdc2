from __future__ import annotations

from typing import Any

from ..errors import ValidationError


def text(value: Any, field: str, label: str | None = None) -> str:
    """Return ``value`` stripped; anything but a non-blank string is a ``ValidationError``."""
    label = label or field.replace("_", " ").capitalize()
    if not isinstance(value, str):
        raise ValidationError(f"{label} must be a string.", details={"field": field})
    value = value.strip()
    if not value:
        raise ValidationError(f"{label} cannot be empty.", details={"field": field})
    return value


def optional_text(value: Any, field: str) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string.", details={"field": field})
    return value.strip() or None


def text_list(values: Any, field: str) -> tuple[str, ...]:
    """Non-blank strings from a list or tuple; blank items are dropped."""
    if values is None:
        return ()
    if not isinstance(values, (list, tuple)):
        raise ValidationError(f"{field} must be a list of strings.", details={"field": field})
    if any(not isinstance(v, str) for v in values):
        raise ValidationError(f"{field} must be a list of strings.", details={"field": field})
    return tuple(v.strip() for v in values if v.strip())
