"""Lightweight validation helpers."""

from typing import Any

from ticket_engine.utils.error_handling import ValidationFailedError


def ensure_present(value: Any, field: str) -> None:
    """Raise ValidationFailedError if value is missing or blank."""
    if value is None or (isinstance(value, str) and not value.strip()) or value == []:
        raise ValidationFailedError(f"{field} is required", reason="missing_field")
