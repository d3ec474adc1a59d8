"""Timestamp helpers for listing end times and bid timestamps."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from ..bidding.errors import ValidationError


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO-8601 string or epoch milliseconds into an aware UTC datetime."""
    if value is None or value == "":
        raise ValidationError("timestamp missing")
    if isinstance(value, bool):
        raise ValidationError("timestamp must be ISO-8601 or epoch milliseconds")
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError) as exc:
            raise ValidationError("timestamp out of range") from exc
    value = str(value)
    try:
        if value.endswith("Z"):
            value = value[:-1] + "+00:00"
        dt = datetime.fromisoformat(value)
    except ValueError as exc:
        raise ValidationError("timestamp is not ISO-8601 compatible") from exc
    if dt.tzinfo is None:
        raise ValidationError("timestamp must include timezone information")
    return dt.astimezone(timezone.utc)


def to_epoch_ms(value: datetime) -> int:
    return int(value.timestamp() * 1000)
