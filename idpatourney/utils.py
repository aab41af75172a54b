"""Utility functions for the idpatourney application."""

from __future__ import annotations

import datetime
from typing import Any

from .errors import ValidationError


def parse_timestamp(value: Any) -> datetime.datetime | None:
    """Coerce epoch milliseconds, ISO-8601 strings or datetimes to aware UTC.

    Clients calculate optimistically before sync and send epoch milliseconds,
    Firestore hands back timezone-aware datetimes.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime.datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=datetime.timezone.utc)
        return value
    if isinstance(value, bool):
        raise ValidationError(f"Invalid timestamp: {value!r}")
    if isinstance(value, (int, float)):
        return datetime.datetime.fromtimestamp(value / 1000, tz=datetime.timezone.utc)
    if isinstance(value, str):
        try:
            parsed = datetime.datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            raise ValidationError(f"Invalid timestamp: {value!r}") from None
        return parse_timestamp(parsed)
    raise ValidationError(f"Invalid timestamp: {value!r}")


def to_millis(value: datetime.datetime | None) -> int | None:
    """Convert a datetime to epoch milliseconds."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=datetime.timezone.utc)
    return int(value.timestamp() * 1000)


def serialize(value: Any) -> Any:
    """Make Firestore data JSON friendly; datetimes become epoch milliseconds."""
    if isinstance(value, datetime.datetime):
        return to_millis(value)
    if isinstance(value, dict):
        return {k: serialize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [serialize(v) for v in value]
    return value


def snapshot_to_dict(snapshot: Any) -> dict[str, Any] | None:
    """Return the document data with its id, or None if it does not exist."""
    if not snapshot.exists:
        return None
    data = snapshot.to_dict() or {}
    data["id"] = snapshot.id
    return data


def form_errors_message(form: Any) -> str:
    """Flatten WTForms errors into one message."""
    parts = []
    for field_name, errors in form.errors.items():
        for error in errors:
            parts.append(f"{field_name}: {error}")
    return "; ".join(parts) or "Validation failed."
