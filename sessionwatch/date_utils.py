"""Timestamp helpers shared by the status pipeline."""
from __future__ import annotations

from datetime import datetime, timezone


def _parse_datetime_token(token: str) -> datetime | None:
    cleaned = token.strip()
    if not cleaned:
        return None
    try:
        return datetime.fromisoformat(cleaned.replace("Z", "+00:00"))
    except ValueError:
        pass
    for fmt in ("%Y-%m-%d %H:%M:%S", "%Y/%m/%d %H:%M:%S"):
        try:
            return datetime.strptime(cleaned, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    return None


def iso_to_epoch(value: str) -> float:
    """Seconds since the epoch for an ISO timestamp; 0.0 for empty or invalid input."""
    if not value:
        return 0.0
    parsed = _parse_datetime_token(value)
    if not parsed:
        return 0.0
    dt = parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return dt.timestamp()
