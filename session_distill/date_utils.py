"""Timestamp conversions between transcript ISO strings and epoch milliseconds."""
from __future__ import annotations

from datetime import datetime, timezone


def _parse_datetime_token(token: str) -> datetime | None:
    cleaned = token.strip()
    if not cleaned:
        return None
    try:
        parsed = datetime.fromisoformat(cleaned.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def iso_to_epoch_ms(value: str | None) -> int:
    """Convert an ISO-8601 timestamp to epoch milliseconds (0 when unparseable)."""
    if not value:
        return 0
    parsed = _parse_datetime_token(value)
    if parsed is None:
        return 0
    return int(parsed.timestamp() * 1000)


def epoch_ms_to_iso(ms: int) -> str:
    dt = datetime.fromtimestamp(ms / 1000, tz=timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")
