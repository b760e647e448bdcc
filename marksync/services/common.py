from __future__ import annotations

from datetime import datetime, timezone

from dateutil import parser as dt_parser


EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes for timezone-aware columns.
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_millis(value: datetime) -> datetime:
    # Timestamps on the wire carry millisecond precision.
    return value.replace(microsecond=value.microsecond // 1000 * 1000)


def isoformat_utc(value: datetime | None) -> str | None:
    if value is None:
        return None
    return as_utc(value).isoformat(timespec="milliseconds")


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse an ISO 8601 client timestamp into an aware UTC datetime.

    Returns ``None`` for empty values and raises ``ValueError`` when the text
    is not a valid timestamp.
    """
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise ValueError(f"expected an ISO 8601 string, got {type(value).__name__}")
    return as_utc(dt_parser.isoparse(value))
