"""Helpers shared with the HTTP edge: validators, HTTP dates and text sanitizing."""

import hashlib
from datetime import UTC, datetime
from email.utils import format_datetime, parsedate_to_datetime

from protean.exceptions import ValidationError

from commerce import settings


def as_utc(value: datetime | None) -> datetime | None:
    """Normalize to an aware UTC datetime. Naive values are taken as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def truncate_to_seconds(value: datetime | None) -> datetime | None:
    value = as_utc(value)
    return value.replace(microsecond=0) if value else None


def weak_etag(entity_id: str, updated_at: datetime | None) -> str:
    """Weak cache validator derived from ``(id, updated_at)``."""
    stamp = as_utc(updated_at).isoformat() if updated_at else ""
    digest = hashlib.sha256(f"{entity_id}|{stamp}".encode()).hexdigest()
    return f'W/"{digest[:32]}"'


def parse_http_date(value: str | None) -> datetime | None:
    """Parse an RFC 7231 HTTP-date (``If-Unmodified-Since``) into aware UTC."""
    if value is None or not value.strip():
        return None
    try:
        parsed = parsedate_to_datetime(value.strip())
    except (TypeError, ValueError) as exc:
        raise ValidationError({"if_unmodified_since": ["Invalid HTTP date"]}) from exc
    return as_utc(parsed)


def format_http_date(value: datetime) -> str:
    return format_datetime(as_utc(value), usegmt=True)


def sanitize_text(value: str | None, limit: int = settings.SANITIZED_TEXT_MAX_LENGTH) -> str:
    """Strip control characters (keeping newline, carriage return and tab) and truncate."""
    if not value:
        return ""
    cleaned = "".join(ch for ch in value if ch in "\n\r\t" or (ord(ch) >= 0x20 and ord(ch) != 0x7F))
    cleaned = cleaned.strip()
    if limit > 0 and len(cleaned) > limit:
        cleaned = cleaned[:limit]
    return cleaned
