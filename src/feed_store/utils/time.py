"""Timestamp helpers shared by the schemas and the ranking functions."""

from __future__ import annotations

from datetime import UTC, datetime, tzinfo


def utcnow() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""
    return datetime.now(UTC)


def ensure_aware(value: datetime) -> datetime:
    """Treat naive datetimes coming off the wire as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def to_local(value: datetime, tz: tzinfo | None = None) -> datetime:
    """Convert to the viewer's timezone (the system one when ``tz`` is None)."""
    return ensure_aware(value).astimezone(tz)


def is_same_day(a: datetime, b: datetime, tz: tzinfo | None = None) -> bool:
    """Return True if both instants fall on the same calendar day for the viewer."""
    return to_local(a, tz).date() == to_local(b, tz).date()


def render_date_text(
    value: datetime,
    *,
    now: datetime | None = None,
    tz: tzinfo | None = None,
) -> str:
    """Render a day label: ``Today`` or a medium date such as ``Oct 19, 2026``."""
    current = now or utcnow()
    if is_same_day(value, current, tz):
        return "Today"
    local = to_local(value, tz)
    return f"{local:%b} {local.day}, {local.year}"
