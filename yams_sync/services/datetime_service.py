"""Datetime parsing: lax input for configuration, strict layouts for the image list."""

from __future__ import annotations

from datetime import datetime

import pendulum

# Image-list timestamps, e.g. 20250101T000001
DEFAULT_LAYOUT = "%Y%m%dT%H%M%S"


def parse_datetime(value: str | datetime, default_tz: str = "UTC") -> datetime:
    """Parse a lax datetime string into a timezone-aware datetime.

    Accepts ISO 8601 variants (``2015-12-31``, ``2015-12-31T10:00:00``,
    ``2015-12-31 10:00+00``) and the compact image-list form
    (``20151231T100000``). Missing timezone defaults to ``default_tz`` and
    missing time components default to zeros.
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=pendulum.timezone(default_tz))  # type: ignore[arg-type]
        return value

    parsed = pendulum.parse(value.strip(), tz=default_tz, strict=False)
    if not isinstance(parsed, pendulum.DateTime):
        # pendulum.parse returns Date for date-only strings
        parsed = pendulum.datetime(
            parsed.year, parsed.month, parsed.day, tz=default_tz  # type: ignore[union-attr]
        )
    return parsed  # type: ignore[return-value]


def parse_layout(value: str, layout: str = DEFAULT_LAYOUT) -> datetime:
    """Parse ``value`` with a strict strptime layout. Raises ValueError."""
    return datetime.strptime(value, layout)


def format_layout(dt: datetime, layout: str = DEFAULT_LAYOUT) -> str:
    """Format ``dt`` with a strptime layout."""
    return dt.strftime(layout)
