"""Timezone helpers shared by the domain and service layers."""

import calendar
from datetime import UTC, datetime

from .entitlements import BillingInterval


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


def ensure_utc(value: datetime | None) -> datetime | None:
    """Treat naive datetimes as UTC.

    SQLite hands back naive values for timezone-aware columns.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def add_months(start: datetime, months: int) -> datetime:
    """Add calendar months, clamping to the last day of the target month."""
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return start.replace(year=year, month=month, day=day)


def compute_end_date(
    start: datetime,
    interval: BillingInterval,
    interval_count: int = 1,
) -> datetime | None:
    """End of the paid period starting at ``start``; None for lifetime plans."""
    if interval == BillingInterval.LIFETIME:
        return None
    count = max(interval_count, 1)
    if interval == BillingInterval.YEAR:
        return add_months(start, 12 * count)
    return add_months(start, count)


def parse_unix_timestamp(value) -> datetime | None:
    """Convert a provider epoch-seconds value into an aware datetime."""
    if value in (None, ""):
        return None
    try:
        return datetime.fromtimestamp(int(value), tz=UTC)
    except (TypeError, ValueError, OverflowError):
        return None
