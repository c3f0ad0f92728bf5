"""
Unit tests for the entitlement model and time helpers.
"""

from datetime import UTC, datetime, timedelta, timezone

import pytest

from core.entitlements import (
    BillingInterval,
    ContentAccessLevel,
    MembershipLevel,
    granted_level_for_interval,
    level_satisfies,
    levels_up_to,
    membership_label_for_interval,
)
from core.timeutils import add_months, compute_end_date, ensure_utc, parse_unix_timestamp


def test_levels_are_totally_ordered():
    ranks = [level.rank for level in ContentAccessLevel]
    assert ranks == sorted(ranks)
    assert ContentAccessLevel.PUBLIC.rank < ContentAccessLevel.REGISTERED.rank
    assert ContentAccessLevel.PREMIUM.rank < ContentAccessLevel.EXCLUSIVE.rank


@pytest.mark.parametrize("granted", list(ContentAccessLevel))
def test_level_satisfies_everything_below(granted):
    for required in ContentAccessLevel:
        assert level_satisfies(required, granted) == (required.rank <= granted.rank)


def test_levels_up_to_premium():
    assert levels_up_to(ContentAccessLevel.PREMIUM) == {
        ContentAccessLevel.PUBLIC,
        ContentAccessLevel.REGISTERED,
        ContentAccessLevel.PREMIUM,
    }


def test_levels_up_to_exclusive_is_everything():
    assert levels_up_to(ContentAccessLevel.EXCLUSIVE) == frozenset(ContentAccessLevel)


def test_lifetime_grants_exclusive():
    assert granted_level_for_interval(BillingInterval.LIFETIME) == ContentAccessLevel.EXCLUSIVE
    assert granted_level_for_interval(BillingInterval.MONTH) == ContentAccessLevel.PREMIUM
    assert granted_level_for_interval(BillingInterval.YEAR) == ContentAccessLevel.PREMIUM


def test_membership_labels():
    assert membership_label_for_interval(None) == MembershipLevel.FREE
    assert membership_label_for_interval(BillingInterval.MONTH) == MembershipLevel.BASIC
    assert membership_label_for_interval(BillingInterval.YEAR) == MembershipLevel.PREMIUM
    assert membership_label_for_interval(BillingInterval.LIFETIME) == MembershipLevel.LIFETIME


class TestTimeHelpers:
    """Tests for calendar arithmetic and timestamp parsing."""

    def test_add_months_clamps_to_month_end(self):
        start = datetime(2024, 1, 31, 12, 0, tzinfo=UTC)
        assert add_months(start, 1) == datetime(2024, 2, 29, 12, 0, tzinfo=UTC)

    def test_add_months_crosses_year(self):
        start = datetime(2024, 11, 15, tzinfo=UTC)
        assert add_months(start, 3) == datetime(2025, 2, 15, tzinfo=UTC)

    def test_compute_end_date(self):
        start = datetime(2024, 3, 1, tzinfo=UTC)
        assert compute_end_date(start, BillingInterval.MONTH) == datetime(2024, 4, 1, tzinfo=UTC)
        assert compute_end_date(start, BillingInterval.YEAR) == datetime(2025, 3, 1, tzinfo=UTC)
        assert compute_end_date(start, BillingInterval.MONTH, 3) == datetime(2024, 6, 1, tzinfo=UTC)
        assert compute_end_date(start, BillingInterval.LIFETIME) is None

    def test_ensure_utc_treats_naive_as_utc(self):
        naive = datetime(2024, 5, 1, 10, 30)
        assert ensure_utc(naive) == datetime(2024, 5, 1, 10, 30, tzinfo=UTC)
        assert ensure_utc(None) is None

    def test_ensure_utc_converts_offsets(self):
        plus_two = datetime(2024, 5, 1, 12, 0, tzinfo=timezone(timedelta(hours=2)))
        assert ensure_utc(plus_two) == datetime(2024, 5, 1, 10, 0, tzinfo=UTC)

    def test_parse_unix_timestamp(self):
        assert parse_unix_timestamp(0) == datetime(1970, 1, 1, tzinfo=UTC)
        assert parse_unix_timestamp("1700000000") == datetime.fromtimestamp(1700000000, tz=UTC)
        assert parse_unix_timestamp(None) is None
        assert parse_unix_timestamp("") is None
        assert parse_unix_timestamp("soon") is None
