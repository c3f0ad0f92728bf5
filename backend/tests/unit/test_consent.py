"""
Unit tests for cookie consent preferences.
"""

from datetime import UTC, datetime

import pytest

from core.consent import ConsentPreferences


def test_necessary_is_always_granted():
    prefs = ConsentPreferences()
    assert prefs.necessary is True
    assert prefs.allows("necessary")
    assert not prefs.allows("marketing")


def test_unknown_category_rejected():
    with pytest.raises(ValueError):
        ConsentPreferences().allows("telemetry")


def test_cookie_value_survives_a_round_trip():
    stamp = datetime(2025, 3, 4, 5, 6, 7, tzinfo=UTC)
    prefs = ConsentPreferences(functional=True, analytics=False, marketing=True, version="2", timestamp=stamp)

    restored = ConsentPreferences.from_cookie_value(prefs.to_cookie_value())

    assert restored == prefs


def test_missing_cookie_is_none():
    assert ConsentPreferences.from_cookie_value(None) is None
    assert ConsentPreferences.from_cookie_value("") is None


@pytest.mark.parametrize("raw", ["not-json", "%7B%7D", "%7B%22timestamp%22%3A%22yesterday%22%7D"])
def test_unreadable_cookie_is_discarded(raw):
    assert ConsentPreferences.from_cookie_value(raw) is None


def test_version_bump_requires_reconsent():
    prefs = ConsentPreferences(version="1")
    assert prefs.needs_reconsent("2")
    assert not prefs.needs_reconsent("1")


def test_to_dict_includes_necessary():
    data = ConsentPreferences(analytics=True).to_dict()
    assert data["necessary"] is True
    assert data["analytics"] is True
    assert isinstance(data["timestamp"], str)
