"""
Unit tests for the content gate.
"""

from datetime import UTC, datetime, timedelta

import pytest

from core.domain import ContentItem, SubscriptionRecord, Viewer
from core.entitlements import BillingInterval, ContentAccessLevel, PreviewLevel, SubscriptionStatus
from core.permissions import AccessPolicy, PermissionEvaluator
from services.content_gate import LOCKED_NOTICE, ContentGate, preview_text

NOW = datetime(2025, 6, 1, tzinfo=UTC)

PREMIUM_POST = ContentItem(
    slug="premium-post",
    title="Premium",
    access_level=ContentAccessLevel.PREMIUM,
    content="the whole article",
    excerpt="short excerpt",
    preview_content="first paragraph",
)


def _subscriber(end_date) -> Viewer:
    return Viewer(
        id="user-1",
        subscriptions=[
            SubscriptionRecord(
                id="us-1",
                user_id="user-1",
                plan_id="plan-1",
                status=SubscriptionStatus.ACTIVE,
                interval=BillingInterval.MONTH,
                end_date=end_date,
            )
        ],
    )


@pytest.fixture
def gate() -> ContentGate:
    return ContentGate(PermissionEvaluator())


def test_subscriber_gets_full_content(gate):
    decision = gate.evaluate(PREMIUM_POST, _subscriber(NOW + timedelta(days=5)), NOW)
    assert decision.is_full
    assert decision.content == "the whole article"
    assert not decision.requires_auth
    assert not decision.requires_subscription


def test_guest_gets_preview_and_auth_prompt(gate):
    decision = gate.evaluate(PREMIUM_POST, None, NOW)
    assert decision.kind == PreviewLevel.PREVIEW
    assert decision.content == "first paragraph"
    assert decision.requires_auth
    assert not decision.requires_subscription
    assert decision.required_level == ContentAccessLevel.PREMIUM


def test_registered_user_gets_upgrade_prompt(gate):
    decision = gate.evaluate(PREMIUM_POST, Viewer(id="user-2"), NOW)
    assert decision.kind == PreviewLevel.PREVIEW
    assert decision.requires_subscription
    assert not decision.requires_auth


def test_lapsed_subscription_is_gated_immediately(gate):
    decision = gate.evaluate(PREMIUM_POST, _subscriber(NOW - timedelta(minutes=1)), NOW)
    assert not decision.is_full
    assert decision.content != "the whole article"


def test_guest_preview_disabled_returns_nothing():
    gate = ContentGate(PermissionEvaluator(AccessPolicy(guest_preview=False)))
    decision = gate.evaluate(PREMIUM_POST, None, NOW)
    assert decision.kind == PreviewLevel.NONE
    assert decision.content is None
    assert decision.requires_auth


def test_preview_text_fallbacks():
    assert preview_text(PREMIUM_POST) == "first paragraph"
    assert preview_text(ContentItem(slug="a", excerpt="only excerpt")) == "only excerpt"
    assert preview_text(ContentItem(slug="b")) == LOCKED_NOTICE
