"""
Entitlement model for gated content.

This module is the single source of truth for access levels, subscription
states and the ordering between levels. It lives in core/ so services, the
permission evaluator and the API layer can import it without creating
circular dependencies.
"""

from enum import StrEnum


class ContentAccessLevel(StrEnum):
    """Minimum entitlement required to view a content item.

    Declaration order is the access order: each level grants everything the
    levels before it grant.
    """

    PUBLIC = "PUBLIC"
    REGISTERED = "REGISTERED"
    PREMIUM = "PREMIUM"
    EXCLUSIVE = "EXCLUSIVE"

    @property
    def rank(self) -> int:
        return _LEVEL_ORDER.index(self)


_LEVEL_ORDER: tuple[ContentAccessLevel, ...] = tuple(ContentAccessLevel)


class SubscriptionStatus(StrEnum):
    """Lifecycle status of a UserSubscription row."""

    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"
    PAUSED = "PAUSED"


class BillingInterval(StrEnum):
    """Billing interval of a subscription plan."""

    MONTH = "MONTH"
    YEAR = "YEAR"
    LIFETIME = "LIFETIME"


class PurchaseType(StrEnum):
    """Kind of purchase recorded in the billing ledger."""

    ONE_TIME = "ONE_TIME"
    SUBSCRIPTION = "SUBSCRIPTION"


class MembershipLevel(StrEnum):
    """Display label denormalized onto the user row.

    Presentation only. Access decisions recompute entitlement from the
    subscription and purchase records and never read this label.
    """

    FREE = "FREE"
    BASIC = "BASIC"
    PREMIUM = "PREMIUM"
    LIFETIME = "LIFETIME"


class PreviewLevel(StrEnum):
    """How much of a content item a viewer receives."""

    FULL = "full"
    PREVIEW = "preview"
    NONE = "none"


class SearchPolicy(StrEnum):
    """Who may run search queries.

    AUTHENTICATED: guests cannot search at all.
    OPEN: everyone can search; results are limited to the viewer's levels.
    """

    AUTHENTICATED = "authenticated"
    OPEN = "open"


# Provider statuses that keep a subscription purchase entitled
ACTIVE_PURCHASE_STATUSES = frozenset({"active", "trialing"})

# Checkout payment statuses that settle a one-time purchase
PAID_PURCHASE_STATUSES = frozenset({"paid", "no_payment_required"})


def level_satisfies(required: ContentAccessLevel, granted: ContentAccessLevel) -> bool:
    """Return True if ``granted`` is at or above ``required``."""
    return granted.rank >= required.rank


def levels_up_to(level: ContentAccessLevel) -> frozenset[ContentAccessLevel]:
    """Return every access level at or below ``level``."""
    return frozenset(candidate for candidate in _LEVEL_ORDER if candidate.rank <= level.rank)


def granted_level_for_interval(interval: BillingInterval) -> ContentAccessLevel:
    """Access level granted by an active plan of the given interval."""
    if interval == BillingInterval.LIFETIME:
        return ContentAccessLevel.EXCLUSIVE
    return ContentAccessLevel.PREMIUM


def membership_label_for_interval(interval: BillingInterval | None) -> MembershipLevel:
    """Display label for a user whose best active plan has ``interval``."""
    if interval == BillingInterval.LIFETIME:
        return MembershipLevel.LIFETIME
    if interval == BillingInterval.YEAR:
        return MembershipLevel.PREMIUM
    if interval == BillingInterval.MONTH:
        return MembershipLevel.BASIC
    return MembershipLevel.FREE
