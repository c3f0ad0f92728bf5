"""
Permission evaluation for gated content.

Pure functions over Viewer/ContentItem snapshots. The caller loads the
viewer's subscription and purchase records; nothing in here touches the
database or trusts the denormalized membership label on the user row.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta

from .domain import ContentItem, PurchaseRecord, SubscriptionRecord, Viewer
from .entitlements import (
    BillingInterval,
    ContentAccessLevel,
    MembershipLevel,
    PreviewLevel,
    SearchPolicy,
    levels_up_to,
    membership_label_for_interval,
)
from .timeutils import utcnow


@dataclass(frozen=True)
class Entitlement:
    """Effective access a viewer holds at a point in time."""

    authenticated: bool
    level: ContentAccessLevel
    interval: BillingInterval | None = None
    source: SubscriptionRecord | PurchaseRecord | None = None

    @property
    def is_paid(self) -> bool:
        return self.source is not None


GUEST_ENTITLEMENT = Entitlement(authenticated=False, level=ContentAccessLevel.PUBLIC)


def resolve_entitlement(viewer: Viewer | None, now: datetime | None = None) -> Entitlement:
    """Find the single active record granting the highest level.

    Only records active at ``now`` are considered: ACTIVE subscriptions whose
    end date has not passed, subscription purchases the provider reports as
    active or trialing, and paid one-time purchases mapped to a plan.
    """
    if viewer is None:
        return GUEST_ENTITLEMENT

    now = now or utcnow()
    best = Entitlement(authenticated=True, level=ContentAccessLevel.REGISTERED)

    for subscription in viewer.subscriptions:
        if not subscription.is_active_at(now):
            continue
        if best.source is None or subscription.granted_level.rank > best.level.rank:
            best = Entitlement(
                authenticated=True,
                level=subscription.granted_level,
                interval=subscription.interval,
                source=subscription,
            )

    for purchase in viewer.purchases:
        level = purchase.granted_level
        if not purchase.is_active or level is None:
            continue
        if best.source is None or level.rank > best.level.rank:
            best = Entitlement(
                authenticated=True,
                level=level,
                interval=purchase.interval,
                source=purchase,
            )

    return best


@dataclass(frozen=True)
class AccessPolicy:
    """Configurable parts of the access rules."""

    search_policy: SearchPolicy = SearchPolicy.OPEN
    guest_preview: bool = True


class PermissionEvaluator:
    """
    Decides what a viewer may search and view.

    viewable_levels and can_view_content share resolve_entitlement, so the
    two can never disagree. Under SearchPolicy.OPEN searchable_levels is the
    same set as viewable_levels for every viewer.
    """

    def __init__(self, policy: AccessPolicy | None = None):
        self.policy = policy or AccessPolicy()

    def entitlement(self, viewer: Viewer | None, now: datetime | None = None) -> Entitlement:
        return resolve_entitlement(viewer, now)

    def viewable_levels(
        self, viewer: Viewer | None, now: datetime | None = None
    ) -> frozenset[ContentAccessLevel]:
        """Access levels whose content the viewer may read in full."""
        return levels_up_to(resolve_entitlement(viewer, now).level)

    def can_search(self, viewer: Viewer | None) -> bool:
        if viewer is None:
            return self.policy.search_policy == SearchPolicy.OPEN
        return True

    def searchable_levels(
        self, viewer: Viewer | None, now: datetime | None = None
    ) -> frozenset[ContentAccessLevel]:
        """Access levels a viewer's search queries may match against."""
        if not self.can_search(viewer):
            return frozenset()
        return self.viewable_levels(viewer, now)

    def can_view_content(
        self, viewer: Viewer | None, item: ContentItem, now: datetime | None = None
    ) -> bool:
        return item.access_level in self.viewable_levels(viewer, now)

    def content_preview_level(
        self, viewer: Viewer | None, item: ContentItem, now: datetime | None = None
    ) -> PreviewLevel:
        if self.can_view_content(viewer, item, now):
            return PreviewLevel.FULL
        if item.access_level == ContentAccessLevel.PUBLIC:
            return PreviewLevel.PREVIEW
        # Registered users may preview gated content
        if viewer is not None:
            return PreviewLevel.PREVIEW
        if self.policy.guest_preview:
            return PreviewLevel.PREVIEW
        return PreviewLevel.NONE

    def has_active_subscription(self, viewer: Viewer | None, now: datetime | None = None) -> bool:
        return resolve_entitlement(viewer, now).is_paid

    def membership_label(self, viewer: Viewer | None, now: datetime | None = None) -> MembershipLevel:
        """Recomputed display label for the viewer."""
        return membership_label_for_interval(resolve_entitlement(viewer, now).interval)

    def is_subscription_expiring_soon(
        self,
        viewer: Viewer | None,
        days: int = 7,
        now: datetime | None = None,
    ) -> bool:
        """True when the entitling subscription ends within ``days`` days."""
        now = now or utcnow()
        source = resolve_entitlement(viewer, now).source
        if not isinstance(source, SubscriptionRecord) or source.end_date is None:
            return False
        return now < source.end_date <= now + timedelta(days=days)
