"""Subscription and purchase domain entities."""

from dataclasses import dataclass
from datetime import datetime

from ..entitlements import (
    ACTIVE_PURCHASE_STATUSES,
    PAID_PURCHASE_STATUSES,
    BillingInterval,
    ContentAccessLevel,
    PurchaseType,
    SubscriptionStatus,
    granted_level_for_interval,
)
from ..timeutils import ensure_utc


@dataclass(frozen=True)
class SubscriptionRecord:
    """Snapshot of a UserSubscription row joined with its plan interval."""

    id: str
    user_id: str
    plan_id: str
    status: SubscriptionStatus
    interval: BillingInterval
    start_date: datetime | None = None
    end_date: datetime | None = None  # None means lifetime
    auto_renew: bool = False
    payment_id: str | None = None
    plan_name: str | None = None

    def __post_init__(self):
        if isinstance(self.status, str):
            object.__setattr__(self, "status", SubscriptionStatus(self.status))
        if isinstance(self.interval, str):
            object.__setattr__(self, "interval", BillingInterval(self.interval))
        object.__setattr__(self, "start_date", ensure_utc(self.start_date))
        object.__setattr__(self, "end_date", ensure_utc(self.end_date))

    def is_active_at(self, now: datetime) -> bool:
        """ACTIVE status and not past its end date.

        The end date wins over a stale ACTIVE status that the expiry sweep
        has not flipped yet.
        """
        if self.status != SubscriptionStatus.ACTIVE:
            return False
        return self.end_date is None or self.end_date > now

    @property
    def granted_level(self) -> ContentAccessLevel:
        return granted_level_for_interval(self.interval)


@dataclass(frozen=True)
class PurchaseRecord:
    """Snapshot of a Purchase ledger row.

    ``interval`` is the interval of the plan mapped from ``product_id``, or
    None when the product is not mapped to any plan.
    """

    id: str
    type: PurchaseType
    product_id: str
    status: str | None = None
    subscription_id: str | None = None
    user_id: str | None = None
    interval: BillingInterval | None = None
    created_at: datetime | None = None

    def __post_init__(self):
        if isinstance(self.type, str):
            object.__setattr__(self, "type", PurchaseType(self.type))
        if isinstance(self.interval, str):
            object.__setattr__(self, "interval", BillingInterval(self.interval))
        object.__setattr__(self, "created_at", ensure_utc(self.created_at))

    @property
    def payment_reference(self) -> str:
        """Identifier a UserSubscription uses to point back at this purchase."""
        return self.subscription_id or self.id

    @property
    def is_active(self) -> bool:
        status = (self.status or "").lower()
        if self.type == PurchaseType.SUBSCRIPTION:
            return status in ACTIVE_PURCHASE_STATUSES
        # One-time purchases never lapse, but only count once paid and mapped to a plan
        return self.interval is not None and status in PAID_PURCHASE_STATUSES

    @property
    def granted_level(self) -> ContentAccessLevel | None:
        if self.interval is not None:
            return granted_level_for_interval(self.interval)
        if self.type == PurchaseType.SUBSCRIPTION:
            return ContentAccessLevel.PREMIUM
        return None
