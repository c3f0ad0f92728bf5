"""
Reconciliation planning between the purchase ledger and the subscription
projection.

The ledger (Purchase rows) records what the billing provider reported. The
projection (UserSubscription rows) is derived from it. Both webhook sync and
the repair jobs use these functions, so repair is the normal write path
rather than a special case.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime

from .domain import PurchaseRecord, SubscriptionRecord
from .entitlements import PurchaseType, SubscriptionStatus

logger = logging.getLogger(__name__)

_PROVIDER_STATUS_MAP = {
    "active": SubscriptionStatus.ACTIVE,
    "trialing": SubscriptionStatus.ACTIVE,
    "canceled": SubscriptionStatus.CANCELLED,
    "cancelled": SubscriptionStatus.CANCELLED,
    "paused": SubscriptionStatus.PAUSED,
}


def map_provider_status(provider_status: str | None) -> SubscriptionStatus:
    """Map a billing-provider status string onto SubscriptionStatus.

    Unrecognized statuses (past_due, unpaid, incomplete, ...) map to EXPIRED
    so an unknown state denies access instead of granting it.
    """
    if not provider_status:
        return SubscriptionStatus.EXPIRED
    mapped = _PROVIDER_STATUS_MAP.get(provider_status.strip().lower())
    if mapped is None:
        logger.info("Unmapped provider status %r treated as EXPIRED", provider_status)
        return SubscriptionStatus.EXPIRED
    return mapped


@dataclass(frozen=True)
class MissingProjection:
    """An active subscription purchase with no UserSubscription behind it."""

    purchase_id: str
    user_id: str
    payment_id: str
    product_id: str
    started_at: datetime | None = None


def needs_projection(purchase: PurchaseRecord) -> bool:
    """Whether a purchase should be backed by a UserSubscription row."""
    return (
        purchase.type == PurchaseType.SUBSCRIPTION
        and purchase.user_id is not None
        and purchase.is_active
    )


def find_missing_projections(
    purchases: Iterable[PurchaseRecord],
    subscriptions: Iterable[SubscriptionRecord],
) -> list[MissingProjection]:
    """List active subscription purchases lacking a matching subscription row.

    A purchase is matched by payment id against rows of any status, so a
    purchase that already produced a row (even one later cancelled or
    expired) is never projected twice.
    """
    known_payment_ids = {s.payment_id for s in subscriptions if s.payment_id}
    missing: list[MissingProjection] = []
    seen: set[str] = set()

    for purchase in purchases:
        if not needs_projection(purchase):
            continue
        reference = purchase.payment_reference
        if reference in known_payment_ids or reference in seen:
            continue
        seen.add(reference)
        missing.append(
            MissingProjection(
                purchase_id=purchase.id,
                user_id=purchase.user_id,
                payment_id=reference,
                product_id=purchase.product_id,
                started_at=purchase.created_at,
            )
        )

    return missing
