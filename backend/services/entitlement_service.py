"""
Loads the records access decisions are made from.

Builds Viewer snapshots (user + active subscriptions + purchases) for the
permission evaluator. Purchases are annotated with the interval of the plan
their product id is mapped to.
"""

import logging
from collections.abc import Iterable
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.domain import PurchaseRecord, SubscriptionRecord, Viewer
from core.entitlements import BillingInterval, SubscriptionStatus
from infrastructure.database.models import Purchase, SubscriptionPlan, User, UserSubscription

logger = logging.getLogger(__name__)


def subscription_record(row: UserSubscription) -> SubscriptionRecord:
    """Snapshot a UserSubscription row (plan must be loaded)."""
    return SubscriptionRecord(
        id=row.id,
        user_id=row.user_id,
        plan_id=row.plan_id,
        status=row.status,
        interval=row.plan.interval,
        start_date=row.start_date,
        end_date=row.end_date,
        auto_renew=row.auto_renew,
        payment_id=row.payment_id,
        plan_name=row.plan.name,
    )


def purchase_record(
    row: Purchase,
    intervals: dict[str, BillingInterval] | None = None,
) -> PurchaseRecord:
    """Snapshot a Purchase row, attaching the mapped plan interval if known."""
    return PurchaseRecord(
        id=row.id,
        type=row.type,
        product_id=row.product_id,
        status=row.status,
        subscription_id=row.subscription_id,
        user_id=row.user_id,
        interval=(intervals or {}).get(row.product_id),
        created_at=row.created_at,
    )


class EntitlementService:
    """Read side of the entitlement model."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_user(self, user_id: str) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()

    async def plan_intervals_for_products(
        self, product_ids: Iterable[str]
    ) -> dict[str, BillingInterval]:
        """Map provider price ids to the interval of the plan sold under them."""
        product_ids = {p for p in product_ids if p}
        if not product_ids:
            return {}
        result = await self.db.execute(
            select(SubscriptionPlan.provider_price_id, SubscriptionPlan.interval).where(
                SubscriptionPlan.provider_price_id.in_(product_ids)
            )
        )
        return {price_id: BillingInterval(interval) for price_id, interval in result.all()}

    async def load_viewer(self, user: User) -> Viewer:
        """
        Snapshot a user together with their entitling records.

        Only ACTIVE subscription rows are loaded; the evaluator still applies
        its own end-date check.
        """
        subs_result = await self.db.execute(
            select(UserSubscription).where(
                UserSubscription.user_id == user.id,
                UserSubscription.status == SubscriptionStatus.ACTIVE.value,
            )
        )
        subscriptions = subs_result.scalars().all()

        purchases_result = await self.db.execute(
            select(Purchase).where(Purchase.user_id == user.id)
        )
        purchases = purchases_result.scalars().all()
        intervals = await self.plan_intervals_for_products(p.product_id for p in purchases)

        return Viewer(
            id=user.id,
            email=user.email,
            membership_level=user.membership_level,
            subscriptions=tuple(subscription_record(s) for s in subscriptions),
            purchases=tuple(purchase_record(p, intervals) for p in purchases),
        )

    async def load_viewer_by_id(self, user_id: str) -> Optional[Viewer]:
        user = await self.get_user(user_id)
        if user is None or not user.is_active:
            return None
        return await self.load_viewer(user)
