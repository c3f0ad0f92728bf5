"""
Subscription reconciler.

Owns every write to UserSubscription rows: direct plan purchases, the
expiry sweep, webhook-driven projection of Purchase rows and the repair of
missing projections. Per-user writes take a row lock on the user so two
concurrent activations serialize; the partial unique index on ACTIVE rows
backs that up at the datastore.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.entitlements import (
    ACTIVE_PURCHASE_STATUSES,
    BillingInterval,
    PurchaseType,
    SubscriptionStatus,
    membership_label_for_interval,
)
from core.permissions import resolve_entitlement
from core.reconciliation import MissingProjection, find_missing_projections, map_provider_status
from core.timeutils import compute_end_date, ensure_utc, utcnow
from infrastructure.database.models import Purchase, SubscriptionPlan, User, UserSubscription
from services.entitlement_service import (
    EntitlementService,
    purchase_record,
    subscription_record,
)

logger = logging.getLogger(__name__)


class SubscriptionError(Exception):
    """Base exception for subscription state errors."""

    pass


class PlanNotFoundError(SubscriptionError):
    """Raised when a plan does not exist or is not active."""

    pass


class SubscriptionConflictError(SubscriptionError):
    """Raised when a write would leave a user with two ACTIVE subscriptions."""

    pass


@dataclass
class PaymentDetails:
    """How a new subscription was paid for."""

    payment_id: Optional[str] = None
    payment_method: Optional[str] = None
    amount: Optional[Decimal] = None
    auto_renew: bool = True
    start_date: Optional[datetime] = None
    period_end: Optional[datetime] = None


def current_period_end(
    start: datetime,
    plan: SubscriptionPlan,
    now: datetime,
) -> Optional[datetime]:
    """End of the billing period of ``plan`` that contains ``now``.

    Periods are counted from ``start``; a start in the past rolls forward
    whole periods until the end lies after ``now``.
    """
    interval = plan.interval_enum
    end = compute_end_date(start, interval, plan.interval_count)
    while end is not None and end <= now:
        end = compute_end_date(end, interval, plan.interval_count)
    return end


class SubscriptionManager:
    """
    Service for creating, expiring and reconciling user subscriptions.

    Callers pass the session; the manager commits at the end of each
    public mutating operation.
    """

    def __init__(self, db: AsyncSession, default_plan_slug: Optional[str] = None):
        """
        Initialize the subscription manager.

        Args:
            db: Async database session
            default_plan_slug: Plan used for subscription purchases whose
                product id is not mapped to any plan
        """
        self.db = db
        self.default_plan_slug = default_plan_slug

    # Lookups

    async def get_plan(self, plan_id: str, active_only: bool = True) -> SubscriptionPlan:
        """
        Get a plan by ID.

        Raises:
            PlanNotFoundError: If the plan does not exist or is inactive
        """
        query = select(SubscriptionPlan).where(SubscriptionPlan.id == plan_id)
        if active_only:
            query = query.where(SubscriptionPlan.active.is_(True))
        result = await self.db.execute(query)
        plan = result.scalar_one_or_none()
        if plan is None:
            raise PlanNotFoundError(f"Plan {plan_id} not found or inactive")
        return plan

    async def list_active_plans(self) -> list[SubscriptionPlan]:
        result = await self.db.execute(
            select(SubscriptionPlan)
            .where(SubscriptionPlan.active.is_(True))
            .order_by(SubscriptionPlan.price)
        )
        return list(result.scalars().all())

    async def resolve_plan_for_product(
        self,
        product_id: Optional[str],
        use_default: bool = True,
    ) -> Optional[SubscriptionPlan]:
        """Plan sold under a provider price id.

        Falls back to the configured default plan. Never creates plans.
        """
        if product_id:
            result = await self.db.execute(
                select(SubscriptionPlan).where(SubscriptionPlan.provider_price_id == product_id)
            )
            plan = result.scalar_one_or_none()
            if plan is not None:
                return plan

        if use_default and self.default_plan_slug:
            result = await self.db.execute(
                select(SubscriptionPlan).where(
                    SubscriptionPlan.slug == self.default_plan_slug,
                    SubscriptionPlan.active.is_(True),
                )
            )
            return result.scalar_one_or_none()

        return None

    async def get_active_subscription(
        self, user_id: str, now: Optional[datetime] = None
    ) -> Optional[UserSubscription]:
        """The user's ACTIVE subscription, unless its end date has passed."""
        now = now or utcnow()
        result = await self.db.execute(
            select(UserSubscription)
            .where(
                UserSubscription.user_id == user_id,
                UserSubscription.status == SubscriptionStatus.ACTIVE.value,
            )
            .order_by(UserSubscription.start_date.desc())
        )
        for row in result.scalars().all():
            end = ensure_utc(row.end_date)
            if end is None or end > now:
                return row
        return None

    async def get_user_subscription_history(self, user_id: str) -> list[UserSubscription]:
        result = await self.db.execute(
            select(UserSubscription)
            .where(UserSubscription.user_id == user_id)
            .order_by(UserSubscription.created_at.desc())
        )
        return list(result.scalars().all())

    # Internals

    async def _lock_user(self, user_id: str) -> User:
        result = await self.db.execute(
            select(User).where(User.id == user_id).with_for_update()
        )
        user = result.scalar_one_or_none()
        if user is None:
            raise SubscriptionError(f"User {user_id} not found")
        return user

    async def _cancel_active(
        self,
        user_id: str,
        now: datetime,
        exclude_id: Optional[str] = None,
    ) -> None:
        query = (
            update(UserSubscription)
            .where(
                UserSubscription.user_id == user_id,
                UserSubscription.status == SubscriptionStatus.ACTIVE.value,
            )
            .values(
                status=SubscriptionStatus.CANCELLED.value,
                cancelled_at=now,
                auto_renew=False,
            )
            .execution_options(synchronize_session="fetch")
        )
        if exclude_id is not None:
            query = query.where(UserSubscription.id != exclude_id)
        await self.db.execute(query)

    async def _activate(
        self,
        user: User,
        plan: SubscriptionPlan,
        payment: PaymentDetails,
        now: datetime,
    ) -> UserSubscription:
        """Supersede the user's ACTIVE row with a new one. Does not commit."""
        start = ensure_utc(payment.start_date) or now
        end = ensure_utc(payment.period_end)
        if end is None:
            end = current_period_end(start, plan, now)

        await self._cancel_active(user.id, now)

        subscription = UserSubscription(
            user_id=user.id,
            plan_id=plan.id,
            status=SubscriptionStatus.ACTIVE.value,
            start_date=start,
            end_date=end,
            next_billing_date=end if payment.auto_renew else None,
            auto_renew=payment.auto_renew and plan.interval_enum != BillingInterval.LIFETIME,
            payment_id=payment.payment_id,
            payment_method=payment.payment_method,
            amount=payment.amount if payment.amount is not None else plan.price,
        )
        subscription.plan = plan
        self.db.add(subscription)
        await self.db.flush()

        await self._refresh_membership_label(user, now)
        return subscription

    async def _refresh_membership_label(self, user: User, now: datetime) -> None:
        """Recompute the denormalized display label from the records."""
        await self.db.flush()
        viewer = await EntitlementService(self.db).load_viewer(user)
        label = membership_label_for_interval(resolve_entitlement(viewer, now).interval)
        if user.membership_level != label.value:
            logger.info(f"User {user.id} membership label {user.membership_level} -> {label.value}")
            user.membership_level = label.value

    async def _commit_or_conflict(self, user_id: str) -> None:
        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            logger.warning(f"Concurrent subscription write for user {user_id}: {e.orig}")
            raise SubscriptionConflictError(
                f"User {user_id} already has an active subscription"
            ) from e

    # Operations

    async def create_subscription(
        self,
        user_id: str,
        plan_id: str,
        payment: Optional[PaymentDetails] = None,
        now: Optional[datetime] = None,
    ) -> UserSubscription:
        """
        Subscribe a user to a plan.

        Any ACTIVE subscription the user holds is cancelled first, so the
        user ends up with exactly one ACTIVE row.

        Raises:
            PlanNotFoundError: If the plan does not exist or is inactive
            SubscriptionConflictError: If a concurrent write won the race
            SubscriptionError: If the user does not exist
        """
        now = now or utcnow()
        plan = await self.get_plan(plan_id)
        user = await self._lock_user(user_id)

        try:
            subscription = await self._activate(user, plan, payment or PaymentDetails(), now)
        except IntegrityError as e:
            await self.db.rollback()
            raise SubscriptionConflictError(
                f"User {user_id} already has an active subscription"
            ) from e

        await self._commit_or_conflict(user_id)
        logger.info(
            f"Created subscription {subscription.id} for user {user_id} "
            f"on plan {plan.slug} (ends {subscription.end_date})"
        )
        return subscription

    async def check_and_expire_subscriptions(self, now: Optional[datetime] = None) -> int:
        """
        Flip ACTIVE subscriptions whose end date has passed to EXPIRED.

        Lifetime rows (no end date) are never touched. Running it again
        without new expiries changes nothing.

        Returns:
            Number of subscriptions expired
        """
        now = now or utcnow()
        result = await self.db.execute(
            select(UserSubscription.id, UserSubscription.user_id).where(
                UserSubscription.status == SubscriptionStatus.ACTIVE.value,
                UserSubscription.end_date.is_not(None),
                UserSubscription.end_date <= now,
            )
        )
        rows = result.all()
        if not rows:
            return 0

        expired_ids = [row.id for row in rows]
        user_ids = {row.user_id for row in rows}

        await self.db.execute(
            update(UserSubscription)
            .where(
                UserSubscription.id.in_(expired_ids),
                UserSubscription.status == SubscriptionStatus.ACTIVE.value,
            )
            .values(status=SubscriptionStatus.EXPIRED.value)
            .execution_options(synchronize_session="fetch")
        )

        users_result = await self.db.execute(select(User).where(User.id.in_(user_ids)))
        for user in users_result.scalars().all():
            await self._refresh_membership_label(user, now)

        await self.db.commit()
        logger.info(f"Expired {len(expired_ids)} subscriptions for {len(user_ids)} users")
        return len(expired_ids)

    async def _project(
        self,
        user: User,
        missing: MissingProjection,
        plan: SubscriptionPlan,
        now: datetime,
        period_end: Optional[datetime] = None,
        auto_renew: bool = True,
    ) -> UserSubscription:
        payment = PaymentDetails(
            payment_id=missing.payment_id,
            payment_method="stripe",
            amount=plan.price,
            auto_renew=auto_renew,
            start_date=missing.started_at or now,
            period_end=period_end,
        )
        return await self._activate(user, plan, payment, now)

    async def reconcile_user(
        self, user_id: str, now: Optional[datetime] = None
    ) -> list[UserSubscription]:
        """
        Create missing UserSubscription rows for a user's active
        subscription purchases.

        A purchase counts as projected when any row, whatever its status,
        carries its subscription id (or purchase id) as payment id.
        Purchases whose product maps to no plan are skipped.

        Returns:
            The rows created (empty when nothing was missing)
        """
        now = now or utcnow()
        missing = await self._find_missing(user_id)
        if not missing:
            return []

        user = await self._lock_user(user_id)
        # Re-plan under the lock; a concurrent repair may have filled the gap
        missing = await self._find_missing(user_id)

        created: list[UserSubscription] = []
        for item in sorted(missing, key=lambda m: m.started_at or now):
            plan = await self.resolve_plan_for_product(item.product_id)
            if plan is None:
                logger.warning(
                    f"No plan mapped to product {item.product_id}; "
                    f"purchase {item.purchase_id} left unprojected"
                )
                continue
            try:
                created.append(await self._project(user, item, plan, now))
            except IntegrityError as e:
                await self.db.rollback()
                raise SubscriptionConflictError(
                    f"Purchase {item.purchase_id} is already projected for user {user_id}"
                ) from e

        if not created:
            return []

        await self._commit_or_conflict(user_id)
        logger.info(f"Repaired {len(created)} missing subscriptions for user {user_id}")
        return created

    async def _find_missing(self, user_id: str) -> list[MissingProjection]:
        purchases_result = await self.db.execute(
            select(Purchase).where(
                Purchase.user_id == user_id,
                Purchase.type == PurchaseType.SUBSCRIPTION.value,
            )
        )
        purchases = [purchase_record(p) for p in purchases_result.scalars().all()]
        if not purchases:
            return []

        subs_result = await self.db.execute(
            select(UserSubscription).where(UserSubscription.user_id == user_id)
        )
        subscriptions = [subscription_record(s) for s in subs_result.scalars().all()]
        return find_missing_projections(purchases, subscriptions)

    async def reconcile_all(self, now: Optional[datetime] = None) -> dict[str, int]:
        """
        Run reconcile_user for every user holding an active subscription
        purchase.

        Returns:
            Summary with users_checked, subscriptions_created and errors
        """
        now = now or utcnow()
        result = await self.db.execute(
            select(Purchase.user_id)
            .where(
                Purchase.type == PurchaseType.SUBSCRIPTION.value,
                Purchase.user_id.is_not(None),
                Purchase.status.in_(sorted(ACTIVE_PURCHASE_STATUSES)),
            )
            .distinct()
        )
        user_ids = [row[0] for row in result.all()]

        summary = {"users_checked": 0, "subscriptions_created": 0, "errors": 0}
        for user_id in user_ids:
            summary["users_checked"] += 1
            try:
                created = await self.reconcile_user(user_id, now=now)
            except SubscriptionError as e:
                await self.db.rollback()
                summary["errors"] += 1
                logger.error(f"Reconciliation failed for user {user_id}: {e}")
                continue
            summary["subscriptions_created"] += len(created)

        logger.info(f"Reconciliation finished: {summary}")
        return summary

    async def _get_by_payment_id(self, payment_id: str) -> Optional[UserSubscription]:
        result = await self.db.execute(
            select(UserSubscription).where(UserSubscription.payment_id == payment_id)
        )
        return result.scalars().first()

    async def sync_from_purchase(
        self,
        purchase: Purchase,
        period_end: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> Optional[UserSubscription]:
        """
        Bring the projection in line with one Purchase row.

        Subscription purchases map through the product id (or the default
        plan). One-time purchases are projected only once paid and only when
        their product maps to a LIFETIME plan. An existing row for the same
        payment reference is updated instead of duplicated; the lookup is
        repeated under the user lock so concurrent deliveries of one event
        project it once.

        Returns:
            The created or updated row, or None when nothing is projected

        Raises:
            SubscriptionConflictError: If a concurrent write won the race
        """
        now = now or utcnow()
        if not purchase.user_id:
            return None

        purchase_id = purchase.id
        user_id = purchase.user_id
        is_subscription = purchase.type == PurchaseType.SUBSCRIPTION.value

        if is_subscription:
            plan = await self.resolve_plan_for_product(purchase.product_id)
        else:
            plan = await self.resolve_plan_for_product(purchase.product_id, use_default=False)
            if plan is not None and plan.interval_enum != BillingInterval.LIFETIME:
                plan = None

        if plan is None:
            logger.warning(
                f"No plan mapped to product {purchase.product_id}; "
                f"purchase {purchase_id} not projected"
            )
            return None

        record = purchase_record(purchase, {purchase.product_id: plan.interval_enum})
        reference = record.payment_reference

        row = await self._get_by_payment_id(reference)
        if row is None:
            if not record.is_active:
                logger.info(f"Purchase {purchase_id} is {purchase.status}; not projected")
                return None

            user = await self._lock_user(user_id)
            # Re-check under the lock; a concurrent delivery may have projected it
            row = await self._get_by_payment_id(reference)
            if row is None:
                missing = MissingProjection(
                    purchase_id=purchase_id,
                    user_id=user_id,
                    payment_id=reference,
                    product_id=purchase.product_id,
                    started_at=now,
                )
                try:
                    subscription = await self._project(
                        user,
                        missing,
                        plan,
                        now,
                        period_end=period_end if is_subscription else None,
                        auto_renew=is_subscription,
                    )
                except IntegrityError as e:
                    await self.db.rollback()
                    raise SubscriptionConflictError(
                        f"Purchase {purchase_id} is already projected for user {user_id}"
                    ) from e
                await self._commit_or_conflict(user_id)
                logger.info(f"Projected purchase {purchase_id} as subscription {subscription.id}")
                return subscription

        if is_subscription:
            await self.apply_provider_status(
                reference, purchase.status, period_end=period_end, now=now
            )
        else:
            # One-time rows carry no provider status; just end the transaction
            await self.db.commit()
        return row

    async def apply_provider_status(
        self,
        payment_id: str,
        provider_status: Optional[str],
        period_end: Optional[datetime] = None,
        user_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> int:
        """
        Propagate a provider subscription status to the rows carrying
        ``payment_id``.

        ``period_end`` is the absolute end of the current paid period; the
        stored end date is overwritten with it, never extended from the old
        value.

        Returns:
            Number of rows updated
        """
        now = now or utcnow()
        status = map_provider_status(provider_status)
        period_end = ensure_utc(period_end)

        query = select(UserSubscription).where(UserSubscription.payment_id == payment_id)
        if user_id is not None:
            query = query.where(UserSubscription.user_id == user_id)
        result = await self.db.execute(query)
        rows = list(result.scalars().all())
        if not rows:
            return 0

        touched_users: dict[str, User] = {}
        for row in rows:
            if row.user_id not in touched_users:
                touched_users[row.user_id] = await self._lock_user(row.user_id)

            if status == SubscriptionStatus.ACTIVE and row.status != SubscriptionStatus.ACTIVE.value:
                await self._cancel_active(row.user_id, now, exclude_id=row.id)
                row.cancelled_at = None
                row.auto_renew = row.plan.interval_enum != BillingInterval.LIFETIME
            elif status == SubscriptionStatus.CANCELLED and row.cancelled_at is None:
                row.cancelled_at = now

            row.status = status.value
            if status != SubscriptionStatus.ACTIVE:
                row.auto_renew = False
                row.next_billing_date = None
            if period_end is not None:
                row.end_date = period_end
                if status == SubscriptionStatus.ACTIVE and row.auto_renew:
                    row.next_billing_date = period_end

        for user in touched_users.values():
            await self._refresh_membership_label(user, now)

        await self._commit_or_conflict(rows[0].user_id)
        logger.info(
            f"Applied provider status {provider_status!r} -> {status.value} "
            f"to {len(rows)} subscriptions for payment {payment_id}"
        )
        return len(rows)
