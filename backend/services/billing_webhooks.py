"""
Billing webhook processing.

Writes Stripe events into the Purchase ledger, keyed on provider ids so
redelivered events are no-ops, then projects the ledger onto
UserSubscription rows. The ledger write is authoritative and its failure
propagates so the provider retries; the projection is best effort and is
repaired later by the reconciliation job.
"""

import logging
from typing import Awaitable, Callable, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from adapters.payments import BillingEvent, StripeAdapter
from core.entitlements import PurchaseType
from infrastructure.database.models import Purchase, User
from services.subscription_manager import SubscriptionError, SubscriptionManager

logger = logging.getLogger(__name__)


class WebhookPayloadError(Exception):
    """Raised when a handled event lacks data required to record it."""

    pass


CHECKOUT_COMPLETED = "checkout.session.completed"
CHECKOUT_PAYMENT_SUCCEEDED = "checkout.session.async_payment_succeeded"
CHECKOUT_PAYMENT_FAILED = "checkout.session.async_payment_failed"
SUBSCRIPTION_CREATED = "customer.subscription.created"
SUBSCRIPTION_UPDATED = "customer.subscription.updated"
SUBSCRIPTION_DELETED = "customer.subscription.deleted"


class BillingWebhookProcessor:
    """Dispatches verified billing events to their handlers."""

    def __init__(
        self,
        db: AsyncSession,
        adapter: StripeAdapter,
        manager: Optional[SubscriptionManager] = None,
    ):
        self.db = db
        self.adapter = adapter
        self.manager = manager or SubscriptionManager(db)
        self._handlers: dict[str, Callable[[BillingEvent], Awaitable[None]]] = {
            CHECKOUT_COMPLETED: self._handle_checkout_completed,
            CHECKOUT_PAYMENT_SUCCEEDED: self._handle_checkout_payment_settled,
            CHECKOUT_PAYMENT_FAILED: self._handle_checkout_payment_settled,
            SUBSCRIPTION_CREATED: self._handle_subscription_created,
            SUBSCRIPTION_UPDATED: self._handle_subscription_updated,
            SUBSCRIPTION_DELETED: self._handle_subscription_deleted,
        }

    def handles(self, event_type: str) -> bool:
        return event_type in self._handlers

    async def process(self, event: BillingEvent) -> bool:
        """
        Process one event.

        Returns:
            True if the event type is handled, False if it was ignored

        Raises:
            WebhookPayloadError: If a handled event is missing required data
        """
        handler = self._handlers.get(event.type)
        if handler is None:
            logger.info(
                f"Ignoring unhandled webhook event {event.type}",
                extra={"event_id": event.id, "event_type": event.type},
            )
            return False

        logger.info(
            f"Processing webhook event {event.type}",
            extra={"event_id": event.id, "event_type": event.type},
        )
        await handler(event)
        return True

    # Ledger helpers

    async def _get_purchase_by_subscription_id(self, subscription_id: str) -> Optional[Purchase]:
        result = await self.db.execute(
            select(Purchase).where(Purchase.subscription_id == subscription_id)
        )
        return result.scalar_one_or_none()

    async def _get_purchase_by_checkout_session(self, session_id: str) -> Optional[Purchase]:
        result = await self.db.execute(
            select(Purchase).where(Purchase.checkout_session_id == session_id)
        )
        return result.scalar_one_or_none()

    async def _known_user_id(self, user_id: Optional[str]) -> Optional[str]:
        """Drop metadata user ids that do not match an account."""
        if not user_id:
            return None
        result = await self.db.execute(select(User.id).where(User.id == user_id))
        if result.scalar_one_or_none() is None:
            logger.warning(f"Webhook metadata references unknown user {user_id}")
            return None
        return user_id

    async def _set_customer_id(self, user_id: Optional[str], customer_id: Optional[str]) -> None:
        if not user_id or not customer_id:
            return
        owner = await self.db.execute(
            select(User.id).where(User.stripe_customer_id == customer_id)
        )
        owner_id = owner.scalar_one_or_none()
        if owner_id is not None and owner_id != user_id:
            logger.warning(f"Stripe customer already linked to user {owner_id}, not relinking")
            return

        user = await self.db.get(User, user_id)
        if user is not None and user.stripe_customer_id != customer_id:
            user.stripe_customer_id = customer_id

    async def _commit_purchase(self, purchase: Purchase, find_existing) -> Purchase:
        """Commit a new ledger row, yielding to a concurrent delivery of the same event."""
        self.db.add(purchase)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            existing = await find_existing()
            if existing is None:
                raise
            logger.info(f"Purchase already recorded by a concurrent delivery: {existing.id}")
            return existing
        return purchase

    async def _sync_projection(self, purchase: Purchase, event: BillingEvent) -> None:
        """Best-effort projection; the repair job fills any gap left here."""
        purchase_id = purchase.id
        try:
            await self.manager.sync_from_purchase(purchase, period_end=event.current_period_end)
        except (SubscriptionError, SQLAlchemyError):
            await self.db.rollback()
            logger.exception(
                f"Failed to sync subscription projection for purchase {purchase_id}",
                extra={"event_id": event.id, "event_type": event.type},
            )

    # Handlers

    async def _handle_checkout_completed(self, event: BillingEvent) -> None:
        # Subscription checkouts are recorded from the subscription events
        if event.mode == "subscription":
            return

        session_id = event.object_id
        if not session_id:
            raise WebhookPayloadError("Checkout session id missing")

        existing = await self._get_purchase_by_checkout_session(session_id)
        if existing is not None:
            logger.info(f"Checkout session {session_id} already recorded")
            return

        product_id = event.price_id or await self.adapter.get_checkout_product_id(session_id)
        if not product_id:
            raise WebhookPayloadError("Missing product ID")

        user_id = await self._known_user_id(event.user_id)
        purchase = Purchase(
            type=PurchaseType.ONE_TIME.value,
            product_id=product_id,
            customer_id=event.customer_id,
            checkout_session_id=session_id,
            status=event.object.get("payment_status"),
            user_id=user_id,
            organization_id=event.organization_id,
        )
        await self._set_customer_id(user_id, event.customer_id)
        purchase = await self._commit_purchase(
            purchase, lambda: self._get_purchase_by_checkout_session(session_id)
        )
        logger.info(f"Recorded one-time purchase {purchase.id} for product {product_id}")

        await self._sync_projection(purchase, event)

    async def _handle_checkout_payment_settled(self, event: BillingEvent) -> None:
        # Delayed payment methods report the outcome after checkout completes
        if event.mode == "subscription":
            return

        session_id = event.object_id
        if not session_id:
            raise WebhookPayloadError("Checkout session id missing")

        purchase = await self._get_purchase_by_checkout_session(session_id)
        if purchase is None:
            await self._handle_checkout_completed(event)
            return

        purchase.status = event.object.get("payment_status")
        await self.db.commit()
        logger.info(f"One-time purchase {purchase.id} payment status now {purchase.status}")

        await self._sync_projection(purchase, event)

    async def _upsert_subscription_purchase(self, event: BillingEvent) -> Purchase:
        subscription_id = event.object_id
        if not subscription_id:
            raise WebhookPayloadError("Subscription id missing")

        product_id = event.price_id
        purchase = await self._get_purchase_by_subscription_id(subscription_id)

        if purchase is not None:
            purchase.status = event.status
            if product_id:
                purchase.product_id = product_id
            if purchase.user_id is None:
                purchase.user_id = await self._known_user_id(event.user_id)
            await self._set_customer_id(purchase.user_id, event.customer_id)
            await self.db.commit()
            return purchase

        if not product_id:
            raise WebhookPayloadError("Missing product ID")

        user_id = await self._known_user_id(event.user_id)
        purchase = Purchase(
            type=PurchaseType.SUBSCRIPTION.value,
            product_id=product_id,
            customer_id=event.customer_id,
            subscription_id=subscription_id,
            status=event.status,
            user_id=user_id,
            organization_id=event.organization_id,
        )
        await self._set_customer_id(user_id, event.customer_id)
        purchase = await self._commit_purchase(
            purchase, lambda: self._get_purchase_by_subscription_id(subscription_id)
        )
        logger.info(f"Recorded subscription purchase {purchase.id} ({event.status})")
        return purchase

    async def _handle_subscription_created(self, event: BillingEvent) -> None:
        purchase = await self._upsert_subscription_purchase(event)
        await self._sync_projection(purchase, event)

    async def _handle_subscription_updated(self, event: BillingEvent) -> None:
        # An update can arrive before the matching created event
        purchase = await self._upsert_subscription_purchase(event)
        await self._sync_projection(purchase, event)

    async def _handle_subscription_deleted(self, event: BillingEvent) -> None:
        subscription_id = event.object_id
        if not subscription_id:
            raise WebhookPayloadError("Subscription id missing")

        # UserSubscription history stays; those rows lapse at their end date
        result = await self.db.execute(
            delete(Purchase).where(Purchase.subscription_id == subscription_id)
        )
        await self.db.commit()
        logger.info(f"Deleted {result.rowcount} purchases for subscription {subscription_id}")
