"""
Billing database models: plans, the purchase ledger and user subscriptions.

Purchase rows are written straight from billing-provider webhooks and are
the authoritative record. UserSubscription rows are the queryable
projection that the reconciler derives from them (or from direct plan
purchases).
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.entitlements import BillingInterval, PurchaseType, SubscriptionStatus

from .base import Base, TimestampMixin


class SubscriptionPlan(Base, TimestampMixin):
    """A purchasable plan.

    Plans referenced by a live subscription are never edited; a changed
    offer gets a new plan row.
    """

    __tablename__ = "subscription_plans"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="USD", nullable=False)
    interval: Mapped[str] = mapped_column(
        String(20),
        default=BillingInterval.MONTH.value,
        nullable=False,
    )
    interval_count: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    features: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)

    # Billing provider price this plan is sold under
    provider_price_id: Mapped[Optional[str]] = mapped_column(
        String(255), unique=True, nullable=True
    )

    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<SubscriptionPlan(slug={self.slug}, interval={self.interval})>"

    @property
    def interval_enum(self) -> BillingInterval:
        return BillingInterval(self.interval)


class UserSubscription(Base, TimestampMixin):
    """A user's subscription to a plan.

    Append-only history: rows move between statuses but are never deleted.
    At most one row per user may be ACTIVE, enforced by a partial unique
    index.
    """

    __tablename__ = "user_subscriptions"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    plan_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("subscription_plans.id"),
        nullable=False,
    )
    status: Mapped[str] = mapped_column(
        String(20),
        default=SubscriptionStatus.ACTIVE.value,
        nullable=False,
    )

    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )  # NULL = lifetime
    next_billing_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    auto_renew: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Correlates to the provider subscription id (or purchase id)
    payment_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    payment_method: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)

    plan: Mapped[SubscriptionPlan] = relationship(lazy="joined")

    __table_args__ = (
        Index(
            "uq_user_subscriptions_one_active",
            "user_id",
            unique=True,
            postgresql_where=text("status = 'ACTIVE'"),
            sqlite_where=text("status = 'ACTIVE'"),
        ),
        # One projection per provider subscription (or purchase)
        Index(
            "uq_user_subscriptions_payment_id",
            "payment_id",
            unique=True,
            postgresql_where=text("payment_id IS NOT NULL"),
            sqlite_where=text("payment_id IS NOT NULL"),
        ),
        Index("ix_user_subscriptions_status_end", "status", "end_date"),
    )

    def __repr__(self) -> str:
        return (
            f"<UserSubscription(id={self.id}, user_id={self.user_id}, "
            f"status={self.status}, end_date={self.end_date})>"
        )


class Purchase(Base, TimestampMixin):
    """Billing ledger row mirroring what the provider reported."""

    __tablename__ = "purchases"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    type: Mapped[str] = mapped_column(
        String(20),
        default=PurchaseType.SUBSCRIPTION.value,
        nullable=False,
    )
    product_id: Mapped[str] = mapped_column(String(255), nullable=False)
    customer_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)

    # Provider ids the webhook writes are keyed on
    subscription_id: Mapped[Optional[str]] = mapped_column(
        String(255), unique=True, nullable=True
    )
    checkout_session_id: Mapped[Optional[str]] = mapped_column(
        String(255), unique=True, nullable=True
    )

    # Provider vocabulary, lowercase (active, trialing, past_due, canceled, ...)
    status: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    user_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    organization_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)

    __table_args__ = (
        Index("ix_purchases_user_type_status", "user_id", "type", "status"),
    )

    def __repr__(self) -> str:
        return (
            f"<Purchase(id={self.id}, type={self.type}, "
            f"subscription_id={self.subscription_id}, status={self.status})>"
        )
