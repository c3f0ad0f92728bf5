"""
Subscription request/response schemas.
"""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field


class PlanResponse(BaseModel):
    """A purchasable plan."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    slug: str
    description: str | None = None
    price: Decimal
    currency: str
    interval: str
    interval_count: int
    features: list | None = None
    provider_price_id: str | None = Field(None, description="Stripe price to check out with")


class PlanListResponse(BaseModel):
    plans: list[PlanResponse]


class SubscriptionResponse(BaseModel):
    """A user's subscription row."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    plan_id: str
    status: str
    start_date: datetime
    end_date: datetime | None = Field(None, description="Null for lifetime subscriptions")
    next_billing_date: datetime | None = None
    cancelled_at: datetime | None = None
    auto_renew: bool
    payment_method: str | None = None
    amount: Decimal | None = None
    plan: PlanResponse | None = None


class SubscriptionStatusResponse(BaseModel):
    """Entitlement summary for the current viewer."""

    authenticated: bool
    has_active_subscription: bool = False
    access_level: str = Field(..., description="Highest content access level held")
    membership_level: str | None = Field(None, description="Display label")
    expiring_soon: bool = False
    subscription: SubscriptionResponse | None = None


class CreateSubscriptionRequest(BaseModel):
    """Request to subscribe to a plan."""

    plan_id: str = Field(..., min_length=1, max_length=36)
    payment_method: str | None = Field(None, max_length=50)


class CreateSubscriptionResponse(BaseModel):
    success: bool = True
    subscription: SubscriptionResponse


class SubscriptionHistoryResponse(BaseModel):
    subscriptions: list[SubscriptionResponse]
