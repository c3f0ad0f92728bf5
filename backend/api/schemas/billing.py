"""
Billing request/response schemas.
"""

from typing import Literal

from pydantic import BaseModel, Field


class CheckoutRequest(BaseModel):
    """Request to create a checkout session."""

    type: Literal["subscription", "one-time"] = Field(
        ..., description="Checkout kind (subscription, one-time)"
    )
    product_id: str = Field(..., min_length=1, max_length=255, description="Stripe price ID")
    redirect_url: str | None = Field(
        None, max_length=2048, description="Where to send the customer after checkout"
    )

    model_config = {
        "json_schema_extra": {
            "example": {
                "type": "subscription",
                "product_id": "price_1PremiumMonthly",
                "redirect_url": "https://example.com/app/subscription",
            }
        }
    }


class CheckoutResponse(BaseModel):
    """Response containing the hosted checkout URL."""

    checkout_link: str = Field(..., description="Stripe checkout URL")


class CustomerPortalRequest(BaseModel):
    """Request to open the billing portal."""

    redirect_url: str | None = Field(None, max_length=2048, description="Return URL")


class CustomerPortalResponse(BaseModel):
    """Response containing the billing portal URL."""

    portal_link: str = Field(..., description="Stripe customer portal URL")


class WebhookAck(BaseModel):
    """Acknowledgement for events that are received but not handled."""

    status: str = Field("ignored", description="Processing outcome")
    event_type: str = Field(..., description="Stripe event type")
