"""
Stripe billing adapter.

Wraps the parts of the Stripe API this service needs: webhook signature
verification, webhook event parsing, checkout links, customer portal links
and checkout line-item lookups. The Stripe SDK is synchronous, so every
outbound call runs in a worker thread under a hard timeout.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import stripe

from core.timeutils import parse_unix_timestamp
from infrastructure.config.settings import settings

logger = logging.getLogger(__name__)


# Custom Exceptions
class StripeAdapterError(Exception):
    """Base exception for Stripe adapter errors."""

    pass


class StripeAPIError(StripeAdapterError):
    """Raised when the Stripe API returns an error."""

    pass


class StripeAuthError(StripeAdapterError):
    """Raised when the API key is missing or rejected."""

    pass


class StripeTimeoutError(StripeAdapterError):
    """Raised when a Stripe call does not finish within the configured timeout."""

    pass


class StripeWebhookError(StripeAdapterError):
    """Raised when webhook verification or parsing fails."""

    pass


def _first_price_id(items: Any) -> str | None:
    """Price id of the first entry of a Stripe list (dict payload or SDK object)."""
    if not items:
        return None
    data = items.get("data") if isinstance(items, dict) else getattr(items, "data", None)
    if not data:
        return None
    first = data[0]
    price = first.get("price") if isinstance(first, dict) else getattr(first, "price", None)
    if not price:
        return None
    if isinstance(price, str):
        return price
    return price.get("id") if isinstance(price, dict) else getattr(price, "id", None)


@dataclass
class BillingEvent:
    """A verified Stripe webhook event."""

    id: str
    type: str
    object: dict[str, Any] = field(default_factory=dict)
    created: datetime | None = None

    @classmethod
    def from_webhook_payload(cls, payload: dict[str, Any]) -> "BillingEvent":
        """Create an event from a decoded webhook body."""
        data = payload.get("data") or {}
        return cls(
            id=payload.get("id", ""),
            type=payload.get("type", ""),
            object=data.get("object") or {},
            created=parse_unix_timestamp(payload.get("created")),
        )

    @property
    def object_id(self) -> str | None:
        return self.object.get("id")

    @property
    def metadata(self) -> dict[str, Any]:
        return self.object.get("metadata") or {}

    @property
    def user_id(self) -> str | None:
        return self.metadata.get("user_id") or None

    @property
    def organization_id(self) -> str | None:
        return self.metadata.get("organization_id") or None

    @property
    def customer_id(self) -> str | None:
        customer = self.object.get("customer")
        if isinstance(customer, dict):
            return customer.get("id")
        return customer

    @property
    def status(self) -> str | None:
        return self.object.get("status")

    @property
    def mode(self) -> str | None:
        return self.object.get("mode")

    @property
    def price_id(self) -> str | None:
        """Price of the first subscription item or checkout line item."""
        return (
            _first_price_id(self.object.get("items"))
            or _first_price_id(self.object.get("line_items"))
            or self.metadata.get("product_id")
        )

    @property
    def current_period_end(self) -> datetime | None:
        """End of the paid period.

        Newer API versions report it per subscription item instead of on the
        subscription itself.
        """
        value = self.object.get("current_period_end")
        if value is None:
            items = (self.object.get("items") or {}).get("data") or []
            if items:
                value = items[0].get("current_period_end")
        return parse_unix_timestamp(value)


class StripeAdapter:
    """
    Stripe API adapter for checkout and subscription billing.

    One instance is created at application startup and shared through
    app.state; it holds no per-request state.
    """

    def __init__(
        self,
        secret_key: str | None = None,
        webhook_secret: str | None = None,
        webhook_tolerance: int | None = None,
        request_timeout: float | None = None,
    ):
        """
        Initialize the Stripe adapter.

        Args:
            secret_key: Stripe secret API key (defaults to settings)
            webhook_secret: Webhook endpoint signing secret (defaults to settings)
            webhook_tolerance: Max signature age in seconds (defaults to settings)
            request_timeout: Timeout for outbound calls in seconds (defaults to settings)
        """
        self.secret_key = secret_key or settings.stripe_secret_key
        self.webhook_secret = webhook_secret or settings.stripe_webhook_secret
        self.webhook_tolerance = (
            webhook_tolerance if webhook_tolerance is not None else settings.stripe_webhook_tolerance
        )
        self.request_timeout = request_timeout or settings.billing_request_timeout

        if not self.secret_key:
            logger.warning("Stripe secret key not configured. Set STRIPE_SECRET_KEY.")

    def _require_api_key(self) -> str:
        if not self.secret_key:
            raise StripeAuthError("Stripe secret key not configured. Set STRIPE_SECRET_KEY.")
        return self.secret_key

    async def _call(self, operation: str, func, *args, **kwargs) -> Any:
        """
        Run a blocking Stripe SDK call off the event loop.

        Raises:
            StripeTimeoutError: If the call exceeds the request timeout
            StripeAuthError: If Stripe rejects the API key
            StripeAPIError: For any other Stripe error
        """
        kwargs["api_key"] = self._require_api_key()
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(func, *args, **kwargs),
                timeout=self.request_timeout,
            )
        except asyncio.TimeoutError:
            logger.error("Stripe %s timed out after %.1fs", operation, self.request_timeout)
            raise StripeTimeoutError(f"Stripe {operation} timed out")
        except stripe.AuthenticationError as e:
            logger.error("Stripe authentication failed during %s", operation)
            raise StripeAuthError(f"Stripe authentication failed: {e.user_message or e}")
        except stripe.StripeError as e:
            logger.error("Stripe API error during %s: %s", operation, e.user_message or e)
            raise StripeAPIError(f"Stripe {operation} failed: {e.user_message or e}")

    async def create_checkout_link(
        self,
        *,
        type: str,
        product_id: str,
        redirect_url: str,
        user_id: str | None = None,
        organization_id: str | None = None,
        customer_id: str | None = None,
        email: str | None = None,
        trial_period_days: int | None = None,
        seats: int = 1,
    ) -> str:
        """
        Create a hosted checkout session and return its URL.

        Args:
            type: "subscription" or "one-time"
            product_id: Stripe price id
            redirect_url: Where Stripe sends the customer after paying
            user_id: Purchasing user, stored in metadata for the webhook
            organization_id: Purchasing organization, if any
            customer_id: Existing Stripe customer to attach
            email: Prefilled email when no customer exists yet
            trial_period_days: Trial length for subscriptions
            seats: Line item quantity

        Returns:
            Checkout URL
        """
        metadata = {
            "user_id": user_id or "",
            "organization_id": organization_id or "",
        }
        params: dict[str, Any] = {
            "mode": "subscription" if type == "subscription" else "payment",
            "success_url": redirect_url,
            "cancel_url": redirect_url,
            "line_items": [{"price": product_id, "quantity": seats}],
            "metadata": metadata,
        }
        if customer_id:
            params["customer"] = customer_id
        elif email:
            params["customer_email"] = email

        if type == "subscription":
            subscription_data: dict[str, Any] = {"metadata": metadata}
            if trial_period_days and trial_period_days > 0:
                subscription_data["trial_period_days"] = trial_period_days
            params["subscription_data"] = subscription_data
        else:
            params["payment_intent_data"] = {"metadata": metadata}
            if not customer_id:
                params["customer_creation"] = "always"

        logger.info("Creating %s checkout session for price %s", type, product_id)
        session = await self._call("checkout", stripe.checkout.Session.create, **params)
        return session.url

    async def create_customer_portal_link(self, customer_id: str, redirect_url: str) -> str:
        """Create a billing portal session for an existing customer."""
        logger.info("Creating customer portal session")
        session = await self._call(
            "portal",
            stripe.billing_portal.Session.create,
            customer=customer_id,
            return_url=redirect_url,
        )
        return session.url

    async def get_checkout_product_id(self, session_id: str) -> str | None:
        """Fetch the price id of a checkout session's first line item."""
        session = await self._call(
            "checkout lookup",
            stripe.checkout.Session.retrieve,
            session_id,
            expand=["line_items"],
        )
        return _first_price_id(getattr(session, "line_items", None))

    def verify_webhook_signature(self, payload: bytes, signature: str | None) -> bool:
        """
        Verify a Stripe-Signature header against the raw request body.

        Args:
            payload: Raw webhook body (bytes)
            signature: Value of the Stripe-Signature header

        Returns:
            True if the signature is valid and within tolerance, False otherwise

        Raises:
            StripeWebhookError: If the webhook secret is not configured
        """
        if not self.webhook_secret:
            raise StripeWebhookError("Webhook secret not configured. Set STRIPE_WEBHOOK_SECRET.")
        if not signature:
            logger.warning("Webhook request without Stripe-Signature header")
            return False

        try:
            stripe.WebhookSignature.verify_header(
                payload.decode("utf-8"),
                signature,
                self.webhook_secret,
                tolerance=self.webhook_tolerance,
            )
        except (stripe.SignatureVerificationError, UnicodeDecodeError) as e:
            logger.warning("Webhook signature verification failed: %s", e)
            return False

        return True

    def parse_webhook_event(self, payload: bytes) -> BillingEvent:
        """
        Parse a raw webhook body into a BillingEvent.

        Raises:
            StripeWebhookError: If the body is not a JSON event object
        """
        try:
            body = json.loads(payload)
        except (ValueError, UnicodeDecodeError) as e:
            raise StripeWebhookError(f"Invalid webhook payload: {e}")

        if not isinstance(body, dict) or not body.get("type"):
            raise StripeWebhookError("Webhook payload is missing the event type")

        event = BillingEvent.from_webhook_payload(body)
        logger.info(
            "Parsed webhook event",
            extra={"event_id": event.id, "event_type": event.type},
        )
        return event


# Factory function for easy instantiation
def create_stripe_adapter(
    secret_key: str | None = None,
    webhook_secret: str | None = None,
) -> StripeAdapter:
    """Create a Stripe adapter instance configured from settings."""
    return StripeAdapter(secret_key=secret_key, webhook_secret=webhook_secret)
