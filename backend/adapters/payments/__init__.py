"""Payment adapters for billing and subscription management."""

from .stripe_adapter import (
    BillingEvent,
    StripeAdapter,
    StripeAdapterError,
    StripeAPIError,
    StripeAuthError,
    StripeTimeoutError,
    StripeWebhookError,
    create_stripe_adapter,
)

__all__ = [
    "StripeAdapter",
    "BillingEvent",
    "StripeAdapterError",
    "StripeAPIError",
    "StripeAuthError",
    "StripeTimeoutError",
    "StripeWebhookError",
    "create_stripe_adapter",
]
