"""
API request and response schemas.
"""

from .billing import (
    CheckoutRequest,
    CheckoutResponse,
    CustomerPortalRequest,
    CustomerPortalResponse,
    WebhookAck,
)
from .consent import ConsentResponse, ConsentUpdateRequest
from .content import ContentResponse, SearchRequest, SearchResponse, SearchResultItem
from .subscription import (
    CreateSubscriptionRequest,
    CreateSubscriptionResponse,
    PlanListResponse,
    PlanResponse,
    SubscriptionHistoryResponse,
    SubscriptionResponse,
    SubscriptionStatusResponse,
)

__all__ = [
    "CheckoutRequest",
    "CheckoutResponse",
    "CustomerPortalRequest",
    "CustomerPortalResponse",
    "WebhookAck",
    "ConsentResponse",
    "ConsentUpdateRequest",
    "ContentResponse",
    "SearchRequest",
    "SearchResponse",
    "SearchResultItem",
    "CreateSubscriptionRequest",
    "CreateSubscriptionResponse",
    "PlanListResponse",
    "PlanResponse",
    "SubscriptionHistoryResponse",
    "SubscriptionResponse",
    "SubscriptionStatusResponse",
]
