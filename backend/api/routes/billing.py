"""
Billing API routes: Stripe webhook, checkout and customer portal.
"""

import logging
from typing import Annotated, Optional
from urllib.parse import urlparse

from fastapi import APIRouter, Depends, Header, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from adapters.payments import StripeAdapter, StripeAdapterError, StripeWebhookError
from api.dependencies import get_billing_adapter, get_current_user
from api.middleware.rate_limit import get_rate_limit, limiter
from api.schemas.billing import (
    CheckoutRequest,
    CheckoutResponse,
    CustomerPortalRequest,
    CustomerPortalResponse,
    WebhookAck,
)
from infrastructure.config.settings import settings
from infrastructure.database.connection import get_db
from infrastructure.database.models.user import User
from services.billing_webhooks import BillingWebhookProcessor, WebhookPayloadError
from services.subscription_manager import SubscriptionManager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing", tags=["billing"])


def _allowed_redirect_hosts() -> set[str]:
    hosts = {urlparse(origin).netloc for origin in settings.cors_origins_list}
    hosts.add(urlparse(settings.frontend_url).netloc)
    return {h for h in hosts if h}


def _resolve_redirect_url(request: Request, requested: Optional[str], default_path: str) -> str:
    """Pick a post-checkout URL, refusing hosts outside the frontend origins."""
    candidate = requested or request.headers.get("referer")
    if candidate:
        parsed = urlparse(candidate)
        if parsed.scheme in ("http", "https") and parsed.netloc in _allowed_redirect_hosts():
            return candidate
        if requested:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Redirect URL is not allowed",
            )
    return f"{settings.frontend_url.rstrip('/')}{default_path}"


@router.post(
    "/webhook",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={200: {"model": WebhookAck}},
)
@limiter.limit(get_rate_limit("webhook"))
async def handle_webhook(
    request: Request,
    stripe_signature: Annotated[str | None, Header(alias="Stripe-Signature")] = None,
    db: AsyncSession = Depends(get_db),
    adapter: StripeAdapter = Depends(get_billing_adapter),
):
    """
    Handle Stripe webhook events.

    - checkout.session.completed: one-time purchase recorded
    - checkout.session.async_payment_succeeded/failed: payment status of a
      delayed one-time purchase updated
    - customer.subscription.created: subscription purchase recorded
    - customer.subscription.updated: purchase and subscription status updated
    - customer.subscription.deleted: purchase removed

    Returns 204 for handled events, 200 for events this service ignores and
    400 when the signature or payload is rejected.
    """
    body = await request.body()

    try:
        signature_valid = adapter.verify_webhook_signature(body, stripe_signature)
    except StripeWebhookError as e:
        logger.error(f"Webhook rejected: {e}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid request")

    if not signature_valid:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid request")

    try:
        event = adapter.parse_webhook_event(body)
    except StripeWebhookError as e:
        logger.error(f"Invalid webhook payload: {e}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid payload")

    processor = BillingWebhookProcessor(
        db,
        adapter,
        SubscriptionManager(db, default_plan_slug=settings.default_plan_slug),
    )

    try:
        handled = await processor.process(event)
    except WebhookPayloadError as e:
        logger.warning(
            f"Webhook event rejected: {e}",
            extra={"event_id": event.id, "event_type": event.type},
        )
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except (SQLAlchemyError, StripeAdapterError):
        await db.rollback()
        logger.exception(
            "Webhook processing failed",
            extra={"event_id": event.id, "event_type": event.type},
        )
        # 5xx makes Stripe retry the delivery
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook processing failed",
        )

    if not handled:
        return JSONResponse(
            status_code=status.HTTP_200_OK,
            content=WebhookAck(event_type=event.type).model_dump(),
        )

    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/checkout", response_model=CheckoutResponse)
@limiter.limit(get_rate_limit("checkout"))
async def create_checkout(
    request: Request,
    checkout_request: CheckoutRequest,
    current_user: Annotated[User, Depends(get_current_user)],
    adapter: StripeAdapter = Depends(get_billing_adapter),
):
    """Create a Stripe checkout link for the signed-in user."""
    redirect_url = _resolve_redirect_url(
        request, checkout_request.redirect_url, "/app/subscription"
    )

    try:
        checkout_link = await adapter.create_checkout_link(
            type=checkout_request.type,
            product_id=checkout_request.product_id,
            redirect_url=redirect_url,
            user_id=current_user.id,
            customer_id=current_user.stripe_customer_id,
            email=current_user.email,
        )
    except StripeAdapterError as e:
        logger.error(f"Checkout creation failed for user {current_user.id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Failed to create checkout session",
        )

    logger.info(f"Created {checkout_request.type} checkout for user {current_user.id}")
    return CheckoutResponse(checkout_link=checkout_link)


@router.post("/portal", response_model=CustomerPortalResponse)
@limiter.limit(get_rate_limit("checkout"))
async def create_customer_portal(
    request: Request,
    current_user: Annotated[User, Depends(get_current_user)],
    portal_request: Optional[CustomerPortalRequest] = None,
    adapter: StripeAdapter = Depends(get_billing_adapter),
):
    """Open the Stripe billing portal for the signed-in user."""
    if not current_user.stripe_customer_id:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No billing account found",
        )

    redirect_url = _resolve_redirect_url(
        request,
        portal_request.redirect_url if portal_request else None,
        "/app/settings/billing",
    )

    try:
        portal_link = await adapter.create_customer_portal_link(
            current_user.stripe_customer_id, redirect_url
        )
    except StripeAdapterError as e:
        logger.error(f"Portal creation failed for user {current_user.id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Failed to open billing portal",
        )

    return CustomerPortalResponse(portal_link=portal_link)
