"""
Subscription API routes.
"""

import logging
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import (
    get_current_user,
    get_optional_user,
    get_permission_evaluator,
    get_subscription_manager,
)
from api.middleware.rate_limit import get_rate_limit, limiter
from api.schemas.subscription import (
    CreateSubscriptionRequest,
    CreateSubscriptionResponse,
    PlanListResponse,
    PlanResponse,
    SubscriptionHistoryResponse,
    SubscriptionResponse,
    SubscriptionStatusResponse,
)
from core.entitlements import ContentAccessLevel
from core.permissions import PermissionEvaluator
from infrastructure.database.connection import get_db
from infrastructure.database.models.user import User
from services.entitlement_service import EntitlementService
from services.subscription_manager import (
    PaymentDetails,
    PlanNotFoundError,
    SubscriptionConflictError,
    SubscriptionError,
    SubscriptionManager,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/subscription", tags=["subscription"])


@router.get("/status", response_model=SubscriptionStatusResponse)
async def get_subscription_status(
    current_user: Annotated[Optional[User], Depends(get_optional_user)],
    db: AsyncSession = Depends(get_db),
    manager: SubscriptionManager = Depends(get_subscription_manager),
    evaluator: PermissionEvaluator = Depends(get_permission_evaluator),
):
    """
    Current viewer's entitlement.

    Missing subscription rows for active purchases are repaired before the
    status is computed, so a payment whose webhook sync failed still shows
    up here.
    """
    if current_user is None:
        return SubscriptionStatusResponse(
            authenticated=False,
            access_level=ContentAccessLevel.PUBLIC.value,
        )

    user_id = current_user.id
    try:
        await manager.reconcile_user(user_id)
    except SubscriptionError as e:
        await db.rollback()
        await db.refresh(current_user)
        logger.warning(f"Subscription repair skipped for user {user_id}: {e}")

    viewer = await EntitlementService(db).load_viewer(current_user)
    entitlement = evaluator.entitlement(viewer)
    active = await manager.get_active_subscription(current_user.id)

    return SubscriptionStatusResponse(
        authenticated=True,
        has_active_subscription=entitlement.is_paid,
        access_level=entitlement.level.value,
        membership_level=evaluator.membership_label(viewer).value,
        expiring_soon=evaluator.is_subscription_expiring_soon(viewer),
        subscription=SubscriptionResponse.model_validate(active) if active else None,
    )


@router.post("/create", response_model=CreateSubscriptionResponse)
@limiter.limit(get_rate_limit("checkout"))
async def create_subscription(
    request: Request,
    subscription_request: CreateSubscriptionRequest,
    current_user: Annotated[User, Depends(get_current_user)],
    manager: SubscriptionManager = Depends(get_subscription_manager),
):
    """Subscribe the signed-in user to a plan, replacing any active subscription."""
    try:
        subscription = await manager.create_subscription(
            current_user.id,
            subscription_request.plan_id,
            PaymentDetails(payment_method=subscription_request.payment_method),
        )
    except PlanNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid subscription plan",
        )
    except SubscriptionConflictError:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Another subscription change is in progress, please retry",
        )

    return CreateSubscriptionResponse(
        success=True,
        subscription=SubscriptionResponse.model_validate(subscription),
    )


@router.get("/plans", response_model=PlanListResponse)
async def list_plans(manager: SubscriptionManager = Depends(get_subscription_manager)):
    """Active plans. Public endpoint."""
    plans = await manager.list_active_plans()
    return PlanListResponse(plans=[PlanResponse.model_validate(p) for p in plans])


@router.get("/history", response_model=SubscriptionHistoryResponse)
async def get_subscription_history(
    current_user: Annotated[User, Depends(get_current_user)],
    manager: SubscriptionManager = Depends(get_subscription_manager),
):
    """All of the signed-in user's subscriptions, newest first."""
    rows = await manager.get_user_subscription_history(current_user.id)
    return SubscriptionHistoryResponse(
        subscriptions=[SubscriptionResponse.model_validate(row) for row in rows]
    )
