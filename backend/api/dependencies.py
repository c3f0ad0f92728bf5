"""
API dependencies for authentication, permissions and the billing provider.
"""

from functools import lru_cache
from typing import Annotated, Optional

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from adapters.payments import StripeAdapter
from core.permissions import AccessPolicy, PermissionEvaluator
from core.security import TokenService
from infrastructure.config.settings import settings
from infrastructure.database.connection import get_db
from infrastructure.database.models.user import User
from services.subscription_manager import SubscriptionManager


@lru_cache
def get_token_service() -> TokenService:
    return TokenService(
        secret_key=settings.jwt_secret_key,
        algorithm=settings.jwt_algorithm,
        access_token_expire_minutes=settings.jwt_access_token_expire_minutes,
    )


def _extract_token(request: Request, authorization: str | None) -> str | None:
    """Bearer header first (API clients, tests), then the HttpOnly cookie."""
    if authorization and authorization.startswith("Bearer "):
        parts = authorization.split(" ", 1)
        if len(parts) > 1 and parts[1]:
            return parts[1]
    return request.cookies.get("access_token")


async def _load_user(db: AsyncSession, token: str) -> Optional[User]:
    payload = get_token_service().verify_access_token(token)
    if not payload:
        return None
    result = await db.execute(select(User).where(User.id == payload.sub))
    return result.scalar_one_or_none()


async def get_current_user(
    request: Request,
    authorization: Annotated[str | None, Header()] = None,
    db: AsyncSession = Depends(get_db),
) -> User:
    """
    Dependency to get the current authenticated user.

    Raises 401 without a valid session and 403 for inactive accounts.
    """
    token = _extract_token(request, authorization)
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user = await _load_user(db, token)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is not active",
        )

    return user


async def get_optional_user(
    request: Request,
    authorization: Annotated[str | None, Header()] = None,
    db: AsyncSession = Depends(get_db),
) -> Optional[User]:
    """Like get_current_user, but unauthenticated requests are guests (None)."""
    token = _extract_token(request, authorization)
    if not token:
        return None
    user = await _load_user(db, token)
    if user is None or not user.is_active:
        return None
    return user


def get_permission_evaluator() -> PermissionEvaluator:
    return PermissionEvaluator(
        AccessPolicy(
            search_policy=settings.search_policy,
            guest_preview=settings.guest_preview_enabled,
        )
    )


def get_billing_adapter(request: Request) -> StripeAdapter:
    """The Stripe adapter created at startup."""
    adapter = getattr(request.app.state, "billing_adapter", None)
    if adapter is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Billing is not configured",
        )
    return adapter


def get_subscription_manager(db: AsyncSession = Depends(get_db)) -> SubscriptionManager:
    return SubscriptionManager(db, default_plan_slug=settings.default_plan_slug)
