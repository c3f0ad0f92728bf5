"""
Pytest configuration and shared fixtures for backend tests.
"""

import hashlib
import hmac
import json
import sys
import time
from pathlib import Path

# Add backend directory to path for imports
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

import pytest
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import AsyncGenerator
from unittest.mock import AsyncMock
from uuid import uuid4

from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Import after path is set
from adapters.payments import StripeAdapter
from api.dependencies import get_billing_adapter, get_token_service
from core.entitlements import BillingInterval, ContentAccessLevel
from infrastructure.database.connection import get_db
from infrastructure.database.models import (
    Base,
    BlogPost,
    SubscriptionPlan,
    User,
)

# Same token service the API verifies with
token_service = get_token_service()


# Database URL for testing (in-memory SQLite)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

TEST_WEBHOOK_SECRET = "whsec_test_secret"


@pytest.fixture
async def db_engine():
    """Create a test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # Create all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    # Drop all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    """Session factory bound to the test engine (for jobs that open their own sessions)."""
    return sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
async def test_user(db_session: AsyncSession) -> User:
    """Create a test user."""
    user = User(
        id=str(uuid4()),
        email="test@example.com",
        name="Test User",
        status="active",
    )
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user


@pytest.fixture
async def other_user(db_session: AsyncSession) -> User:
    """A second account, for isolation checks."""
    user = User(
        id=str(uuid4()),
        email="other@example.com",
        name="Other User",
        status="active",
    )
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user


@pytest.fixture
def auth_headers(test_user: User) -> dict:
    """Generate authentication headers for test user."""
    access_token = token_service.create_access_token(user_id=test_user.id)
    return {"Authorization": f"Bearer {access_token}"}


@pytest.fixture
def billing_adapter() -> StripeAdapter:
    """
    Stripe adapter with a known webhook secret.

    Signature verification and payload parsing are real; outbound API calls
    are AsyncMocks so no test talks to Stripe.
    """
    adapter = StripeAdapter(
        secret_key="sk_test_123",
        webhook_secret=TEST_WEBHOOK_SECRET,
        webhook_tolerance=300,
        request_timeout=5.0,
    )
    adapter.create_checkout_link = AsyncMock(return_value="https://checkout.stripe.com/c/pay/cs_test_1")
    adapter.create_customer_portal_link = AsyncMock(
        return_value="https://billing.stripe.com/p/session/test_1"
    )
    adapter.get_checkout_product_id = AsyncMock(return_value=None)
    return adapter


@pytest.fixture
async def async_client(
    db_session: AsyncSession,
    billing_adapter: StripeAdapter,
) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP client for testing."""
    # Import app here to avoid circular imports
    from main import app

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_billing_adapter] = lambda: billing_adapter

    # Reset rate limiter state between tests to prevent cross-test 429s
    app.state.limiter.reset()

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


# ============================================================================
# Billing Test Fixtures
# ============================================================================


def _plan(name: str, slug: str, price: str, interval: BillingInterval, price_id: str) -> SubscriptionPlan:
    return SubscriptionPlan(
        id=str(uuid4()),
        name=name,
        slug=slug,
        price=Decimal(price),
        currency="USD",
        interval=interval.value,
        interval_count=1,
        provider_price_id=price_id,
        active=True,
    )


@pytest.fixture
async def plans(db_session: AsyncSession) -> dict[str, SubscriptionPlan]:
    """
    Monthly, yearly and lifetime plans, each mapped to a Stripe price id.

    Keys: "monthly" (price_monthly), "yearly" (price_yearly),
    "lifetime" (price_lifetime).
    """
    created = {
        "monthly": _plan("Premium Monthly", "premium-monthly", "9.99", BillingInterval.MONTH, "price_monthly"),
        "yearly": _plan("Premium Yearly", "premium-yearly", "99.00", BillingInterval.YEAR, "price_yearly"),
        "lifetime": _plan("Lifetime", "lifetime", "299.00", BillingInterval.LIFETIME, "price_lifetime"),
    }
    db_session.add_all(created.values())
    await db_session.commit()
    return created


@pytest.fixture
def webhook_signer():
    """
    Build a signed Stripe webhook request.

    Returns a callable taking the event dict and returning (body, headers),
    signed the way Stripe signs deliveries: v1 = HMAC-SHA256 of
    "<timestamp>.<body>" under the endpoint secret.
    """

    def sign(event: dict, secret: str = TEST_WEBHOOK_SECRET, timestamp: int | None = None):
        body = json.dumps(event)
        ts = timestamp if timestamp is not None else int(time.time())
        signature = hmac.new(
            secret.encode("utf-8"),
            f"{ts}.{body}".encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()
        headers = {
            "Stripe-Signature": f"t={ts},v1={signature}",
            "Content-Type": "application/json",
        }
        return body.encode("utf-8"), headers

    return sign


def subscription_event(
    event_type: str,
    subscription_id: str,
    *,
    user_id: str | None,
    status: str = "active",
    price_id: str = "price_monthly",
    customer_id: str = "cus_test_1",
    period_end: datetime | None = None,
) -> dict:
    """A customer.subscription.* event body as Stripe delivers it."""
    period_end = period_end or datetime.now(UTC) + timedelta(days=30)
    return {
        "id": f"evt_{uuid4().hex[:16]}",
        "object": "event",
        "type": event_type,
        "created": int(time.time()),
        "data": {
            "object": {
                "id": subscription_id,
                "object": "subscription",
                "customer": customer_id,
                "status": status,
                "metadata": {"user_id": user_id or ""},
                "items": {
                    "object": "list",
                    "data": [
                        {
                            "id": "si_test_1",
                            "price": {"id": price_id},
                            "current_period_end": int(period_end.timestamp()),
                        }
                    ],
                },
            }
        },
    }


@pytest.fixture
def make_subscription_event():
    return subscription_event


# ============================================================================
# Content Test Fixtures
# ============================================================================


@pytest.fixture
async def blog_posts(db_session: AsyncSession) -> dict[str, BlogPost]:
    """One published post per access level, plus an unpublished draft."""
    now = datetime.now(UTC)
    posts = {}
    for index, level in enumerate(ContentAccessLevel):
        slug = f"{level.value.lower()}-guide"
        posts[level.value] = BlogPost(
            id=str(uuid4()),
            slug=slug,
            locale="en",
            title=f"{level.value.title()} Guide to Gardening",
            excerpt=f"Excerpt of the {level.value.lower()} gardening guide",
            content=f"Full {level.value.lower()} gardening content",
            preview_content=f"Preview of the {level.value.lower()} gardening guide",
            access_level=level.value,
            published=True,
            published_at=now - timedelta(days=index),
        )
    posts["draft"] = BlogPost(
        id=str(uuid4()),
        slug="draft-gardening",
        locale="en",
        title="Draft Gardening Notes",
        content="Unpublished gardening notes",
        access_level=ContentAccessLevel.PUBLIC.value,
        published=False,
    )
    db_session.add_all(posts.values())
    await db_session.commit()
    return posts
