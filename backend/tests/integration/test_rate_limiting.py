"""Integration tests for rate limiting middleware."""
import pytest
from httpx import AsyncClient

from infrastructure.database.models.user import User

pytestmark = pytest.mark.asyncio


class TestRateLimitingCheckout:
    """Tests for rate limiting on checkout endpoint."""

    async def test_checkout_rate_limit_exceeded(
        self, async_client: AsyncClient, test_user: User, auth_headers: dict
    ):
        """Test that checkout endpoint is rate limited (10 requests per minute)."""
        for i in range(10):
            response = await async_client.post(
                "/api/v1/billing/checkout",
                json={"type": "subscription", "product_id": f"price_{i}"},
                headers=auth_headers,
            )
            assert response.status_code == 200

        # 11th attempt should be rate limited
        response = await async_client.post(
            "/api/v1/billing/checkout",
            json={"type": "subscription", "product_id": "price_11"},
            headers=auth_headers,
        )
        assert response.status_code == 429


class TestRateLimitingSearch:
    """Tests for rate limiting on search endpoint."""

    async def test_search_rate_limit_exceeded(self, async_client: AsyncClient):
        """Test that search is rate limited (30 requests per minute), rejected queries included."""
        for i in range(30):
            response = await async_client.post("/api/v1/content/search", json={"query": "x"})
            # Should get 400 for a too-short query, not 429
            assert response.status_code == 400

        response = await async_client.post("/api/v1/content/search", json={"query": "x"})
        assert response.status_code == 429

    async def test_rate_limit_429_response_format(self, async_client: AsyncClient):
        """Test that 429 responses have proper format."""
        for i in range(30):
            await async_client.post("/api/v1/content/search", json={"query": "x"})

        response = await async_client.post("/api/v1/content/search", json={"query": "x"})
        assert response.status_code == 429

        data = response.json()
        assert "detail" in data or "error" in data


class TestRateLimitingDifferentEndpoints:
    """Tests that rate limits are independent per endpoint."""

    async def test_different_endpoints_have_independent_limits(
        self, async_client: AsyncClient, test_user: User, auth_headers: dict
    ):
        """Test that rate limits don't carry over between different endpoints."""
        for i in range(10):
            await async_client.post(
                "/api/v1/billing/checkout",
                json={"type": "subscription", "product_id": "price_monthly"},
                headers=auth_headers,
            )

        response = await async_client.post(
            "/api/v1/billing/checkout",
            json={"type": "subscription", "product_id": "price_monthly"},
            headers=auth_headers,
        )
        assert response.status_code == 429

        # Search still works (independent limit)
        response = await async_client.post("/api/v1/content/search", json={"query": "gardening"})
        assert response.status_code == 200
