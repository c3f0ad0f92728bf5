"""
Integration tests for billing API routes.

Tests checkout link and customer portal creation. The Stripe adapter is the
test fixture with mocked outbound calls.
"""

import pytest
from fastapi import status
from httpx import AsyncClient

from adapters.payments import StripeAPIError
from infrastructure.database.models import User


class TestCheckoutEndpoint:
    """Tests for POST /billing/checkout endpoint."""

    @pytest.mark.asyncio
    async def test_checkout_requires_auth(self, async_client: AsyncClient):
        response = await async_client.post(
            "/api/v1/billing/checkout",
            json={"type": "subscription", "product_id": "price_monthly"},
        )

        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    @pytest.mark.asyncio
    async def test_checkout_generates_url(
        self,
        async_client: AsyncClient,
        test_user: User,
        auth_headers: dict,
        billing_adapter,
    ):
        response = await async_client.post(
            "/api/v1/billing/checkout",
            json={"type": "subscription", "product_id": "price_monthly"},
            headers=auth_headers,
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["checkout_link"].startswith("https://checkout.stripe.com/")

        kwargs = billing_adapter.create_checkout_link.await_args.kwargs
        assert kwargs["type"] == "subscription"
        assert kwargs["product_id"] == "price_monthly"
        assert kwargs["user_id"] == test_user.id
        assert kwargs["email"] == test_user.email
        assert kwargs["redirect_url"] == "http://localhost:3000/app/subscription"

    @pytest.mark.asyncio
    async def test_checkout_accepts_frontend_redirect(
        self, async_client: AsyncClient, auth_headers: dict, billing_adapter
    ):
        response = await async_client.post(
            "/api/v1/billing/checkout",
            json={
                "type": "one-time",
                "product_id": "price_lifetime",
                "redirect_url": "http://localhost:3000/thanks",
            },
            headers=auth_headers,
        )

        assert response.status_code == status.HTTP_200_OK
        assert billing_adapter.create_checkout_link.await_args.kwargs["redirect_url"] == (
            "http://localhost:3000/thanks"
        )

    @pytest.mark.asyncio
    async def test_checkout_rejects_foreign_redirect(
        self, async_client: AsyncClient, auth_headers: dict, billing_adapter
    ):
        response = await async_client.post(
            "/api/v1/billing/checkout",
            json={
                "type": "subscription",
                "product_id": "price_monthly",
                "redirect_url": "https://evil.example/steal",
            },
            headers=auth_headers,
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        billing_adapter.create_checkout_link.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_checkout_invalid_type(self, async_client: AsyncClient, auth_headers: dict):
        response = await async_client.post(
            "/api/v1/billing/checkout",
            json={"type": "rental", "product_id": "price_monthly"},
            headers=auth_headers,
        )

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_checkout_provider_error(
        self, async_client: AsyncClient, auth_headers: dict, billing_adapter
    ):
        billing_adapter.create_checkout_link.side_effect = StripeAPIError("Stripe checkout failed")

        response = await async_client.post(
            "/api/v1/billing/checkout",
            json={"type": "subscription", "product_id": "price_monthly"},
            headers=auth_headers,
        )

        assert response.status_code == status.HTTP_502_BAD_GATEWAY


class TestPortalEndpoint:
    """Tests for POST /billing/portal endpoint."""

    @pytest.mark.asyncio
    async def test_portal_requires_customer(self, async_client: AsyncClient, auth_headers: dict):
        response = await async_client.post("/api/v1/billing/portal", headers=auth_headers)

        assert response.status_code == status.HTTP_404_NOT_FOUND

    @pytest.mark.asyncio
    async def test_portal_link(
        self,
        async_client: AsyncClient,
        db_session,
        test_user: User,
        auth_headers: dict,
        billing_adapter,
    ):
        test_user.stripe_customer_id = "cus_portal"
        await db_session.commit()

        response = await async_client.post("/api/v1/billing/portal", headers=auth_headers)

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["portal_link"] == "https://billing.stripe.com/p/session/test_1"
        billing_adapter.create_customer_portal_link.assert_awaited_once_with(
            "cus_portal", "http://localhost:3000/app/settings/billing"
        )

    @pytest.mark.asyncio
    async def test_portal_requires_auth(self, async_client: AsyncClient):
        response = await async_client.post("/api/v1/billing/portal")

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
