"""
Integration tests for gated content and search routes.
"""

from datetime import UTC, datetime, timedelta
from uuid import uuid4

import pytest
from fastapi import status
from httpx import AsyncClient

from api.dependencies import get_permission_evaluator
from core.entitlements import SearchPolicy, SubscriptionStatus
from core.permissions import AccessPolicy, PermissionEvaluator
from infrastructure.database.models import BlogPost, UserSubscription


async def _subscribe(db_session, user, plan, ends_in=timedelta(days=10)):
    now = datetime.now(UTC)
    db_session.add(
        UserSubscription(
            id=str(uuid4()),
            user_id=user.id,
            plan_id=plan.id,
            plan=plan,
            status=SubscriptionStatus.ACTIVE.value,
            start_date=now - timedelta(days=20),
            end_date=now + ends_in,
            payment_id="sub_content",
        )
    )
    await db_session.commit()


class TestGetContent:
    """Tests for GET /content/{slug}."""

    @pytest.mark.asyncio
    async def test_public_post_is_full_for_guests(self, async_client: AsyncClient, blog_posts):
        response = await async_client.get("/api/v1/content/public-guide")

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["kind"] == "full"
        assert data["content"] == "Full public gardening content"
        assert response.headers["Cache-Control"] == "private, no-store"

    @pytest.mark.asyncio
    async def test_guest_gets_preview_of_registered_post(self, async_client: AsyncClient, blog_posts):
        response = await async_client.get("/api/v1/content/registered-guide")

        data = response.json()
        assert data["kind"] == "preview"
        assert data["content"] == "Preview of the registered gardening guide"
        assert data["requires_auth"] is True
        assert data["required_level"] == "REGISTERED"

    @pytest.mark.asyncio
    async def test_registered_user_reads_registered_post(
        self, async_client: AsyncClient, auth_headers: dict, blog_posts
    ):
        response = await async_client.get("/api/v1/content/registered-guide", headers=auth_headers)

        assert response.json()["kind"] == "full"

    @pytest.mark.asyncio
    async def test_registered_user_asked_to_subscribe(
        self, async_client: AsyncClient, auth_headers: dict, blog_posts
    ):
        response = await async_client.get("/api/v1/content/premium-guide", headers=auth_headers)

        data = response.json()
        assert data["kind"] == "preview"
        assert data["requires_subscription"] is True
        assert data["requires_auth"] is False
        assert "Full premium" not in (data["content"] or "")

    @pytest.mark.asyncio
    async def test_subscriber_reads_premium_but_not_exclusive(
        self, async_client: AsyncClient, db_session, test_user, auth_headers: dict, blog_posts, plans
    ):
        await _subscribe(db_session, test_user, plans["monthly"])

        premium = await async_client.get("/api/v1/content/premium-guide", headers=auth_headers)
        exclusive = await async_client.get("/api/v1/content/exclusive-guide", headers=auth_headers)

        assert premium.json()["kind"] == "full"
        assert exclusive.json()["kind"] == "preview"
        assert exclusive.json()["required_level"] == "EXCLUSIVE"

    @pytest.mark.asyncio
    async def test_lapsed_subscription_does_not_unlock(
        self, async_client: AsyncClient, db_session, test_user, auth_headers: dict, blog_posts, plans
    ):
        await _subscribe(db_session, test_user, plans["monthly"], ends_in=timedelta(minutes=-5))

        response = await async_client.get("/api/v1/content/premium-guide", headers=auth_headers)

        assert response.json()["kind"] == "preview"

    @pytest.mark.asyncio
    async def test_full_view_counted(self, async_client: AsyncClient, db_session, blog_posts):
        await async_client.get("/api/v1/content/public-guide")
        await async_client.get("/api/v1/content/registered-guide")

        await db_session.refresh(blog_posts["PUBLIC"])
        await db_session.refresh(blog_posts["REGISTERED"])
        assert blog_posts["PUBLIC"].view_count == 1
        assert blog_posts["REGISTERED"].view_count == 0

    @pytest.mark.asyncio
    async def test_locale_falls_back_to_english(self, async_client: AsyncClient, blog_posts):
        response = await async_client.get("/api/v1/content/public-guide", params={"locale": "ro"})

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["locale"] == "en"

    @pytest.mark.asyncio
    async def test_localized_version_preferred(self, async_client: AsyncClient, db_session, blog_posts):
        db_session.add(
            BlogPost(
                id=str(uuid4()),
                slug="public-guide",
                locale="ro",
                title="Ghid de gradinarit",
                content="Continut complet",
                access_level="PUBLIC",
                published=True,
            )
        )
        await db_session.commit()

        response = await async_client.get("/api/v1/content/public-guide", params={"locale": "ro"})

        assert response.json()["title"] == "Ghid de gradinarit"

    @pytest.mark.asyncio
    async def test_draft_and_missing_are_404(self, async_client: AsyncClient, blog_posts):
        assert (await async_client.get("/api/v1/content/draft-gardening")).status_code == 404
        assert (await async_client.get("/api/v1/content/no-such-post")).status_code == 404

    @pytest.mark.asyncio
    async def test_guest_preview_disabled(self, async_client: AsyncClient, blog_posts):
        from main import app

        app.dependency_overrides[get_permission_evaluator] = lambda: PermissionEvaluator(
            AccessPolicy(guest_preview=False)
        )

        response = await async_client.get("/api/v1/content/premium-guide")

        data = response.json()
        assert data["kind"] == "none"
        assert data["content"] is None
        assert data["requires_auth"] is True


class TestSearch:
    """Tests for POST /content/search."""

    @pytest.mark.asyncio
    async def test_guest_search_limited_to_public(self, async_client: AsyncClient, blog_posts):
        response = await async_client.post("/api/v1/content/search", json={"query": "gardening"})

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["searchable_levels"] == ["PUBLIC"]
        assert [r["slug"] for r in data["results"]] == ["public-guide"]
        assert set(data["results"][0]) == {"slug", "locale", "title", "excerpt", "level"}
        assert data["results"][0]["level"] == "PUBLIC"

    @pytest.mark.asyncio
    async def test_subscriber_search_matches_view(
        self, async_client: AsyncClient, db_session, test_user, auth_headers: dict, blog_posts, plans
    ):
        await _subscribe(db_session, test_user, plans["yearly"])

        response = await async_client.post(
            "/api/v1/content/search", json={"query": "gardening"}, headers=auth_headers
        )

        data = response.json()
        assert sorted(data["searchable_levels"]) == ["PREMIUM", "PUBLIC", "REGISTERED"]
        slugs = {r["slug"] for r in data["results"]}
        assert slugs == {"public-guide", "registered-guide", "premium-guide"}

    @pytest.mark.asyncio
    async def test_drafts_never_returned(self, async_client: AsyncClient, blog_posts):
        response = await async_client.post("/api/v1/content/search", json={"query": "notes"})

        assert response.json()["results"] == []

    @pytest.mark.asyncio
    async def test_short_query_rejected(self, async_client: AsyncClient, blog_posts):
        response = await async_client.post("/api/v1/content/search", json={"query": " a "})

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    @pytest.mark.asyncio
    async def test_like_wildcards_are_literal(self, async_client: AsyncClient, blog_posts):
        response = await async_client.post("/api/v1/content/search", json={"query": "%%"})

        assert response.json()["results"] == []

    @pytest.mark.asyncio
    async def test_authenticated_policy_blocks_guests(self, async_client: AsyncClient, blog_posts):
        from main import app

        app.dependency_overrides[get_permission_evaluator] = lambda: PermissionEvaluator(
            AccessPolicy(search_policy=SearchPolicy.AUTHENTICATED)
        )

        response = await async_client.post("/api/v1/content/search", json={"query": "gardening"})

        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert response.json()["detail"] == {"error": "SEARCH_UNAUTHORIZED", "require_auth": True}

    @pytest.mark.asyncio
    async def test_authenticated_policy_allows_users(
        self, async_client: AsyncClient, auth_headers: dict, blog_posts
    ):
        from main import app

        app.dependency_overrides[get_permission_evaluator] = lambda: PermissionEvaluator(
            AccessPolicy(search_policy=SearchPolicy.AUTHENTICATED)
        )

        response = await async_client.post(
            "/api/v1/content/search", json={"query": "gardening"}, headers=auth_headers
        )

        assert response.status_code == status.HTTP_200_OK
        assert {r["slug"] for r in response.json()["results"]} == {"public-guide", "registered-guide"}
