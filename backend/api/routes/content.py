"""
Gated content and search API routes.
"""

import logging
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_optional_user, get_permission_evaluator
from api.middleware.rate_limit import get_rate_limit, limiter
from api.schemas.content import (
    ContentResponse,
    SearchRequest,
    SearchResponse,
    SearchResultItem,
)
from api.utils import escape_like
from core.domain import Viewer
from core.permissions import PermissionEvaluator
from infrastructure.database.connection import get_db
from infrastructure.database.models.content import BlogPost
from infrastructure.database.models.user import User
from services.content_gate import ContentGate
from services.entitlement_service import EntitlementService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/content", tags=["content"])

DEFAULT_LOCALE = "en"
MIN_QUERY_LENGTH = 2


async def _load_viewer(db: AsyncSession, user: Optional[User]) -> Optional[Viewer]:
    if user is None:
        return None
    return await EntitlementService(db).load_viewer(user)


@router.post("/search", response_model=SearchResponse)
@limiter.limit(get_rate_limit("search"))
async def search_content(
    request: Request,
    search_request: SearchRequest,
    current_user: Annotated[Optional[User], Depends(get_optional_user)],
    db: AsyncSession = Depends(get_db),
    evaluator: PermissionEvaluator = Depends(get_permission_evaluator),
):
    """
    Search published posts.

    Results only include posts whose access level the viewer may search,
    which are exactly the posts the viewer can open in full.
    """
    query = search_request.query.strip()
    if len(query) < MIN_QUERY_LENGTH:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Search query must be at least {MIN_QUERY_LENGTH} characters",
        )

    viewer = await _load_viewer(db, current_user)
    if not evaluator.can_search(viewer):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"error": "SEARCH_UNAUTHORIZED", "require_auth": True},
        )

    levels = evaluator.searchable_levels(viewer)
    pattern = f"%{escape_like(query)}%"

    stmt = (
        select(BlogPost)
        .where(
            BlogPost.published.is_(True),
            BlogPost.access_level.in_([level.value for level in levels]),
            or_(
                BlogPost.title.ilike(pattern, escape="\\"),
                BlogPost.excerpt.ilike(pattern, escape="\\"),
                BlogPost.content.ilike(pattern, escape="\\"),
            ),
        )
        .order_by(BlogPost.published_at.desc(), BlogPost.title)
        .limit(search_request.limit)
    )
    if search_request.locale:
        stmt = stmt.where(BlogPost.locale == search_request.locale)

    result = await db.execute(stmt)
    posts = result.scalars().all()

    results = [
        SearchResultItem(
            slug=post.slug,
            locale=post.locale,
            title=post.title,
            excerpt=post.excerpt,
            level=post.access_level,
        )
        for post in posts
    ]

    return SearchResponse(
        query=query,
        total=len(results),
        results=results,
        searchable_levels=sorted(level.value for level in levels),
    )


@router.get("/{slug}", response_model=ContentResponse)
async def get_content(
    slug: str,
    current_user: Annotated[Optional[User], Depends(get_optional_user)],
    locale: str = Query(DEFAULT_LOCALE, max_length=10),
    db: AsyncSession = Depends(get_db),
    evaluator: PermissionEvaluator = Depends(get_permission_evaluator),
):
    """A post gated for the current viewer; decided fresh on every request."""
    post = await _get_published_post(db, slug, locale)
    if post is None and locale != DEFAULT_LOCALE:
        post = await _get_published_post(db, slug, DEFAULT_LOCALE)
    if post is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Content not found",
        )

    viewer = await _load_viewer(db, current_user)
    item = post.to_content_item()
    decision = ContentGate(evaluator).evaluate(item, viewer)

    if decision.is_full:
        await db.execute(
            update(BlogPost)
            .where(BlogPost.id == post.id)
            .values(view_count=BlogPost.view_count + 1)
        )
        await db.commit()

    return ContentResponse(
        slug=item.slug,
        locale=item.locale,
        title=item.title,
        access_level=item.access_level.value,
        kind=decision.kind.value,
        content=decision.content,
        excerpt=item.excerpt,
        requires_auth=decision.requires_auth,
        requires_subscription=decision.requires_subscription,
        required_level=decision.required_level.value if decision.required_level else None,
    )


async def _get_published_post(db: AsyncSession, slug: str, locale: str) -> Optional[BlogPost]:
    result = await db.execute(
        select(BlogPost).where(
            BlogPost.slug == slug,
            BlogPost.locale == locale,
            BlogPost.published.is_(True),
        )
    )
    return result.scalar_one_or_none()
