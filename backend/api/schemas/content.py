"""
Gated content and search schemas.
"""

from pydantic import BaseModel, Field


class ContentResponse(BaseModel):
    """A content item as the current viewer may see it."""

    slug: str
    locale: str
    title: str
    access_level: str
    kind: str = Field(..., description="full, preview or none")
    content: str | None = Field(None, description="Full text or preview, depending on kind")
    excerpt: str | None = None
    requires_auth: bool = False
    requires_subscription: bool = False
    required_level: str | None = None


class SearchRequest(BaseModel):
    """Search query."""

    query: str = Field(..., max_length=200)
    locale: str | None = Field(None, max_length=10)
    limit: int = Field(20, ge=1, le=100)


class SearchResultItem(BaseModel):
    slug: str
    locale: str
    title: str
    excerpt: str | None = None
    level: str


class SearchResponse(BaseModel):
    query: str
    total: int
    results: list[SearchResultItem]
    searchable_levels: list[str]
