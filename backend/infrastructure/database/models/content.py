"""
Content database models: blog posts with an access level.
"""

from datetime import datetime
from typing import Optional
from uuid import uuid4

from sqlalchemy import Boolean, DateTime, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from core.domain import ContentItem
from core.entitlements import ContentAccessLevel

from .base import Base, TimestampMixin


class BlogPost(Base, TimestampMixin):
    """Localized blog post."""

    __tablename__ = "blog_posts"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    slug: Mapped[str] = mapped_column(String(255), nullable=False)
    locale: Mapped[str] = mapped_column(String(10), default="en", nullable=False)

    title: Mapped[str] = mapped_column(String(500), nullable=False)
    excerpt: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    preview_content: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    access_level: Mapped[str] = mapped_column(
        String(20),
        default=ContentAccessLevel.PUBLIC.value,
        nullable=False,
    )

    published: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    published_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    view_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    __table_args__ = (
        UniqueConstraint("slug", "locale", name="uq_blog_posts_slug_locale"),
        Index("ix_blog_posts_published_level", "published", "access_level"),
    )

    def __repr__(self) -> str:
        return f"<BlogPost(slug={self.slug}, locale={self.locale}, level={self.access_level})>"

    def to_content_item(self) -> ContentItem:
        return ContentItem(
            slug=self.slug,
            title=self.title,
            access_level=ContentAccessLevel(self.access_level),
            content=self.content,
            excerpt=self.excerpt,
            preview_content=self.preview_content,
            locale=self.locale,
        )
