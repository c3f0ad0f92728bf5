"""Content domain entities."""

from dataclasses import dataclass

from ..entitlements import ContentAccessLevel


@dataclass(frozen=True)
class ContentItem:
    """A gated piece of content as seen by the permission evaluator."""

    slug: str
    title: str = ""
    access_level: ContentAccessLevel = ContentAccessLevel.PUBLIC
    content: str = ""
    excerpt: str | None = None
    preview_content: str | None = None
    locale: str = "en"

    def __post_init__(self):
        if isinstance(self.access_level, str):
            object.__setattr__(self, "access_level", ContentAccessLevel(self.access_level))
