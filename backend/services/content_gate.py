"""
Content gate: decides how much of a content item a request receives.

Decisions are computed from the viewer's records on every request and are
never cached, so a subscription that just expired stops unlocking content
immediately.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from core.domain import ContentItem, Viewer
from core.entitlements import ContentAccessLevel, PreviewLevel
from core.permissions import PermissionEvaluator

LOCKED_NOTICE = "This content is available to members. Sign in or upgrade to keep reading."


@dataclass(frozen=True)
class GateDecision:
    """What to render for one item."""

    kind: PreviewLevel
    content: Optional[str] = None
    requires_auth: bool = False
    requires_subscription: bool = False
    required_level: Optional[ContentAccessLevel] = None

    @property
    def is_full(self) -> bool:
        return self.kind == PreviewLevel.FULL


def preview_text(item: ContentItem) -> str:
    """Preview shown to viewers who cannot read the item in full."""
    return item.preview_content or item.excerpt or LOCKED_NOTICE


class ContentGate:
    """Applies a PermissionEvaluator to content items."""

    def __init__(self, evaluator: PermissionEvaluator):
        self.evaluator = evaluator

    def evaluate(
        self,
        item: ContentItem,
        viewer: Optional[Viewer],
        now: Optional[datetime] = None,
    ) -> GateDecision:
        """
        Decide between full content, a preview with the reason it is
        gated, or nothing.

        Guests are asked to authenticate; authenticated viewers without the
        required level are asked to subscribe.
        """
        kind = self.evaluator.content_preview_level(viewer, item, now)

        if kind == PreviewLevel.FULL:
            return GateDecision(kind=kind, content=item.content)

        requires_auth = viewer is None
        requires_subscription = viewer is not None

        if kind == PreviewLevel.PREVIEW:
            return GateDecision(
                kind=kind,
                content=preview_text(item),
                requires_auth=requires_auth,
                requires_subscription=requires_subscription,
                required_level=item.access_level,
            )

        return GateDecision(
            kind=kind,
            requires_auth=requires_auth,
            requires_subscription=requires_subscription,
            required_level=item.access_level,
        )
