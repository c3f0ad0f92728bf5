"""Cookie consent preferences."""

import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from urllib.parse import quote, unquote

from .timeutils import ensure_utc, utcnow

logger = logging.getLogger(__name__)

CONSENT_CATEGORIES = ("necessary", "functional", "analytics", "marketing")


@dataclass(frozen=True)
class ConsentPreferences:
    """A visitor's consent state per cookie category.

    ``necessary`` is always granted and cannot be switched off.
    """

    functional: bool = False
    analytics: bool = False
    marketing: bool = False
    version: str = "1"
    timestamp: datetime = field(default_factory=utcnow)

    @property
    def necessary(self) -> bool:
        return True

    def allows(self, category: str) -> bool:
        if category not in CONSENT_CATEGORIES:
            raise ValueError(f"Unknown consent category: {category}")
        return bool(getattr(self, category))

    def needs_reconsent(self, current_version: str) -> bool:
        """A version bump invalidates previously stored consent."""
        return self.version != current_version

    def to_dict(self) -> dict:
        data = asdict(self)
        data["necessary"] = True
        data["timestamp"] = self.timestamp.isoformat()
        return data

    def to_cookie_value(self) -> str:
        return quote(json.dumps(self.to_dict(), separators=(",", ":")))

    @classmethod
    def from_cookie_value(cls, raw: str | None) -> "ConsentPreferences | None":
        """Parse a stored cookie; returns None when absent or unreadable."""
        if not raw:
            return None
        try:
            data = json.loads(unquote(raw))
            timestamp = ensure_utc(datetime.fromisoformat(data["timestamp"]))
            return cls(
                functional=bool(data.get("functional", False)),
                analytics=bool(data.get("analytics", False)),
                marketing=bool(data.get("marketing", False)),
                version=str(data.get("version", "")),
                timestamp=timestamp,
            )
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("Discarding unreadable consent cookie: %s", e)
            return None
