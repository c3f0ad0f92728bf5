"""Viewer domain entity."""

from dataclasses import dataclass, field

from .subscription import PurchaseRecord, SubscriptionRecord


@dataclass(frozen=True)
class Viewer:
    """An authenticated user together with their billing records.

    Unauthenticated requests are represented by ``None`` rather than a
    Viewer, so every Viewer is authenticated.
    """

    id: str
    email: str = ""
    membership_level: str = "FREE"  # display label, never authoritative
    subscriptions: tuple[SubscriptionRecord, ...] = field(default_factory=tuple)
    purchases: tuple[PurchaseRecord, ...] = field(default_factory=tuple)

    def __post_init__(self):
        if not isinstance(self.subscriptions, tuple):
            object.__setattr__(self, "subscriptions", tuple(self.subscriptions))
        if not isinstance(self.purchases, tuple):
            object.__setattr__(self, "purchases", tuple(self.purchases))
