# Domain Entities
# Pure business objects with no external dependencies
from .content import ContentItem
from .subscription import PurchaseRecord, SubscriptionRecord
from .user import Viewer

__all__ = [
    "ContentItem",
    "PurchaseRecord",
    "SubscriptionRecord",
    "Viewer",
]
