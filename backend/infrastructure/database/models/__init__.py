"""
SQLAlchemy database models.
"""

from .base import Base, TimestampMixin
from .billing import Purchase, SubscriptionPlan, UserSubscription
from .content import BlogPost
from .user import User, UserStatus

__all__ = [
    "Base",
    "TimestampMixin",
    "User",
    "UserStatus",
    "SubscriptionPlan",
    "UserSubscription",
    "Purchase",
    "BlogPost",
]
