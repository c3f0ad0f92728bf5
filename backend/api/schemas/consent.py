"""
Cookie consent schemas.
"""

from datetime import datetime

from pydantic import BaseModel


class ConsentUpdateRequest(BaseModel):
    """Visitor's choices; necessary cookies cannot be declined."""

    functional: bool = False
    analytics: bool = False
    marketing: bool = False


class ConsentResponse(BaseModel):
    necessary: bool = True
    functional: bool = False
    analytics: bool = False
    marketing: bool = False
    version: str
    timestamp: datetime | None = None
    needs_consent: bool
