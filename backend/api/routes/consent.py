"""
Cookie consent API routes.

Consent lives in a cookie so both the server and the frontend can read it
without an account.
"""

import logging

from fastapi import APIRouter, Request, Response

from api.schemas.consent import ConsentResponse, ConsentUpdateRequest
from core.consent import ConsentPreferences
from infrastructure.config.settings import settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/consent", tags=["consent"])


def _to_response(prefs: ConsentPreferences | None) -> ConsentResponse:
    if prefs is None or prefs.needs_reconsent(settings.consent_version):
        return ConsentResponse(version=settings.consent_version, needs_consent=True)
    return ConsentResponse(
        functional=prefs.functional,
        analytics=prefs.analytics,
        marketing=prefs.marketing,
        version=prefs.version,
        timestamp=prefs.timestamp,
        needs_consent=False,
    )


@router.get("", response_model=ConsentResponse)
async def get_consent(request: Request):
    """Stored consent, or needs_consent when missing or from an older policy version."""
    prefs = ConsentPreferences.from_cookie_value(
        request.cookies.get(settings.consent_cookie_name)
    )
    return _to_response(prefs)


@router.put("", response_model=ConsentResponse)
async def update_consent(consent_request: ConsentUpdateRequest, response: Response):
    """Record the visitor's choices for the current policy version."""
    prefs = ConsentPreferences(
        functional=consent_request.functional,
        analytics=consent_request.analytics,
        marketing=consent_request.marketing,
        version=settings.consent_version,
    )
    response.set_cookie(
        key=settings.consent_cookie_name,
        value=prefs.to_cookie_value(),
        max_age=settings.consent_cookie_max_age_days * 86400,
        path="/",
        samesite="lax",
        secure=settings.is_production,
        httponly=False,
    )
    logger.info(
        f"Consent recorded (functional={prefs.functional}, "
        f"analytics={prefs.analytics}, marketing={prefs.marketing})"
    )
    return _to_response(prefs)
