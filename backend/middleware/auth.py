"""
Authentication Dependencies

Provides:
- get_services: the process-wide service container
- get_current_identity: identity behind the session cookie, or None
- get_current_identity_required: same, but 401 when signed out
- set_session_cookie / clear_session_cookie: cookie transport for sessions
"""

from typing import Optional
import logging

from fastapi import Depends, HTTPException, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from database.identity_models import IdentityDB
from logging_config import get_request_id, set_request_context
from sentry_integration import set_user
from services.container import ServiceContainer
from services.identity import Session

logger = logging.getLogger(__name__)


# ==================== DEPENDENCIES ====================

def get_services(request: Request) -> ServiceContainer:
    return request.app.state.services


def get_session_secret(
    request: Request,
    services: ServiceContainer = Depends(get_services),
) -> Optional[str]:
    return request.cookies.get(services.settings.SESSION_COOKIE_NAME)


async def get_current_identity(
    session_secret: Optional[str] = Depends(get_session_secret),
    services: ServiceContainer = Depends(get_services),
    db: AsyncSession = Depends(get_db),
) -> Optional[IdentityDB]:
    """
    Resolve the signed-in identity from the session cookie.
    Returns None if there is no cookie or the session is not valid.
    """
    identity = await services.identity_gateway(db).current_identity(session_secret)
    if identity is not None:
        set_request_context(request_id=get_request_id(), user_id=identity.id)
        set_user(identity.id)
    return identity


async def get_current_identity_required(
    identity: Optional[IdentityDB] = Depends(get_current_identity),
) -> IdentityDB:
    """
    Resolve the signed-in identity.
    Raises 401 if there is none.
    """
    if identity is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )
    return identity


# ==================== COOKIE TRANSPORT ====================

def set_session_cookie(response: Response, services: ServiceContainer, session: Session) -> None:
    """Secure, http-only, strict same-site cookie scoped to the whole site."""
    max_age = services.settings.SESSION_TTL_DAYS * 24 * 60 * 60
    response.set_cookie(
        key=services.settings.SESSION_COOKIE_NAME,
        value=session.secret,
        max_age=max_age,
        path="/",
        httponly=True,
        samesite="strict",
        secure=True,
    )


def clear_session_cookie(response: Response, services: ServiceContainer) -> None:
    response.delete_cookie(
        key=services.settings.SESSION_COOKIE_NAME,
        path="/",
        httponly=True,
        samesite="strict",
        secure=True,
    )
