from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional
import logging

from database import get_db
from database.identity_models import IdentityDB
from errors import BankLinkError, InvalidCredentials
from middleware.auth import (
    get_current_identity_required,
    get_services,
    get_session_secret,
    set_session_cookie,
    clear_session_cookie,
)
from models.schemas import IdentityResponse, SignInRequest, SignUpRequest
from services.container import ServiceContainer
from utils.error_responses import to_http_exception

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth", tags=["Authentication"])


def _client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


# ==================== PUBLIC ENDPOINTS ====================

@router.post("/sign-up", response_model=IdentityResponse, status_code=status.HTTP_201_CREATED)
async def sign_up(
    sign_up_data: SignUpRequest,
    response: Response,
    services: ServiceContainer = Depends(get_services),
    db: AsyncSession = Depends(get_db),
):
    """
    Register a new identity.

    Creates the payment-rail customer, stores the identity with the
    customer reference embedded, and signs the new user in.
    """
    gateway = services.identity_gateway(db)
    profile = sign_up_data.model_dump(exclude={"password"})

    try:
        result = await gateway.register(profile, sign_up_data.password)
    except BankLinkError as e:
        raise to_http_exception(
            e, logger, "Sign-up",
            message="Unable to create your account. Please try again.",
        )

    set_session_cookie(response, services, result.session)
    return result.identity.to_dict()


@router.post("/sign-in", response_model=IdentityResponse)
async def sign_in(
    sign_in_data: SignInRequest,
    request: Request,
    response: Response,
    services: ServiceContainer = Depends(get_services),
    db: AsyncSession = Depends(get_db),
):
    """
    Authenticate with email and password.
    No cookie is set when authentication fails.
    """
    gateway = services.identity_gateway(db)

    try:
        session = await gateway.authenticate(sign_in_data.email, sign_in_data.password)
    except InvalidCredentials:
        logger.warning(f"Sign-in rejected for {sign_in_data.email} from {_client_ip(request)}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error": "request_failed", "message": "Invalid email or password"},
        )
    except BankLinkError as e:
        raise to_http_exception(e, logger, "Sign-in")

    identity = await gateway.get_identity_by_id(session.identity_id)
    set_session_cookie(response, services, session)
    return identity.to_dict()


# ==================== SESSION ENDPOINTS ====================

@router.post("/sign-out", status_code=status.HTTP_204_NO_CONTENT)
async def sign_out(
    session_secret: Optional[str] = Depends(get_session_secret),
    services: ServiceContainer = Depends(get_services),
    db: AsyncSession = Depends(get_db),
):
    """End the current session and delete the cookie."""
    await services.identity_gateway(db).end_session(session_secret)
    response = Response(status_code=status.HTTP_204_NO_CONTENT)
    clear_session_cookie(response, services)
    return response


@router.get("/me", response_model=IdentityResponse)
async def get_me(identity: IdentityDB = Depends(get_current_identity_required)):
    """Get the signed-in identity."""
    return identity.to_dict()
