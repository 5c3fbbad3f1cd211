"""
Bank linking API

Endpoints:
- POST /api/banks/link-token - Issue a link token for the linking widget
- POST /api/banks/exchange - Exchange the widget's public token and store the account(s)
- GET /api/banks - List the caller's linked bank accounts
- GET /api/banks/{shareable_id} - Get one linked bank account by its shareable id
"""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List
import logging

from database import get_db
from database.identity_models import IdentityDB
from errors import BankLinkError
from middleware.auth import get_current_identity_required, get_services
from models.schemas import (
    BankAccountResponse, LinkTokenResponse,
    PublicTokenExchangeRequest, PublicTokenExchangeResponse
)
from services.container import ServiceContainer
from utils.error_responses import to_http_exception

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/banks", tags=["Bank Accounts"])

LINK_FAILED_MESSAGE = "Unable to link bank account. Please try again."


@router.post("/link-token", response_model=LinkTokenResponse)
async def create_link_token(
    identity: IdentityDB = Depends(get_current_identity_required),
    services: ServiceContainer = Depends(get_services),
):
    """Issue a short-lived link token bound to the signed-in identity."""
    try:
        link_token = await services.link_token_issuer().issue_link_token(identity)
    except BankLinkError as e:
        raise to_http_exception(e, logger, "Link token issue", message=LINK_FAILED_MESSAGE)

    return {"link_token": link_token}


@router.post("/exchange", response_model=PublicTokenExchangeResponse)
async def exchange_public_token(
    request: PublicTokenExchangeRequest,
    identity: IdentityDB = Depends(get_current_identity_required),
    services: ServiceContainer = Depends(get_services),
    db: AsyncSession = Depends(get_db),
):
    """
    Exchange a public token from the linking widget.

    On success the linked account(s) are stored and the dashboard view is
    refreshed. A public token is single-use: retrying a failed exchange
    needs a new one from the widget.
    """
    orchestrator = services.token_exchange(db)
    try:
        result = await orchestrator.exchange_public_token(request.public_token, identity)
    except BankLinkError as e:
        raise to_http_exception(e, logger, "Public token exchange", message=LINK_FAILED_MESSAGE)

    return {
        "public_token_exchange": result.status.value,
        "accounts": [record.to_dict() for record in result.records],
    }


@router.get("", response_model=List[BankAccountResponse])
async def list_banks(
    identity: IdentityDB = Depends(get_current_identity_required),
    services: ServiceContainer = Depends(get_services),
    db: AsyncSession = Depends(get_db),
):
    records = await services.bank_accounts(db).list_for_user(identity.id)
    return [record.to_dict() for record in records]


@router.get("/{shareable_id}", response_model=BankAccountResponse)
async def get_bank(
    shareable_id: str,
    identity: IdentityDB = Depends(get_current_identity_required),
    services: ServiceContainer = Depends(get_services),
    db: AsyncSession = Depends(get_db),
):
    """Records owned by someone else are reported as not found."""
    record = await services.bank_accounts(db).get_by_shareable_id(shareable_id, user_id=identity.id)
    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Bank account not found",
        )
    return record.to_dict()
