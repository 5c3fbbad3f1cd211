from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from database import get_db
from database.identity_models import IdentityDB
from middleware.auth import get_current_identity_required, get_services
from services.container import ServiceContainer

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/dashboard", tags=["Dashboard"])


@router.get("")
async def get_dashboard(
    identity: IdentityDB = Depends(get_current_identity_required),
    services: ServiceContainer = Depends(get_services),
    db: AsyncSession = Depends(get_db),
):
    """
    Accounts, balances and recent transactions for the signed-in identity.
    Accounts the bank-linking service cannot read right now are left out.
    """
    return await services.dashboard(db).get_dashboard(identity)
