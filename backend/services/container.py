"""
Service container

Builds every long-lived client once at process start (database engine,
HTTP client, Plaid and Dwolla clients, field cipher, dashboard cache) and
hands request-scoped services out from them. The application lifespan owns
the container and closes it on shutdown.
"""

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from config import Settings
from database.connection import create_engine_from_url, create_session_factory
from models.enums import AccountSelection
from services.bank_accounts import BankAccountRepository
from services.dashboard import DashboardCache, DashboardService
from services.dwolla_client import DwollaClient
from services.identity import IdentityGateway
from services.link_tokens import LinkTokenIssuer
from services.plaid_client import PlaidGateway
from services.provisioning import CustomerProvisioner, FundingSourceProvisioner
from services.token_exchange import TokenExchangeOrchestrator
from utils.encryption import FieldCipher

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    settings: Settings
    engine: AsyncEngine
    session_factory: async_sessionmaker[AsyncSession]
    http: httpx.AsyncClient
    plaid: PlaidGateway
    dwolla: DwollaClient
    cipher: FieldCipher
    dashboard_cache: DashboardCache

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        engine: Optional[AsyncEngine] = None,
        plaid: Optional[PlaidGateway] = None,
        http: Optional[httpx.AsyncClient] = None,
    ) -> "ServiceContainer":
        engine = engine or create_engine_from_url(settings.DATABASE_URL)
        http = http or httpx.AsyncClient(timeout=settings.DWOLLA_TIMEOUT_SECONDS)

        container = cls(
            settings=settings,
            engine=engine,
            session_factory=create_session_factory(engine),
            http=http,
            plaid=plaid or PlaidGateway.from_settings(settings),
            dwolla=DwollaClient(
                http=http,
                key=settings.DWOLLA_KEY,
                secret=settings.DWOLLA_SECRET,
                base_url=settings.dwolla_base_url,
            ),
            cipher=FieldCipher(settings.ENCRYPTION_KEY),
            dashboard_cache=DashboardCache(ttl_seconds=settings.DASHBOARD_CACHE_TTL_SECONDS),
        )
        logger.info("Service container initialized")
        return container

    async def aclose(self) -> None:
        await self.http.aclose()
        await self.engine.dispose()
        logger.info("Service container closed")

    # ==================== REQUEST-SCOPED SERVICES ====================

    def identity_gateway(self, db: AsyncSession) -> IdentityGateway:
        return IdentityGateway(
            db=db,
            customers=CustomerProvisioner(self.dwolla),
            cipher=self.cipher,
            session_ttl=timedelta(days=self.settings.SESSION_TTL_DAYS),
        )

    def bank_accounts(self, db: AsyncSession) -> BankAccountRepository:
        return BankAccountRepository(db, self.cipher)

    def link_token_issuer(self) -> LinkTokenIssuer:
        return LinkTokenIssuer(
            plaid=self.plaid,
            products=self.settings.plaid_products,
            country_codes=self.settings.plaid_country_codes,
            language=self.settings.PLAID_LANGUAGE,
        )

    def token_exchange(self, db: AsyncSession) -> TokenExchangeOrchestrator:
        return TokenExchangeOrchestrator(
            plaid=self.plaid,
            funding_sources=FundingSourceProvisioner(self.dwolla),
            repository=self.bank_accounts(db),
            account_selection=AccountSelection(self.settings.LINK_ACCOUNT_SELECTION),
            dashboard_cache=self.dashboard_cache,
        )

    def dashboard(self, db: AsyncSession) -> DashboardService:
        return DashboardService(
            plaid=self.plaid,
            repository=self.bank_accounts(db),
            cache=self.dashboard_cache,
            transaction_days=self.settings.DASHBOARD_TRANSACTION_DAYS,
            transaction_limit=self.settings.DASHBOARD_TRANSACTION_LIMIT,
        )
