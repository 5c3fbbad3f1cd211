"""
Shared fixtures.

Services run against a throwaway SQLite database (aiosqlite). The
bank-linking service is replaced by FakePlaidGateway and the payment rail
by an AsyncMock shaped like DwollaClient.
"""

import os
import uuid
from typing import Any, Dict, List, Optional, Tuple
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from cryptography.fernet import Fernet

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from config import Settings
from database import create_engine_from_url, create_session_factory, init_db
from models.schemas import IdentityProfile
from services.dwolla_client import DwollaClient
from services.plaid_client import PlaidAPIError
from utils.encryption import FieldCipher

TEST_ENCRYPTION_KEY = Fernet.generate_key().decode()
DWOLLA_BASE = "https://api-sandbox.dwolla.com"


# ==================== FAKE BANK-LINKING SERVICE ====================

class FakePlaidGateway:
    """
    In-memory stand-in for PlaidGateway.

    Public tokens are single-use. Any operation named in `failures` raises
    PlaidAPIError the way the SDK wrapper does.
    """

    def __init__(self, accounts: Optional[List[Dict[str, Any]]] = None):
        self.accounts = accounts if accounts is not None else [
            {
                "account_id": "acc_checking_001",
                "name": "Plaid Checking",
                "official_name": "Plaid Gold Standard 0% Interest Checking",
                "mask": "0000",
                "type": "depository",
                "subtype": "checking",
                "balances": {"current": 110.0, "available": 100.0, "iso_currency_code": "USD"},
            },
            {
                "account_id": "acc_savings_002",
                "name": "Plaid Saving",
                "official_name": "Plaid Silver Standard 0.1% Interest Saving",
                "mask": "1111",
                "type": "depository",
                "subtype": "savings",
                "balances": {"current": 210.0, "available": 200.0, "iso_currency_code": "USD"},
            },
        ]
        self.transactions: List[Dict[str, Any]] = []
        self.failures: set = set()
        self.public_tokens: Dict[str, str] = {}
        self.items: Dict[str, str] = {}
        self.calls: List[Tuple[str, Any]] = []
        self.link_token = "link-sandbox-token"

    def issue_public_token(self) -> str:
        token = f"public-sandbox-{uuid.uuid4().hex[:8]}"
        self.public_tokens[token] = f"item-{uuid.uuid4().hex[:8]}"
        return token

    def _maybe_fail(self, operation: str):
        if operation in self.failures:
            raise PlaidAPIError(f"{operation}: simulated failure", error_code="INTERNAL_SERVER_ERROR", status=500)

    async def create_link_token(self, client_user_id, client_name, products, language, country_codes) -> str:
        self.calls.append(("link_token_create", {
            "client_user_id": client_user_id,
            "client_name": client_name,
            "products": products,
            "language": language,
            "country_codes": country_codes,
        }))
        self._maybe_fail("link_token_create")
        return self.link_token

    async def exchange_public_token(self, public_token: str) -> Tuple[str, str]:
        self.calls.append(("item_public_token_exchange", public_token))
        self._maybe_fail("item_public_token_exchange")
        item_id = self.public_tokens.pop(public_token, None)
        if item_id is None:
            raise PlaidAPIError("item_public_token_exchange: invalid public token", error_code="INVALID_PUBLIC_TOKEN", status=400)
        access_token = f"access-sandbox-{uuid.uuid4().hex[:8]}"
        self.items[access_token] = item_id
        return access_token, item_id

    async def get_accounts(self, access_token: str) -> List[Dict[str, Any]]:
        self.calls.append(("accounts_get", access_token))
        self._maybe_fail("accounts_get")
        return list(self.accounts)

    async def create_processor_token(self, access_token: str, account_id: str, processor: str = "dwolla") -> str:
        self.calls.append(("processor_token_create", account_id))
        self._maybe_fail("processor_token_create")
        return f"processor-sandbox-{account_id}"

    async def get_transactions(self, access_token, start_date, end_date, account_ids=None, count=100):
        self.calls.append(("transactions_get", account_ids))
        self._maybe_fail("transactions_get")
        return [
            t for t in self.transactions
            if not account_ids or t["account_id"] in account_ids
        ][:count]

    def called(self, operation: str) -> int:
        return sum(1 for name, _ in self.calls if name == operation)


def make_dwolla_mock() -> AsyncMock:
    dwolla = AsyncMock(spec=DwollaClient)
    dwolla.configured = True
    dwolla.create_customer.side_effect = lambda payload: f"{DWOLLA_BASE}/customers/{uuid.uuid4()}"
    dwolla.create_on_demand_authorization.return_value = {
        "self": {"href": f"{DWOLLA_BASE}/on-demand-authorizations/30e7c028-0bdf-e511-80de-0aa34a9b2388"}
    }
    dwolla.create_funding_source.side_effect = (
        lambda customer_url, name, plaid_token, links=None: f"{DWOLLA_BASE}/funding-sources/{uuid.uuid4()}"
    )
    return dwolla


# ==================== FIXTURES ====================

@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        ENVIRONMENT="test",
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'bank.db'}",
        ENCRYPTION_KEY=TEST_ENCRYPTION_KEY,
        PLAID_CLIENT_ID="test-client-id",
        PLAID_SECRET="test-secret",
        DWOLLA_KEY="test-key",
        DWOLLA_SECRET="test-secret",
        CORS_ORIGINS="http://localhost:3000",
        SENTRY_DSN="",
    )


@pytest.fixture
def cipher() -> FieldCipher:
    return FieldCipher(TEST_ENCRYPTION_KEY)


@pytest.fixture
def plaid() -> FakePlaidGateway:
    return FakePlaidGateway()


@pytest.fixture
def dwolla() -> AsyncMock:
    return make_dwolla_mock()


@pytest_asyncio.fixture
async def engine(settings):
    engine = create_engine_from_url(settings.DATABASE_URL)
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def db(engine):
    session_factory = create_session_factory(engine)
    async with session_factory() as session:
        yield session


@pytest.fixture
def profile_data() -> Dict[str, str]:
    return {
        "first_name": "Ada",
        "last_name": "Lovelace",
        "email": "ada@example.com",
        "address1": "1 Main St",
        "city": "Springfield",
        "state": "NY",
        "postal_code": "11101",
        "date_of_birth": "1990-01-01",
        "ssn": "1234",
    }


@pytest.fixture
def profile(profile_data) -> IdentityProfile:
    return IdentityProfile(**profile_data)
