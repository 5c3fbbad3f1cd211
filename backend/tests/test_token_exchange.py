"""
Unit Tests for the Token Exchange Orchestrator

Tests the five-step public token exchange:
- exchange, account selection, processor token, funding source, store
- nothing is stored unless every step succeeded
- single-use public tokens
- dashboard cache invalidation after a successful link

Run with: pytest tests/test_token_exchange.py -v
"""

import logging

import pytest
import pytest_asyncio
from sqlalchemy import select, func

from database.bank_models import BankAccountDB
from errors import (
    AccountFetchFailed, ExchangeFailed, FundingSourceFailed, PersistFailed,
    ProcessorTokenFailed
)
from models.enums import AccountSelection, ExchangeStatus
from services.bank_accounts import BankAccountRepository
from services.dashboard import DashboardCache
from services.dwolla_client import DwollaAPIError
from services.identity import IdentityGateway
from services.provisioning import CustomerProvisioner, FundingSourceProvisioner
from services.token_exchange import TokenExchangeOrchestrator
from utils.share_id import deobfuscate_id


@pytest_asyncio.fixture
async def identity(db, dwolla, cipher, profile_data):
    gateway = IdentityGateway(db=db, customers=CustomerProvisioner(dwolla), cipher=cipher)
    result = await gateway.register(profile_data, "correct-horse")
    return result.identity


@pytest.fixture
def repository(db, cipher):
    return BankAccountRepository(db, cipher)


@pytest.fixture
def cache():
    return DashboardCache(ttl_seconds=60)


def make_orchestrator(plaid, dwolla, repository, cache=None, selection=AccountSelection.FIRST):
    return TokenExchangeOrchestrator(
        plaid=plaid,
        funding_sources=FundingSourceProvisioner(dwolla),
        repository=repository,
        account_selection=selection,
        dashboard_cache=cache,
    )


async def _bank_count(db) -> int:
    result = await db.execute(select(func.count()).select_from(BankAccountDB))
    return result.scalar_one()


class TestSuccessfulExchange:

    @pytest.mark.asyncio
    async def test_links_first_account(self, plaid, dwolla, repository, identity, db):
        orchestrator = make_orchestrator(plaid, dwolla, repository)

        result = await orchestrator.exchange_public_token(plaid.issue_public_token(), identity)

        assert result.status == ExchangeStatus.COMPLETE
        assert len(result.records) == 1
        record = result.records[0]
        assert record.user_id == identity.id
        assert record.account_id == "acc_checking_001"
        assert record.bank_id.startswith("item-")
        assert record.funding_source_url.startswith("https://api-sandbox.dwolla.com/funding-sources/")
        assert deobfuscate_id(record.shareable_id) == record.account_id
        assert await _bank_count(db) == 1

    @pytest.mark.asyncio
    async def test_steps_run_in_order(self, plaid, dwolla, repository, identity):
        orchestrator = make_orchestrator(plaid, dwolla, repository)

        await orchestrator.exchange_public_token(plaid.issue_public_token(), identity)

        assert [name for name, _ in plaid.calls] == [
            "item_public_token_exchange",
            "accounts_get",
            "processor_token_create",
        ]
        dwolla.create_on_demand_authorization.assert_awaited_once()
        kwargs = dwolla.create_funding_source.await_args.kwargs
        assert kwargs["customer_url"] == identity.dwolla_customer_url
        assert kwargs["plaid_token"] == "processor-sandbox-acc_checking_001"
        assert kwargs["name"] == "Plaid Checking"

    @pytest.mark.asyncio
    async def test_access_token_is_encrypted_at_rest(self, plaid, dwolla, repository, identity, db):
        orchestrator = make_orchestrator(plaid, dwolla, repository)

        result = await orchestrator.exchange_public_token(plaid.issue_public_token(), identity)

        row = (await db.execute(select(BankAccountDB))).scalar_one()
        plaintext = repository.access_token_for(result.records[0])
        assert plaintext.startswith("access-sandbox-")
        assert row.access_token != plaintext
        assert "access_token" not in row.to_dict()

    @pytest.mark.asyncio
    async def test_all_selection_links_every_account(self, plaid, dwolla, repository, identity, db):
        orchestrator = make_orchestrator(plaid, dwolla, repository, selection=AccountSelection.ALL)

        result = await orchestrator.exchange_public_token(plaid.issue_public_token(), identity)

        assert [r.account_id for r in result.records] == ["acc_checking_001", "acc_savings_002"]
        assert len({r.bank_id for r in result.records}) == 1
        assert dwolla.create_funding_source.await_count == 2
        assert await _bank_count(db) == 2

    @pytest.mark.asyncio
    async def test_success_invalidates_dashboard_cache(self, plaid, dwolla, repository, identity, cache):
        cache.set(identity.id, {"total_banks": 0})
        orchestrator = make_orchestrator(plaid, dwolla, repository, cache=cache)

        await orchestrator.exchange_public_token(plaid.issue_public_token(), identity)

        assert cache.get(identity.id) is None


class TestSingleUseToken:

    @pytest.mark.asyncio
    async def test_second_exchange_of_same_token_fails(self, plaid, dwolla, repository, identity, db):
        orchestrator = make_orchestrator(plaid, dwolla, repository)
        public_token = plaid.issue_public_token()

        await orchestrator.exchange_public_token(public_token, identity)
        with pytest.raises(ExchangeFailed):
            await orchestrator.exchange_public_token(public_token, identity)

        assert await _bank_count(db) == 1

    @pytest.mark.asyncio
    async def test_empty_token_fails_without_calling_out(self, plaid, dwolla, repository, identity):
        orchestrator = make_orchestrator(plaid, dwolla, repository)

        with pytest.raises(ExchangeFailed):
            await orchestrator.exchange_public_token("", identity)

        assert plaid.calls == []


class TestFailedSteps:

    @pytest.mark.asyncio
    async def test_account_fetch_failure(self, plaid, dwolla, repository, identity, db):
        plaid.failures.add("accounts_get")
        orchestrator = make_orchestrator(plaid, dwolla, repository)

        with pytest.raises(AccountFetchFailed):
            await orchestrator.exchange_public_token(plaid.issue_public_token(), identity)

        assert plaid.called("processor_token_create") == 0
        dwolla.create_funding_source.assert_not_awaited()
        assert await _bank_count(db) == 0

    @pytest.mark.asyncio
    async def test_item_without_accounts(self, plaid, dwolla, repository, identity, db):
        plaid.accounts = []
        orchestrator = make_orchestrator(plaid, dwolla, repository)

        with pytest.raises(AccountFetchFailed):
            await orchestrator.exchange_public_token(plaid.issue_public_token(), identity)

        assert await _bank_count(db) == 0

    @pytest.mark.asyncio
    async def test_processor_token_failure(self, plaid, dwolla, repository, identity, db):
        plaid.failures.add("processor_token_create")
        orchestrator = make_orchestrator(plaid, dwolla, repository)

        with pytest.raises(ProcessorTokenFailed):
            await orchestrator.exchange_public_token(plaid.issue_public_token(), identity)

        dwolla.create_funding_source.assert_not_awaited()
        assert await _bank_count(db) == 0

    @pytest.mark.asyncio
    async def test_funding_source_failure(self, plaid, dwolla, repository, identity, db):
        dwolla.create_funding_source.side_effect = DwollaAPIError("Dwolla returned 400", status_code=400, code="DuplicateResource")
        orchestrator = make_orchestrator(plaid, dwolla, repository)
        public_token = plaid.issue_public_token()

        with pytest.raises(FundingSourceFailed):
            await orchestrator.exchange_public_token(public_token, identity)

        assert await _bank_count(db) == 0

        # The public token was spent at the first step, so a retry stops there
        with pytest.raises(ExchangeFailed):
            await orchestrator.exchange_public_token(public_token, identity)

        assert plaid.called("item_public_token_exchange") == 2
        assert plaid.called("accounts_get") == 1
        assert plaid.called("processor_token_create") == 1
        assert dwolla.create_funding_source.await_count == 1
        assert await _bank_count(db) == 0

    @pytest.mark.asyncio
    async def test_partial_failure_in_all_mode_stores_nothing(self, plaid, dwolla, repository, identity, db, caplog):
        urls = iter(["https://api-sandbox.dwolla.com/funding-sources/first"])

        def create_funding_source(customer_url, name, plaid_token, links=None):
            try:
                return next(urls)
            except StopIteration:
                raise DwollaAPIError("Dwolla returned 500", status_code=500)

        dwolla.create_funding_source.side_effect = create_funding_source
        orchestrator = make_orchestrator(plaid, dwolla, repository, selection=AccountSelection.ALL)

        caplog.set_level(logging.ERROR, logger="services.token_exchange")
        with pytest.raises(FundingSourceFailed):
            await orchestrator.exchange_public_token(plaid.issue_public_token(), identity)

        assert await _bank_count(db) == 0
        assert "https://api-sandbox.dwolla.com/funding-sources/first" in caplog.text

    @pytest.mark.asyncio
    async def test_persist_failure(self, plaid, dwolla, repository, identity, db):
        dwolla.create_funding_source.side_effect = lambda customer_url, name, plaid_token, links=None: ""
        orchestrator = make_orchestrator(plaid, dwolla, repository)

        with pytest.raises(PersistFailed):
            await orchestrator.exchange_public_token(plaid.issue_public_token(), identity)

        assert await _bank_count(db) == 0

    @pytest.mark.asyncio
    async def test_failure_leaves_cache_untouched(self, plaid, dwolla, repository, identity, cache):
        cache.set(identity.id, {"total_banks": 0})
        plaid.failures.add("processor_token_create")
        orchestrator = make_orchestrator(plaid, dwolla, repository, cache=cache)

        with pytest.raises(ProcessorTokenFailed):
            await orchestrator.exchange_public_token(plaid.issue_public_token(), identity)

        assert cache.get(identity.id) == {"total_banks": 0}
