"""
Token Exchange Orchestrator

Turns the linking widget's one-time public token into stored bank account
records. The five steps run strictly in order, each one a prerequisite for
the next:

1. exchange the public token for an access token and item id
2. list the item's accounts and select the ones to link
3. mint a payment-rail processor token per selected account
4. create a funding source per processor token
5. store the bank account record(s)

No record is written unless every earlier step succeeded for every
selected account. There is no automatic retry: the public token is spent
at step 1 whatever happens afterwards, so a new attempt needs a new one.
A failure after step 1 leaves a linked item at the bank-linking service
with no local record; it is logged for operators rather than hidden.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from database.bank_models import BankAccountDB
from database.identity_models import IdentityDB
from errors import (
    AccountFetchFailed, BankLinkError, ExchangeFailed, PersistFailed,
    ProcessorTokenFailed, WriteFailed
)
from models.enums import AccountSelection, ExchangeStatus
from services.bank_accounts import BankAccountRepository, NewBankAccount
from services.dashboard import DashboardCache
from services.plaid_client import DWOLLA_PROCESSOR, PlaidAPIError, PlaidGateway
from services.provisioning import FundingSourceProvisioner
from utils.share_id import obfuscate_id

logger = logging.getLogger(__name__)


@dataclass
class ExchangeResult:
    status: ExchangeStatus
    records: List[BankAccountDB] = field(default_factory=list)


class TokenExchangeOrchestrator:

    def __init__(
        self,
        plaid: PlaidGateway,
        funding_sources: FundingSourceProvisioner,
        repository: BankAccountRepository,
        account_selection: AccountSelection = AccountSelection.FIRST,
        dashboard_cache: Optional[DashboardCache] = None,
    ):
        self.plaid = plaid
        self.funding_sources = funding_sources
        self.repository = repository
        self.account_selection = AccountSelection(account_selection)
        self.dashboard_cache = dashboard_cache

    async def exchange_public_token(self, public_token: str, identity: IdentityDB) -> ExchangeResult:
        """
        Run the whole exchange for one public token.

        Raises:
            ExchangeFailed, AccountFetchFailed, ProcessorTokenFailed,
            FundingSourceFailed, PersistFailed
        """
        # Read before any rollback can expire the instance
        identity_id = identity.id
        access_token, item_id = await self._exchange(public_token)

        funding_source_urls: List[str] = []
        try:
            records = await self._link_item(identity, access_token, item_id, funding_source_urls)
        except BankLinkError as e:
            logger.error(
                f"Bank link for identity {identity_id} aborted at {e.kind}; "
                f"item {item_id} is linked remotely but has no local record; "
                f"funding sources created: {', '.join(funding_source_urls) or 'none'}"
            )
            raise

        if self.dashboard_cache is not None:
            self.dashboard_cache.invalidate(identity_id)

        logger.info(f"Public token exchange complete for identity {identity_id}: item {item_id}")
        return ExchangeResult(status=ExchangeStatus.COMPLETE, records=records)

    # ==================== STEPS ====================

    async def _exchange(self, public_token: str):
        if not public_token:
            raise ExchangeFailed("Public token is empty")
        try:
            return await self.plaid.exchange_public_token(public_token)
        except PlaidAPIError as e:
            raise ExchangeFailed("Public token exchange failed", error_code=e.error_code) from e

    async def _link_item(
        self,
        identity: IdentityDB,
        access_token: str,
        item_id: str,
        funding_source_urls: List[str],
    ) -> List[BankAccountDB]:
        """Steps 2 to 5. Funding sources are appended to funding_source_urls as they are created."""
        accounts = await self._select_accounts(access_token)

        pending: List[NewBankAccount] = []
        for account in accounts:
            account_id = account["account_id"]
            processor_token = await self._processor_token(access_token, account_id)
            funding_source_url = await self.funding_sources.add_funding_source(
                customer_url=identity.dwolla_customer_url,
                processor_token=processor_token,
                bank_name=account.get("name") or account_id,
            )
            funding_source_urls.append(funding_source_url)
            pending.append(NewBankAccount(
                user_id=identity.id,
                bank_id=item_id,
                account_id=account_id,
                access_token=access_token,
                funding_source_url=funding_source_url,
                shareable_id=obfuscate_id(account_id),
            ))

        try:
            return await self.repository.create_many(pending)
        except WriteFailed as e:
            raise PersistFailed("Bank account could not be stored") from e

    async def _select_accounts(self, access_token: str) -> List[Dict[str, Any]]:
        try:
            accounts = await self.plaid.get_accounts(access_token)
        except PlaidAPIError as e:
            raise AccountFetchFailed("Accounts could not be fetched", error_code=e.error_code) from e

        if not accounts:
            raise AccountFetchFailed("Linked item has no accounts")

        if self.account_selection == AccountSelection.ALL:
            return accounts
        return accounts[:1]

    async def _processor_token(self, access_token: str, account_id: str) -> str:
        try:
            return await self.plaid.create_processor_token(
                access_token=access_token,
                account_id=account_id,
                processor=DWOLLA_PROCESSOR,
            )
        except PlaidAPIError as e:
            raise ProcessorTokenFailed(
                f"Processor token for account {account_id} failed",
                error_code=e.error_code,
            ) from e
