"""
Dashboard read model

Aggregates, for the signed-in identity, every linked account with its
current balance plus the most recent transactions across accounts. Reads
are best-effort: an account the bank-linking service cannot answer for is
logged and left out. Views are cached per identity until the TTL passes or
a new bank account gets linked.
"""

import logging
import time
from datetime import date, timedelta
from typing import Any, Dict, List, Optional, Tuple

from database.bank_models import BankAccountDB
from database.identity_models import IdentityDB
from services.bank_accounts import BankAccountRepository
from services.plaid_client import PlaidAPIError, PlaidGateway
from utils.encryption import DecryptionError

logger = logging.getLogger(__name__)


class DashboardCache:
    """Process-local TTL cache of dashboard views keyed by identity id."""

    def __init__(self, ttl_seconds: int = 60):
        self.ttl_seconds = ttl_seconds
        self._entries: Dict[str, Tuple[float, Dict[str, Any]]] = {}

    def get(self, identity_id: str) -> Optional[Dict[str, Any]]:
        entry = self._entries.get(identity_id)
        if entry is None:
            return None
        stored_at, view = entry
        if self._expired(stored_at, time.monotonic()):
            self._entries.pop(identity_id, None)
            return None
        return view

    def set(self, identity_id: str, view: Dict[str, Any]) -> None:
        if self.ttl_seconds <= 0:
            return
        now = time.monotonic()
        stale = [key for key, (stored_at, _) in self._entries.items() if self._expired(stored_at, now)]
        for key in stale:
            del self._entries[key]
        self._entries[identity_id] = (now, view)

    def invalidate(self, identity_id: str) -> None:
        if self._entries.pop(identity_id, None) is not None:
            logger.debug(f"Dashboard cache invalidated for identity {identity_id}")

    def __len__(self) -> int:
        return len(self._entries)

    def _expired(self, stored_at: float, now: float) -> bool:
        return now - stored_at >= self.ttl_seconds


def _iso(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


class DashboardService:

    def __init__(
        self,
        plaid: PlaidGateway,
        repository: BankAccountRepository,
        cache: DashboardCache,
        transaction_days: int = 30,
        transaction_limit: int = 10,
    ):
        self.plaid = plaid
        self.repository = repository
        self.cache = cache
        self.transaction_days = transaction_days
        self.transaction_limit = transaction_limit

    async def get_dashboard(self, identity: IdentityDB) -> Dict[str, Any]:
        cached = self.cache.get(identity.id)
        if cached is not None:
            return cached

        records = await self.repository.list_for_user(identity.id)

        accounts: List[Dict[str, Any]] = []
        transactions: List[Dict[str, Any]] = []
        for record in records:
            account, account_transactions = await self._read_bank(record)
            if account is None:
                continue
            accounts.append(account)
            transactions.extend(account_transactions)

        transactions.sort(key=lambda t: t["date"] or "", reverse=True)

        view = {
            "user": {
                "id": identity.id,
                "first_name": identity.first_name,
                "last_name": identity.last_name,
                "email": identity.email,
            },
            "total_banks": len(records),
            "total_current_balance": round(sum(a["current_balance"] or 0 for a in accounts), 2),
            "accounts": accounts,
            "transactions": transactions[:self.transaction_limit],
        }
        self.cache.set(identity.id, view)
        return view

    async def _read_bank(
        self,
        record: BankAccountDB,
    ) -> Tuple[Optional[Dict[str, Any]], List[Dict[str, Any]]]:
        try:
            access_token = self.repository.access_token_for(record)
        except DecryptionError:
            logger.error(f"Access token of bank record {record.id} cannot be decrypted")
            return None, []

        try:
            plaid_accounts = await self.plaid.get_accounts(access_token)
        except PlaidAPIError as e:
            logger.warning(f"Balance read failed for bank record {record.id}: {e.error_code}")
            return None, []

        account = next((a for a in plaid_accounts if a.get("account_id") == record.account_id), None)
        if account is None:
            logger.warning(f"Account of bank record {record.id} no longer returned by Plaid")
            return None, []

        balances = account.get("balances") or {}
        summary = {
            "id": record.id,
            "shareable_id": record.shareable_id,
            "bank_id": record.bank_id,
            "name": account.get("name"),
            "official_name": account.get("official_name"),
            "mask": account.get("mask"),
            "type": _iso(account.get("type")),
            "subtype": _iso(account.get("subtype")),
            "current_balance": balances.get("current"),
            "available_balance": balances.get("available"),
            "currency": balances.get("iso_currency_code"),
        }

        end = date.today()
        start = end - timedelta(days=self.transaction_days)
        try:
            raw_transactions = await self.plaid.get_transactions(
                access_token,
                start_date=start,
                end_date=end,
                account_ids=[record.account_id],
                count=self.transaction_limit,
            )
        except PlaidAPIError as e:
            logger.warning(f"Transaction read failed for bank record {record.id}: {e.error_code}")
            raw_transactions = []

        transactions = [
            {
                "id": t.get("transaction_id"),
                "shareable_id": record.shareable_id,
                "name": t.get("merchant_name") or t.get("name"),
                "amount": t.get("amount"),
                "date": _iso(t.get("date")),
                "payment_channel": _iso(t.get("payment_channel")),
                "pending": t.get("pending"),
                "currency": t.get("iso_currency_code"),
            }
            for t in raw_transactions
        ]
        return summary, transactions
