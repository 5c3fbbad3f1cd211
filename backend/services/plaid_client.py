"""
Plaid Gateway (bank linking)

Wraps the Plaid Python SDK with the handful of calls this service needs.
The SDK is synchronous, so every call runs in a worker thread.
Responses are returned as plain dicts.
"""

import asyncio
import json
import logging
from datetime import date
from typing import Any, Dict, List, Optional, Tuple

from plaid.api import plaid_api
from plaid.api_client import ApiClient
from plaid.configuration import Configuration
from plaid.exceptions import ApiException
from plaid.model.accounts_get_request import AccountsGetRequest
from plaid.model.country_code import CountryCode
from plaid.model.item_public_token_exchange_request import ItemPublicTokenExchangeRequest
from plaid.model.link_token_create_request import LinkTokenCreateRequest
from plaid.model.link_token_create_request_user import LinkTokenCreateRequestUser
from plaid.model.processor_token_create_request import ProcessorTokenCreateRequest
from plaid.model.products import Products
from plaid.model.transactions_get_request import TransactionsGetRequest
from plaid.model.transactions_get_request_options import TransactionsGetRequestOptions

from config import Settings

logger = logging.getLogger(__name__)

DWOLLA_PROCESSOR = "dwolla"


class PlaidAPIError(Exception):
    """Plaid rejected a request or could not be reached."""

    def __init__(self, message: str, error_code: Optional[str] = None, status: Optional[int] = None):
        super().__init__(message)
        self.error_code = error_code
        self.status = status


def _wrap_api_exception(operation: str, exc: ApiException) -> PlaidAPIError:
    error_code = None
    message = str(exc.reason or exc)
    try:
        body = json.loads(exc.body or "{}")
        error_code = body.get("error_code")
        message = body.get("error_message") or message
    except (TypeError, ValueError):
        pass
    logger.warning(f"Plaid {operation} failed: {error_code or exc.status} {message}")
    return PlaidAPIError(f"{operation}: {message}", error_code=error_code, status=exc.status)


class PlaidGateway:
    """Plaid API access for link tokens, token exchange, accounts and transactions."""

    def __init__(self, api: Any):
        self.api = api

    @classmethod
    def from_settings(cls, settings: Settings) -> "PlaidGateway":
        configuration = Configuration(
            host=settings.plaid_host,
            api_key={
                "clientId": settings.PLAID_CLIENT_ID,
                "secret": settings.PLAID_SECRET,
            },
        )
        api_client = ApiClient(configuration)
        logger.info(f"Initialized Plaid gateway for {settings.PLAID_ENV} environment")
        return cls(plaid_api.PlaidApi(api_client))

    async def _call(self, operation: str, method, request) -> Dict[str, Any]:
        try:
            response = await asyncio.to_thread(method, request)
        except ApiException as e:
            raise _wrap_api_exception(operation, e) from e
        return response.to_dict()

    async def create_link_token(
        self,
        client_user_id: str,
        client_name: str,
        products: List[str],
        language: str,
        country_codes: List[str],
    ) -> str:
        request = LinkTokenCreateRequest(
            user=LinkTokenCreateRequestUser(client_user_id=client_user_id),
            client_name=client_name,
            products=[Products(p) for p in products],
            language=language,
            country_codes=[CountryCode(c) for c in country_codes],
        )
        data = await self._call("link_token_create", self.api.link_token_create, request)
        return data["link_token"]

    async def exchange_public_token(self, public_token: str) -> Tuple[str, str]:
        """Returns (access_token, item_id). The public token is consumed."""
        request = ItemPublicTokenExchangeRequest(public_token=public_token)
        data = await self._call("item_public_token_exchange", self.api.item_public_token_exchange, request)
        return data["access_token"], data["item_id"]

    async def get_accounts(self, access_token: str) -> List[Dict[str, Any]]:
        request = AccountsGetRequest(access_token=access_token)
        data = await self._call("accounts_get", self.api.accounts_get, request)
        return list(data.get("accounts") or [])

    async def create_processor_token(
        self,
        access_token: str,
        account_id: str,
        processor: str = DWOLLA_PROCESSOR,
    ) -> str:
        request = ProcessorTokenCreateRequest(
            access_token=access_token,
            account_id=account_id,
            processor=processor,
        )
        data = await self._call("processor_token_create", self.api.processor_token_create, request)
        return data["processor_token"]

    async def get_transactions(
        self,
        access_token: str,
        start_date: date,
        end_date: date,
        account_ids: Optional[List[str]] = None,
        count: int = 100,
    ) -> List[Dict[str, Any]]:
        options = TransactionsGetRequestOptions(count=count)
        if account_ids:
            options = TransactionsGetRequestOptions(count=count, account_ids=account_ids)
        request = TransactionsGetRequest(
            access_token=access_token,
            start_date=start_date,
            end_date=end_date,
            options=options,
        )
        data = await self._call("transactions_get", self.api.transactions_get, request)
        return list(data.get("transactions") or [])
