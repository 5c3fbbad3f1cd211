"""
Dwolla Client (payment rail)

Thin async REST client for the Dwolla API:
- POST /token (OAuth2 client credentials, cached until shortly before expiry)
- POST /customers
- POST /on-demand-authorizations
- POST /customers/{id}/funding-sources

Created resources are identified by the Location header of the 201 response.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone, timedelta
from typing import Optional, Dict, Any

import httpx

logger = logging.getLogger(__name__)

HAL_JSON = "application/vnd.dwolla.v1.hal+json"


class DwollaAPIError(Exception):
    """Dwolla answered with an error status or could not be reached."""

    def __init__(self, message: str, status_code: Optional[int] = None, code: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.code = code


@dataclass
class AppTokenCache:
    access_token: str
    expires_at: datetime


class DwollaClient:
    """
    Client for the Dwolla payment-rail API.

    The httpx.AsyncClient is owned by the caller (the service container),
    so connection pooling spans requests.
    """

    # Refresh the application token a minute before Dwolla expires it
    TOKEN_EXPIRY_MARGIN_SECONDS = 60

    def __init__(self, http: httpx.AsyncClient, key: str, secret: str, base_url: str):
        self.http = http
        self.key = key
        self.secret = secret
        self.base_url = base_url.rstrip("/")
        self._token_cache: Optional[AppTokenCache] = None

    @property
    def configured(self) -> bool:
        return bool(self.key and self.secret)

    # ==================== AUTH ====================

    def _is_token_valid(self) -> bool:
        return (
            self._token_cache is not None
            and datetime.now(timezone.utc) < self._token_cache.expires_at
        )

    async def _get_app_token(self) -> str:
        if self._is_token_valid():
            return self._token_cache.access_token

        if not self.configured:
            raise DwollaAPIError("Dwolla credentials are not configured")

        try:
            response = await self.http.post(
                f"{self.base_url}/token",
                auth=(self.key, self.secret),
                data={"grant_type": "client_credentials"},
            )
        except httpx.HTTPError as e:
            raise DwollaAPIError(f"Dwolla token request failed: {e}") from e

        if response.status_code != 200:
            raise DwollaAPIError(
                f"Dwolla token request returned {response.status_code}",
                status_code=response.status_code,
            )

        body = response.json()
        expires_in = int(body.get("expires_in", 3600))
        self._token_cache = AppTokenCache(
            access_token=body["access_token"],
            expires_at=datetime.now(timezone.utc)
            + timedelta(seconds=max(expires_in - self.TOKEN_EXPIRY_MARGIN_SECONDS, 0)),
        )
        logger.debug("Obtained Dwolla application token")
        return self._token_cache.access_token

    # ==================== HTTP ====================

    def _url(self, path_or_url: str) -> str:
        if path_or_url.startswith("http://") or path_or_url.startswith("https://"):
            return path_or_url
        return f"{self.base_url}/{path_or_url.lstrip('/')}"

    async def _post(self, path_or_url: str, body: Optional[Dict[str, Any]] = None) -> httpx.Response:
        token = await self._get_app_token()
        headers = {
            "Authorization": f"Bearer {token}",
            "Accept": HAL_JSON,
            "Content-Type": HAL_JSON,
        }
        url = self._url(path_or_url)

        try:
            response = await self.http.post(url, headers=headers, json=body or {})
        except httpx.HTTPError as e:
            raise DwollaAPIError(f"Dwolla request to {url} failed: {e}") from e

        if response.status_code >= 400:
            code = None
            try:
                code = response.json().get("code")
            except ValueError:
                pass
            logger.error(f"Dwolla returned {response.status_code} for POST {url} (code={code})")
            raise DwollaAPIError(
                f"Dwolla returned {response.status_code}",
                status_code=response.status_code,
                code=code,
            )

        return response

    async def _create(self, path_or_url: str, body: Dict[str, Any]) -> str:
        response = await self._post(path_or_url, body)
        location = response.headers.get("location")
        if not location:
            raise DwollaAPIError(
                f"Dwolla response for {path_or_url} had no Location header",
                status_code=response.status_code,
            )
        return location

    # ==================== RESOURCES ====================

    async def create_customer(self, customer: Dict[str, Any]) -> str:
        """Create a customer and return its URL."""
        return await self._create("customers", customer)

    async def create_on_demand_authorization(self) -> Dict[str, Any]:
        """Create an on-demand transfer authorization and return its _links."""
        response = await self._post("on-demand-authorizations")
        return response.json().get("_links", {})

    async def create_funding_source(
        self,
        customer_url: str,
        name: str,
        plaid_token: str,
        links: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Create a funding source from a Plaid processor token and return its URL."""
        body: Dict[str, Any] = {"name": name, "plaidToken": plaid_token}
        if links:
            body["_links"] = links
        return await self._create(f"{customer_url.rstrip('/')}/funding-sources", body)
