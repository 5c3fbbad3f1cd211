"""
Link Token Issuer

Requests the short-lived token the client-side linking widget needs to
start a bank-linking session. No retries: link tokens are cheap, callers
ask for a fresh one instead.
"""

import logging
from typing import List

from database.identity_models import IdentityDB
from errors import IssuerUnavailable
from services.plaid_client import PlaidGateway, PlaidAPIError

logger = logging.getLogger(__name__)


class LinkTokenIssuer:

    def __init__(
        self,
        plaid: PlaidGateway,
        products: List[str],
        country_codes: List[str],
        language: str = "en",
    ):
        self.plaid = plaid
        self.products = products or ["auth"]
        self.country_codes = country_codes or ["US"]
        self.language = language

    async def issue_link_token(self, identity: IdentityDB) -> str:
        """
        Raises:
            IssuerUnavailable: the bank-linking service gave no token
        """
        try:
            link_token = await self.plaid.create_link_token(
                client_user_id=identity.id,
                client_name=f"{identity.first_name} {identity.last_name}",
                products=self.products,
                language=self.language,
                country_codes=self.country_codes,
            )
        except PlaidAPIError as e:
            raise IssuerUnavailable(
                "Link token could not be created",
                error_code=e.error_code,
            ) from e

        if not link_token:
            raise IssuerUnavailable("Bank-linking service returned an empty link token")

        logger.info(f"Issued link token for identity {identity.id}")
        return link_token
