"""
Payment-rail provisioning

- CustomerProvisioner: one payment-rail customer per registered identity
- FundingSourceProvisioner: one funding source per linked external account

Neither call is idempotent on the payment rail. Callers invoke each
exactly once per identity / per processor token.
"""

import logging

from errors import ProvisioningFailed, FundingSourceFailed
from models.enums import CustomerType
from models.schemas import IdentityProfile
from services.dwolla_client import DwollaClient, DwollaAPIError

logger = logging.getLogger(__name__)


class CustomerProvisioner:
    """Registers a customer with the payment rail for a new identity."""

    def __init__(self, dwolla: DwollaClient):
        self.dwolla = dwolla

    async def provision_customer(
        self,
        profile: IdentityProfile,
        customer_type: CustomerType = CustomerType.PERSONAL,
    ) -> str:
        """
        Create the customer and return its reference URL.

        Raises:
            ProvisioningFailed: the payment rail refused or was unreachable
        """
        payload = {
            "firstName": profile.first_name,
            "lastName": profile.last_name,
            "email": profile.email,
            "type": customer_type.value,
            "address1": profile.address1,
            "city": profile.city,
            "state": profile.state,
            "postalCode": profile.postal_code,
            "dateOfBirth": profile.date_of_birth,
            "ssn": profile.ssn,
        }

        try:
            customer_url = await self.dwolla.create_customer(payload)
        except DwollaAPIError as e:
            raise ProvisioningFailed(
                "Payment rail customer could not be created",
                status_code=e.status_code,
                code=e.code,
            ) from e

        logger.info(f"Provisioned payment rail customer for {profile.email}")
        return customer_url


class FundingSourceProvisioner:
    """Registers a fundable bank account for an existing customer."""

    def __init__(self, dwolla: DwollaClient):
        self.dwolla = dwolla

    async def add_funding_source(
        self,
        customer_url: str,
        processor_token: str,
        bank_name: str,
    ) -> str:
        """
        Authorize on-demand transfers, then create the funding source.

        Returns:
            Funding source reference URL

        Raises:
            FundingSourceFailed: either payment-rail call failed
        """
        try:
            auth_links = await self.dwolla.create_on_demand_authorization()
            funding_source_url = await self.dwolla.create_funding_source(
                customer_url=customer_url,
                name=bank_name,
                plaid_token=processor_token,
                links=auth_links,
            )
        except DwollaAPIError as e:
            raise FundingSourceFailed(
                "Funding source could not be created",
                status_code=e.status_code,
                code=e.code,
            ) from e

        logger.info(f"Added funding source '{bank_name}' for customer {customer_url}")
        return funding_source_url
