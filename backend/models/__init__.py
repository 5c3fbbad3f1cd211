from .schemas import (
    IdentityProfile, SignUpRequest, SignInRequest, IdentityResponse,
    LinkTokenResponse, PublicTokenExchangeRequest, PublicTokenExchangeResponse,
    BankAccountResponse
)
from .enums import AccountSelection, ExchangeStatus, CustomerType

__all__ = [
    'IdentityProfile', 'SignUpRequest', 'SignInRequest', 'IdentityResponse',
    'LinkTokenResponse', 'PublicTokenExchangeRequest', 'PublicTokenExchangeResponse',
    'BankAccountResponse',
    'AccountSelection', 'ExchangeStatus', 'CustomerType'
]
