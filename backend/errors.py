"""
Error kinds raised by the identity and bank-linking services.

Every failure keeps a distinguishable kind for logging and debugging.
The HTTP layer maps them onto generic user-facing messages.
"""


class BankLinkError(Exception):
    """Base exception for all service failures."""

    kind = "BankLinkError"

    def __init__(self, message: str = "", **context):
        super().__init__(message or self.kind)
        self.message = message or self.kind
        self.context = context

    def __str__(self) -> str:
        return f"{self.kind}: {self.message}"


# ==================== IDENTITY ====================

class ValidationFailed(BankLinkError):
    """Profile or credential input did not validate"""
    kind = "ValidationFailed"


class DuplicateIdentity(BankLinkError):
    """An identity with this email already exists"""
    kind = "DuplicateIdentity"


class InvalidCredentials(BankLinkError):
    """Unknown email or wrong password"""
    kind = "InvalidCredentials"


class ProvisioningFailed(BankLinkError):
    """The payment rail refused to create a customer"""
    kind = "ProvisioningFailed"


# ==================== BANK LINKING ====================

class IssuerUnavailable(BankLinkError):
    """No link token could be obtained from the bank-linking service"""
    kind = "IssuerUnavailable"


class ExchangeFailed(BankLinkError):
    """Public token invalid, expired or already consumed"""
    kind = "ExchangeFailed"


class AccountFetchFailed(BankLinkError):
    kind = "AccountFetchFailed"


class ProcessorTokenFailed(BankLinkError):
    kind = "ProcessorTokenFailed"


class FundingSourceFailed(BankLinkError):
    kind = "FundingSourceFailed"


# ==================== PERSISTENCE ====================

class WriteFailed(BankLinkError):
    """The backing store rejected a write"""
    kind = "WriteFailed"


class PersistFailed(BankLinkError):
    """Final step of a token exchange could not store the bank account"""
    kind = "PersistFailed"


UPSTREAM_ERRORS = (
    ProvisioningFailed,
    IssuerUnavailable,
    ExchangeFailed,
    AccountFetchFailed,
    ProcessorTokenFailed,
    FundingSourceFailed,
)
