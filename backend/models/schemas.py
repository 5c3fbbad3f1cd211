from pydantic import BaseModel, Field, EmailStr, field_validator
from typing import Optional, List
from datetime import date
import re


STATE_PATTERN = re.compile(r"^[A-Z]{2}$")
SSN_PATTERN = re.compile(r"^(\d{4}|\d{3}-?\d{2}-?\d{4})$")


# ==================== IDENTITY PROFILE ====================
class IdentityProfile(BaseModel):
    """Profile captured at sign-up and forwarded to the payment rail"""
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    address1: str = Field(..., min_length=1, max_length=50)
    city: str = Field(..., min_length=1, max_length=50)
    state: str = Field(..., description="Two-letter state code")
    postal_code: str = Field(..., min_length=3, max_length=10)
    date_of_birth: str = Field(..., description="YYYY-MM-DD")
    ssn: str = Field(..., description="Last four digits or full SSN")

    @field_validator('first_name', 'last_name', 'address1', 'city', 'postal_code')
    @classmethod
    def strip_text(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError('must not be blank')
        return v

    @field_validator('email')
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.strip().lower()

    @field_validator('state')
    @classmethod
    def validate_state(cls, v: str) -> str:
        v = v.strip().upper()
        if not STATE_PATTERN.match(v):
            raise ValueError('state must be a two-letter code')
        return v

    @field_validator('date_of_birth')
    @classmethod
    def validate_date_of_birth(cls, v: str) -> str:
        try:
            born = date.fromisoformat(v.strip())
        except ValueError:
            raise ValueError('date_of_birth must be YYYY-MM-DD')
        if born >= date.today():
            raise ValueError('date_of_birth must be in the past')
        return born.isoformat()

    @field_validator('ssn')
    @classmethod
    def validate_ssn(cls, v: str) -> str:
        v = v.strip()
        if not SSN_PATTERN.match(v):
            raise ValueError('ssn must be 4 or 9 digits')
        return v.replace("-", "")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


# ==================== AUTH ====================
class SignUpRequest(IdentityProfile):
    password: str = Field(..., min_length=8, max_length=128)


class SignInRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class IdentityResponse(BaseModel):
    id: str
    email: str
    first_name: str
    last_name: str
    address1: str
    city: str
    state: str
    postal_code: str
    date_of_birth: str
    dwolla_customer_id: str
    dwolla_customer_url: str
    created_at: Optional[str] = None


# ==================== BANK LINKING ====================
class LinkTokenResponse(BaseModel):
    link_token: str


class PublicTokenExchangeRequest(BaseModel):
    public_token: str = Field(..., min_length=1)


class BankAccountResponse(BaseModel):
    id: str
    bank_id: str
    account_id: str
    shareable_id: str
    funding_source_url: str
    created_at: Optional[str] = None


class PublicTokenExchangeResponse(BaseModel):
    public_token_exchange: str
    accounts: List[BankAccountResponse] = []
