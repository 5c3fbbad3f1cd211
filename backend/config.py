"""
Bank Link Core - Configuration Management

Centralized configuration for environment variables, CORS, and the
third-party services this API stitches together:
- Identity/bank-account store (SQL database)
- Bank-linking service (Plaid)
- Payment-rail service (Dwolla)
"""

from typing import List
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings
from functools import lru_cache
import logging

logger = logging.getLogger(__name__)


PLAID_HOSTS = {
    "sandbox": "https://sandbox.plaid.com",
    "development": "https://development.plaid.com",
    "production": "https://production.plaid.com",
}

DWOLLA_HOSTS = {
    "sandbox": "https://api-sandbox.dwolla.com",
    "production": "https://api.dwolla.com",
}

ACCOUNT_SELECTION_MODES = ("first", "all")


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Uses pydantic-settings for validation and type coercion.
    """

    # ==================== ENVIRONMENT ====================
    ENVIRONMENT: str = Field(
        default="development",
        description="Runtime environment: development, staging, production"
    )
    DEBUG: bool = Field(
        default=False,
        description="Enable debug mode (auto-enabled in development)"
    )

    # ==================== DATABASE ====================
    DATABASE_URL: str = Field(
        default="",
        description="Database URL for identities, sessions and bank accounts"
    )

    # ==================== SESSIONS ====================
    SESSION_COOKIE_NAME: str = Field(
        default="bank-session",
        description="Name of the http-only cookie carrying the session secret"
    )
    SESSION_TTL_DAYS: int = Field(
        default=7,
        description="Server-side session lifetime in days"
    )

    # ==================== ENCRYPTION ====================
    ENCRYPTION_KEY: str = Field(
        default="",
        description="Fernet key for access tokens and SSNs at rest (required in production)"
    )

    # ==================== CORS ====================
    CORS_ORIGINS: str = Field(
        default="",
        description="Comma-separated list of allowed origins"
    )

    # ==================== PLAID (BANK LINKING) ====================
    PLAID_CLIENT_ID: str = Field(default="")
    PLAID_SECRET: str = Field(default="")
    PLAID_ENV: str = Field(
        default="sandbox",
        description="Plaid environment: sandbox, development, production"
    )
    PLAID_PRODUCTS: str = Field(
        default="auth",
        description="Comma-separated Plaid products requested for link tokens"
    )
    PLAID_COUNTRY_CODES: str = Field(
        default="US",
        description="Comma-separated country codes for link tokens"
    )
    PLAID_LANGUAGE: str = Field(default="en")

    # ==================== DWOLLA (PAYMENT RAIL) ====================
    DWOLLA_KEY: str = Field(default="")
    DWOLLA_SECRET: str = Field(default="")
    DWOLLA_ENV: str = Field(
        default="sandbox",
        description="Dwolla environment: sandbox, production"
    )
    DWOLLA_TIMEOUT_SECONDS: float = Field(default=30.0)

    # ==================== BANK LINKING ====================
    LINK_ACCOUNT_SELECTION: str = Field(
        default="first",
        description="Which accounts of a linking session to link: first, all"
    )

    # ==================== DASHBOARD ====================
    DASHBOARD_CACHE_TTL_SECONDS: int = Field(default=60)
    DASHBOARD_TRANSACTION_DAYS: int = Field(default=30)
    DASHBOARD_TRANSACTION_LIMIT: int = Field(default=10)

    # ==================== OBSERVABILITY ====================
    SENTRY_DSN: str = Field(
        default="",
        description="Sentry DSN for error tracking"
    )
    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level: DEBUG, INFO, WARNING, ERROR"
    )

    # ==================== API ====================
    API_TITLE: str = Field(default="Bank Link Core API")
    API_VERSION: str = Field(default="1.0.0")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"

    # ==================== VALIDATORS ====================

    @field_validator("LINK_ACCOUNT_SELECTION", mode="before")
    @classmethod
    def validate_account_selection(cls, v):
        value = str(v).strip().lower()
        if value not in ACCOUNT_SELECTION_MODES:
            raise ValueError(f"must be one of {', '.join(ACCOUNT_SELECTION_MODES)}")
        return value

    # ==================== COMPUTED PROPERTIES ====================

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT.lower() == "development"

    @property
    def debug_enabled(self) -> bool:
        """Enable debug in development or when explicitly set"""
        return self.DEBUG or self.is_development

    @property
    def cors_origins_list(self) -> List[str]:
        """
        Parse CORS_ORIGINS into a list.
        Localhost origins are added outside production.
        """
        origins = _split_csv(self.CORS_ORIGINS) if self.CORS_ORIGINS != "*" else []

        dev_origins = [
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ]

        all_origins = set(origins)
        if not self.is_production:
            all_origins.update(dev_origins)

        return sorted(all_origins)

    @property
    def plaid_products(self) -> List[str]:
        return _split_csv(self.PLAID_PRODUCTS)

    @property
    def plaid_country_codes(self) -> List[str]:
        return [c.upper() for c in _split_csv(self.PLAID_COUNTRY_CODES)]

    @property
    def plaid_host(self) -> str:
        return PLAID_HOSTS.get(self.PLAID_ENV.lower(), PLAID_HOSTS["sandbox"])

    @property
    def dwolla_base_url(self) -> str:
        return DWOLLA_HOSTS.get(self.DWOLLA_ENV.lower(), DWOLLA_HOSTS["sandbox"])

    def validate_production_config(self) -> List[str]:
        """
        Validate configuration for production deployment.
        Returns list of validation errors.
        """
        errors = []

        if not self.DATABASE_URL:
            errors.append("DATABASE_URL is required")

        if self.is_production:
            for name in ("PLAID_CLIENT_ID", "PLAID_SECRET", "DWOLLA_KEY", "DWOLLA_SECRET", "ENCRYPTION_KEY"):
                if not getattr(self, name):
                    errors.append(f"{name} is required in production")

            if self.PLAID_ENV.lower() == "sandbox":
                errors.append("PLAID_ENV cannot be 'sandbox' in production")

            if self.DWOLLA_ENV.lower() == "sandbox":
                errors.append("DWOLLA_ENV cannot be 'sandbox' in production")

            if self.CORS_ORIGINS == "*":
                errors.append("CORS_ORIGINS cannot be '*' in production")

            if self.DEBUG:
                errors.append("DEBUG should be False in production")

        return errors


def _split_csv(value: str) -> List[str]:
    return [v.strip() for v in value.split(",") if v.strip()]


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Settings are loaded once and cached for the application lifetime.
    """
    settings = Settings()

    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Debug: {settings.debug_enabled}")

    if settings.is_production:
        errors = settings.validate_production_config()
        if errors:
            for error in errors:
                logger.error(f"Configuration error: {error}")
            raise ValueError(f"Production configuration invalid: {', '.join(errors)}")

    return settings


# ==================== CORS CONFIGURATION ====================

def get_cors_config(settings: Settings) -> dict:
    """
    Get CORS middleware configuration.

    Credentials are allowed since the session travels in a cookie.
    """
    return {
        "allow_origins": settings.cors_origins_list,
        "allow_credentials": True,
        "allow_methods": ["GET", "POST", "OPTIONS"],
        "allow_headers": [
            "Content-Type",
            "Accept",
            "Origin",
            "X-Requested-With",
            "X-Request-ID",
        ],
        "expose_headers": ["X-Request-ID"],
        "max_age": 600,
    }


# ==================== ENVIRONMENT VALIDATION ====================

def validate_environment(settings: Settings) -> dict:
    """
    Validate all required environment variables.

    Returns a status dict with validation results.
    """
    status = {
        "valid": True,
        "environment": settings.ENVIRONMENT,
        "errors": [],
        "warnings": [],
        "variables": {}
    }

    required_vars = [
        ("DATABASE_URL", settings.DATABASE_URL),
    ]

    for name, value in required_vars:
        if not value:
            status["errors"].append(f"{name} is not set")
            status["valid"] = False
        else:
            status["variables"][name] = "set"

    optional_vars = [
        ("PLAID_CLIENT_ID", settings.PLAID_CLIENT_ID, "Bank linking disabled"),
        ("PLAID_SECRET", settings.PLAID_SECRET, "Bank linking disabled"),
        ("DWOLLA_KEY", settings.DWOLLA_KEY, "Payment rail provisioning disabled"),
        ("DWOLLA_SECRET", settings.DWOLLA_SECRET, "Payment rail provisioning disabled"),
        ("ENCRYPTION_KEY", settings.ENCRYPTION_KEY, "Sensitive fields stored in plaintext"),
        ("SENTRY_DSN", settings.SENTRY_DSN, "Error tracking disabled"),
    ]

    for name, value, warning in optional_vars:
        if not value:
            if warning not in status["warnings"]:
                status["warnings"].append(warning)
            status["variables"][name] = "not set"
        else:
            status["variables"][name] = "set"

    errors = settings.validate_production_config()
    if errors:
        status["errors"].extend(e for e in errors if e not in status["errors"])
        status["valid"] = False

    return status
