"""
Bank Link Core - Identity Database Models

Tables:
- users: registered identities with their payment-rail customer reference
- sessions: server-side sessions bound to an opaque cookie secret
"""

import uuid
from datetime import datetime, timezone
from typing import Dict, Any

from sqlalchemy import Column, String, DateTime, ForeignKey, Index

from database.connection import Base


def generate_uuid() -> str:
    return str(uuid.uuid4())


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class IdentityDB(Base):
    """
    Identity - a registered user.

    The customer reference is embedded at creation and never patched later.
    """
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    address1 = Column(String(255), nullable=False)
    city = Column(String(100), nullable=False)
    state = Column(String(2), nullable=False)
    postal_code = Column(String(10), nullable=False)
    date_of_birth = Column(String(10), nullable=False)  # YYYY-MM-DD
    ssn = Column(String(255), nullable=False)  # encrypted at rest
    dwolla_customer_url = Column(String(500), nullable=False)
    dwolla_customer_id = Column(String(100), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def to_dict(self) -> Dict[str, Any]:
        """Public view; credential and government identifier are omitted."""
        return {
            "id": self.id,
            "email": self.email,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "address1": self.address1,
            "city": self.city,
            "state": self.state,
            "postal_code": self.postal_code,
            "date_of_birth": self.date_of_birth,
            "dwolla_customer_id": self.dwolla_customer_id,
            "dwolla_customer_url": self.dwolla_customer_url,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class SessionDB(Base):
    """Server-side session. Only the sha256 of the cookie secret is stored."""
    __tablename__ = "sessions"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    secret_hash = Column(String(64), unique=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index('ix_sessions_user', 'user_id'),
    )

    def is_expired(self, now: datetime = None) -> bool:
        now = now or utc_now()
        return as_utc(self.expires_at) <= now
