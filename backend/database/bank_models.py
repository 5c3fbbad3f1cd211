"""
Bank Link Core - Bank Account Database Models

Tables:
- banks: one row per linked external account (append-only)

A row is only ever written after its funding source was provisioned,
so funding_source_url is never null.
"""

from typing import Dict, Any

from sqlalchemy import Column, String, Text, DateTime, ForeignKey, Index, UniqueConstraint

from database.connection import Base
from database.identity_models import generate_uuid, utc_now


class BankAccountDB(Base):
    """
    Bank account record linking an identity to an external account,
    its access credential and its payment-rail funding source.
    """
    __tablename__ = "banks"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    bank_id = Column(String(255), nullable=False)  # Plaid item id
    account_id = Column(String(255), nullable=False)
    access_token = Column(Text, nullable=False)
    funding_source_url = Column(String(500), nullable=False)
    shareable_id = Column(String(512), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)

    __table_args__ = (
        UniqueConstraint('user_id', 'bank_id', 'account_id', name='uq_banks_user_item_account'),
        Index('ix_banks_user', 'user_id'),
        Index('ix_banks_account', 'account_id'),
    )

    def to_dict(self) -> Dict[str, Any]:
        """Public view; the access token never leaves the service."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "bank_id": self.bank_id,
            "account_id": self.account_id,
            "funding_source_url": self.funding_source_url,
            "shareable_id": self.shareable_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
