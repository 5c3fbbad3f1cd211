"""
Bank Account Repository

Create and read bank account records. Records are immutable once written:
there is no update or delete. Access tokens are encrypted on the way in
and only decrypted on explicit request.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from database.bank_models import BankAccountDB
from errors import WriteFailed
from utils.encryption import FieldCipher

logger = logging.getLogger(__name__)


@dataclass
class NewBankAccount:
    """Everything needed to write one bank account record."""
    user_id: str
    bank_id: str
    account_id: str
    access_token: str
    funding_source_url: str
    shareable_id: str


class BankAccountRepository:

    def __init__(self, db: AsyncSession, cipher: FieldCipher):
        self.db = db
        self.cipher = cipher

    # ==================== WRITES ====================

    async def create(self, record: NewBankAccount) -> BankAccountDB:
        """
        Store one record.

        Raises:
            WriteFailed: duplicate (user, item, account) or database error
        """
        rows = await self.create_many([record])
        return rows[0]

    async def create_many(self, records: List[NewBankAccount]) -> List[BankAccountDB]:
        """Store several records in one transaction; all or none."""
        if not records:
            return []
        rows = [self._to_row(r) for r in records]
        self.db.add_all(rows)

        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            logger.warning(
                f"Duplicate bank account for user {records[0].user_id}: "
                f"{[r.account_id for r in records]}"
            )
            raise WriteFailed("Bank account already linked") from e
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Bank account write failed: {e}")
            raise WriteFailed("Bank account could not be stored") from e

        for row in rows:
            await self.db.refresh(row)

        logger.info(f"Stored {len(rows)} bank account record(s) for user {records[0].user_id}")
        return rows

    def _to_row(self, record: NewBankAccount) -> BankAccountDB:
        if not record.funding_source_url:
            raise WriteFailed("Bank account record requires a funding source")

        return BankAccountDB(
            user_id=record.user_id,
            bank_id=record.bank_id,
            account_id=record.account_id,
            access_token=self.cipher.encrypt(record.access_token, field_name="access_token"),
            funding_source_url=record.funding_source_url,
            shareable_id=record.shareable_id,
        )

    # ==================== READS ====================

    async def get(self, record_id: str) -> Optional[BankAccountDB]:
        result = await self.db.execute(select(BankAccountDB).where(BankAccountDB.id == record_id))
        return result.scalar_one_or_none()

    async def list_for_user(self, user_id: str) -> List[BankAccountDB]:
        result = await self.db.execute(
            select(BankAccountDB)
            .where(BankAccountDB.user_id == user_id)
            .order_by(BankAccountDB.created_at)
        )
        return list(result.scalars().all())

    async def get_by_account_id(self, account_id: str) -> Optional[BankAccountDB]:
        result = await self.db.execute(
            select(BankAccountDB).where(BankAccountDB.account_id == account_id)
        )
        return result.scalars().first()

    async def get_by_shareable_id(
        self,
        shareable_id: str,
        user_id: Optional[str] = None,
    ) -> Optional[BankAccountDB]:
        query = select(BankAccountDB).where(BankAccountDB.shareable_id == shareable_id)
        if user_id is not None:
            query = query.where(BankAccountDB.user_id == user_id)
        result = await self.db.execute(query)
        return result.scalars().first()

    def access_token_for(self, record: BankAccountDB) -> str:
        return self.cipher.decrypt(record.access_token, field_name="access_token")
