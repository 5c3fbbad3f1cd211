"""
Identity Gateway

Implements:
- Registration (profile + password, payment-rail customer embedded at creation)
- Email/password authentication with bcrypt hashes
- Server-side sessions bound to an opaque secret carried in a cookie
- Current identity lookup and sign-out

Only a sha256 digest of each session secret is stored; the raw secret is
returned once to the caller, who puts it in the session cookie.
"""

import hashlib
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Union

from passlib.context import CryptContext
from pydantic import ValidationError
from sqlalchemy import select, delete, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from database.identity_models import IdentityDB, SessionDB, utc_now
from errors import DuplicateIdentity, InvalidCredentials, ValidationFailed, WriteFailed
from models.schemas import IdentityProfile
from services.provisioning import CustomerProvisioner
from utils.encryption import FieldCipher
from utils.share_id import extract_customer_id

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8
SESSION_SECRET_BYTES = 32

# Password hashing
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


# ==================== PASSWORD / SECRET UTILITIES ====================

def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its hash"""
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except (ValueError, TypeError) as e:
        logger.error(f"Password verification error: {e}")
        return False


def get_password_hash(password: str) -> str:
    """Hash a password"""
    return pwd_context.hash(password)


def hash_session_secret(secret: str) -> str:
    return hashlib.sha256(secret.encode("utf-8")).hexdigest()


# ==================== RESULTS ====================

@dataclass
class Session:
    """An open session. `secret` goes into the cookie and nowhere else."""
    secret: str
    identity_id: str
    expires_at: datetime


@dataclass
class RegistrationResult:
    identity: IdentityDB
    session: Session


# ==================== GATEWAY ====================

class IdentityGateway:
    """
    Identity Gateway - accounts and sessions.

    Ensures:
    - One identity per email (case-insensitive)
    - Customer provisioning happens exactly once, before the identity row exists
    - Wrong email and wrong password are indistinguishable to the caller
    """

    def __init__(
        self,
        db: AsyncSession,
        customers: CustomerProvisioner,
        cipher: FieldCipher,
        session_ttl: timedelta = timedelta(days=7),
    ):
        self.db = db
        self.customers = customers
        self.cipher = cipher
        self.session_ttl = session_ttl

    # ==================== LOOKUPS ====================

    async def get_identity_by_email(self, email: str) -> Optional[IdentityDB]:
        """Find identity by email (case-insensitive)."""
        result = await self.db.execute(
            select(IdentityDB).where(func.lower(IdentityDB.email) == email.lower().strip())
        )
        return result.scalar_one_or_none()

    async def get_identity_by_id(self, identity_id: str) -> Optional[IdentityDB]:
        result = await self.db.execute(select(IdentityDB).where(IdentityDB.id == identity_id))
        return result.scalar_one_or_none()

    # ==================== REGISTRATION ====================

    async def register(
        self,
        profile: Union[IdentityProfile, Dict[str, Any]],
        password: str,
    ) -> RegistrationResult:
        """
        Register a new identity and open a session for it.

        Raises:
            ValidationFailed: profile or password invalid
            DuplicateIdentity: email already registered
            ProvisioningFailed: payment rail refused the customer
            WriteFailed: identity row could not be stored
        """
        profile = self._coerce_profile(profile)
        if not password or len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationFailed(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

        if await self.get_identity_by_email(profile.email):
            raise DuplicateIdentity(f"Identity with email {profile.email} already exists")

        customer_url = await self.customers.provision_customer(profile)

        identity = IdentityDB(
            email=profile.email,
            password_hash=get_password_hash(password),
            first_name=profile.first_name,
            last_name=profile.last_name,
            address1=profile.address1,
            city=profile.city,
            state=profile.state,
            postal_code=profile.postal_code,
            date_of_birth=profile.date_of_birth,
            ssn=self.cipher.encrypt(profile.ssn, field_name="ssn"),
            dwolla_customer_url=customer_url,
            dwolla_customer_id=extract_customer_id(customer_url),
        )
        self.db.add(identity)

        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            logger.error(
                f"Identity insert for {profile.email} lost a uniqueness race; "
                f"payment rail customer {customer_url} has no local identity"
            )
            raise DuplicateIdentity(f"Identity with email {profile.email} already exists") from e
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(
                f"Identity insert for {profile.email} failed; "
                f"payment rail customer {customer_url} has no local identity: {e}"
            )
            raise WriteFailed("Identity could not be stored") from e

        await self.db.refresh(identity)
        logger.info(f"Registered identity: {identity.id} ({identity.email})")

        session = await self._open_session(identity)
        return RegistrationResult(identity=identity, session=session)

    def _coerce_profile(self, profile: Union[IdentityProfile, Dict[str, Any]]) -> IdentityProfile:
        if isinstance(profile, IdentityProfile):
            return profile
        try:
            return IdentityProfile.model_validate(profile)
        except ValidationError as e:
            fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
            raise ValidationFailed(f"Invalid profile fields: {fields}") from e

    # ==================== AUTHENTICATION ====================

    async def authenticate(self, email: str, password: str) -> Session:
        """
        Verify credentials and open a session.

        Raises:
            InvalidCredentials: unknown email or wrong password
        """
        identity = await self.get_identity_by_email(email or "")

        if not identity:
            logger.warning(f"Sign-in failed: unknown email - {email}")
            raise InvalidCredentials("Invalid email or password")

        if not verify_password(password or "", identity.password_hash):
            logger.warning(f"Sign-in failed: invalid password - {email}")
            raise InvalidCredentials("Invalid email or password")

        logger.info(f"Sign-in successful: {identity.email}")
        return await self._open_session(identity)

    # ==================== SESSIONS ====================

    async def _open_session(self, identity: IdentityDB) -> Session:
        secret = secrets.token_urlsafe(SESSION_SECRET_BYTES)
        expires_at = utc_now() + self.session_ttl

        self.db.add(SessionDB(
            user_id=identity.id,
            secret_hash=hash_session_secret(secret),
            expires_at=expires_at,
        ))
        try:
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise WriteFailed("Session could not be stored") from e

        return Session(secret=secret, identity_id=identity.id, expires_at=expires_at)

    async def current_identity(self, session_secret: Optional[str]) -> Optional[IdentityDB]:
        """
        Resolve the identity behind a session secret.
        Returns None for missing, unknown or expired sessions; never raises.
        """
        if not session_secret:
            return None

        try:
            result = await self.db.execute(
                select(SessionDB, IdentityDB)
                .join(IdentityDB, IdentityDB.id == SessionDB.user_id)
                .where(SessionDB.secret_hash == hash_session_secret(session_secret))
            )
            row = result.first()
        except SQLAlchemyError as e:
            logger.error(f"Session lookup failed: {e}")
            return None

        if not row:
            logger.debug("Session secret not recognised")
            return None

        session_row, identity = row
        if session_row.is_expired():
            session_id = session_row.id
            logger.debug(f"Session {session_id} expired")
            try:
                await self.db.execute(delete(SessionDB).where(SessionDB.id == session_id))
                await self.db.commit()
            except SQLAlchemyError as e:
                await self.db.rollback()
                logger.error(f"Expired session {session_id} could not be deleted: {e}")
            return None

        return identity

    async def end_session(self, session_secret: Optional[str]) -> None:
        """Delete the server-side session; no-op when there is none."""
        if not session_secret:
            return

        result = await self.db.execute(
            delete(SessionDB).where(SessionDB.secret_hash == hash_session_secret(session_secret))
        )
        await self.db.commit()
        if result.rowcount:
            logger.info("Session ended")
