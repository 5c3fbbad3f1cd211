from .connection import (
    Base, get_db, init_db, ping_db,
    create_engine_from_url, create_session_factory, normalize_database_url
)

from .identity_models import IdentityDB, SessionDB, generate_uuid, utc_now, as_utc
from .bank_models import BankAccountDB

__all__ = [
    'Base', 'get_db', 'init_db', 'ping_db',
    'create_engine_from_url', 'create_session_factory', 'normalize_database_url',
    # Identity models
    'IdentityDB', 'SessionDB', 'generate_uuid', 'utc_now', 'as_utc',
    # Bank account models
    'BankAccountDB',
]
