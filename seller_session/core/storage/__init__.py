from seller_session.core.storage.plain_store import PlainStore
from seller_session.core.storage.secure_store import SecretUnavailable, SecureCredentialStore, SecureStoreMode
from seller_session.core.storage.session_store import (
    ALL_SESSION_KEYS,
    SECURE_KEYS,
    MultiResult,
    SessionKey,
    SessionStore,
    StoreResult,
    Tier,
)

__all__ = [
    "PlainStore",
    "SecretUnavailable",
    "SecureCredentialStore",
    "SecureStoreMode",
    "ALL_SESSION_KEYS",
    "SECURE_KEYS",
    "MultiResult",
    "SessionKey",
    "SessionStore",
    "StoreResult",
    "Tier",
]
