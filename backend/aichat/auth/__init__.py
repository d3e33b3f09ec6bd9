"""Authentication module."""

from aichat.auth.manager import AuthManager
from aichat.auth.migration import LegacyMigrationBridge
from aichat.auth.repository import CredentialStore, StoreErrorKind, StoreResult
from aichat.auth.validator import CredentialValidator, detect_provider

__all__ = [
    "AuthManager",
    "CredentialStore",
    "CredentialValidator",
    "LegacyMigrationBridge",
    "StoreErrorKind",
    "StoreResult",
    "detect_provider",
]
