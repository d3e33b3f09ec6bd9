"""Storage module."""

from aichat.core.storage.preferences import Preferences
from aichat.core.storage.secure_storage import KeyringSecureStorage, SecureStorage

__all__ = ["KeyringSecureStorage", "Preferences", "SecureStorage"]
