"""Security module."""

from aichat.core.security.encryption import EncryptionError, SecretCipher

__all__ = ["EncryptionError", "SecretCipher"]
