"""API key encryption service using AES-256-CBC."""

import base64
import binascii
import logging
import os
from typing import Optional

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from aichat.core.storage.secure_storage import SecureStorage

logger = logging.getLogger(__name__)

ENCRYPTION_KEY_NAME = "api_key_encryption_key"
KEY_SIZE = 32
IV_SIZE = 16
TOKEN_SEPARATOR = ":"


class EncryptionError(Exception):
    """Raised when a secret cannot be encrypted or decrypted."""


class SecretCipher:
    """
    Encrypts and decrypts secrets with a device-local random key.

    Tokens have the form ``base64(iv):base64(ciphertext)``. The key is loaded from
    (or created in) secure storage on first use and cached for the process lifetime.
    Losing the stored key makes every previously issued token undecryptable.
    """

    def __init__(self, secure_storage: SecureStorage, key_name: str = ENCRYPTION_KEY_NAME):
        """
        Initialize the cipher.

        Args:
            secure_storage: Where the encryption key is persisted
            key_name: Secure storage entry holding the base64-encoded key
        """
        self.secure_storage = secure_storage
        self.key_name = key_name
        self._cached_key: Optional[bytes] = None

    async def encrypt(self, plaintext: str) -> str:
        """
        Encrypt a secret.

        Args:
            plaintext: The secret to encrypt. Empty input yields an empty token.

        Returns:
            Token in ``base64(iv):base64(ciphertext)`` form

        Raises:
            EncryptionError: If the key cannot be obtained or encryption fails
        """
        if not plaintext:
            return ""

        key = await self._get_or_create_key()
        try:
            iv = os.urandom(IV_SIZE)
            padder = padding.PKCS7(algorithms.AES.block_size).padder()
            padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()
            encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
            ciphertext = encryptor.update(padded) + encryptor.finalize()
        except (ValueError, TypeError) as e:
            raise EncryptionError(f"Failed to encrypt data: {e}") from e

        return f"{_b64encode(iv)}{TOKEN_SEPARATOR}{_b64encode(ciphertext)}"

    async def decrypt(self, token: str) -> str:
        """
        Decrypt a token produced by :meth:`encrypt`.

        Tokens without a separator are treated as the legacy base64 encoding.

        Args:
            token: Encrypted token

        Returns:
            Decrypted plaintext

        Raises:
            EncryptionError: If the token is malformed or cannot be decrypted
        """
        if not token:
            return ""

        if TOKEN_SEPARATOR not in token:
            return self._decode_legacy(token)

        parts = token.split(TOKEN_SEPARATOR)
        if len(parts) != 2:
            raise EncryptionError('Invalid encrypted format: expected "IV:encrypted"')

        key = await self._get_or_create_key()
        try:
            iv = base64.b64decode(parts[0], validate=True)
            ciphertext = base64.b64decode(parts[1], validate=True)
            decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
            padded = decryptor.update(ciphertext) + decryptor.finalize()
            unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
            plaintext = unpadder.update(padded) + unpadder.finalize()
            return plaintext.decode("utf-8")
        except (binascii.Error, ValueError, TypeError) as e:
            raise EncryptionError(f"Failed to decrypt data: {e}") from e

    def clear_cache(self) -> None:
        """Forget the cached key so it is reloaded from secure storage on next use."""
        self._cached_key = None

    async def delete_key(self) -> bool:
        """
        Remove the encryption key from secure storage.

        Every token encrypted with the deleted key becomes permanently undecryptable.

        Returns:
            True if the key was removed
        """
        try:
            await self.secure_storage.delete(self.key_name)
        except Exception as e:
            logger.error("Failed to delete encryption key: %s", e)
            return False
        self._cached_key = None
        return True

    @staticmethod
    def is_aes_encrypted(text: str) -> bool:
        """Check whether a value uses the ``iv:ciphertext`` token format."""
        return text.count(TOKEN_SEPARATOR) == 1

    @staticmethod
    def is_legacy_encoded(text: str) -> bool:
        """Check whether a value looks like the legacy plain base64 encoding."""
        if not text or TOKEN_SEPARATOR in text:
            return False
        try:
            base64.b64decode(text, validate=True)
        except binascii.Error:
            return False
        return True

    async def _get_or_create_key(self) -> bytes:
        if self._cached_key is not None:
            return self._cached_key

        try:
            stored = await self.secure_storage.read(self.key_name)
            if stored:
                try:
                    key = base64.b64decode(stored, validate=True)
                except binascii.Error:
                    key = b""
                if len(key) == KEY_SIZE:
                    self._cached_key = key
                    return key
                logger.warning("Stored encryption key is corrupted, generating a new one")

            key = os.urandom(KEY_SIZE)
            await self.secure_storage.write(self.key_name, _b64encode(key))
        except Exception as e:
            raise EncryptionError(f"Failed to get or create encryption key: {e}") from e

        logger.info("Generated new encryption key")
        self._cached_key = key
        return key

    @staticmethod
    def _decode_legacy(token: str) -> str:
        try:
            return base64.b64decode(token, validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as e:
            raise EncryptionError(
                "Failed to decrypt: invalid format. Data may need migration."
            ) from e


def _b64encode(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")
