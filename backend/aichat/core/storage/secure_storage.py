"""Platform secure key-value storage."""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Optional

import keyring
from keyring.errors import PasswordDeleteError

logger = logging.getLogger(__name__)


class SecureStorage(ABC):
    """Async interface over a secure key-value store."""

    @abstractmethod
    async def read(self, key: str) -> Optional[str]:
        """Return the stored value, or None if the key is absent."""

    @abstractmethod
    async def write(self, key: str, value: str) -> None:
        """Store a value, replacing any previous one."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove a value. Removing a missing key is not an error."""


class KeyringSecureStorage(SecureStorage):
    """Secure storage backed by the OS keychain via ``keyring``."""

    def __init__(self, service_name: str = "aichat"):
        """
        Initialize keyring storage.

        Args:
            service_name: Keychain service under which all entries are stored
        """
        self.service_name = service_name

    async def read(self, key: str) -> Optional[str]:
        return await asyncio.to_thread(keyring.get_password, self.service_name, key)

    async def write(self, key: str, value: str) -> None:
        await asyncio.to_thread(keyring.set_password, self.service_name, key, value)

    async def delete(self, key: str) -> None:
        try:
            await asyncio.to_thread(keyring.delete_password, self.service_name, key)
        except PasswordDeleteError:
            logger.debug("Keychain entry %s/%s was already absent", self.service_name, key)
