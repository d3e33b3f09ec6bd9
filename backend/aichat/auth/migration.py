"""One-time transfer of credentials from pre-database storage locations."""

import logging

from aichat.auth.repository import CredentialStore
from aichat.core.storage import Preferences, SecureStorage

logger = logging.getLogger(__name__)

# Where earlier releases kept the credential
LEGACY_API_KEY = "api_key"  # secure storage
LEGACY_PIN_HASH = "pin_hash"  # preferences
LEGACY_PROVIDER = "provider"  # preferences


class LegacyMigrationBridge:
    """
    Moves a credential from the secure store and preferences into the credential store.

    The transfer is attempted at most once per instance. Existing store data is never
    overwritten, and the legacy entries are only removed after a confirmed write.
    Failures are logged and swallowed.
    """

    def __init__(self, store: CredentialStore, secure_storage: SecureStorage, preferences: Preferences):
        self.store = store
        self.secure_storage = secure_storage
        self.preferences = preferences
        self.completed = False

    async def ensure_migrated(self) -> None:
        """Run the migration if it has not been attempted yet."""
        if self.completed:
            return
        # Marked up front so a failing legacy source is not probed on every call
        self.completed = True

        try:
            await self._migrate()
        except Exception as e:
            logger.warning("Legacy credential migration failed: %s", e)

    async def _migrate(self) -> None:
        if await self.store.has_any_credential():
            logger.debug("Credential store already populated, skipping legacy migration")
            return

        api_key = await self.secure_storage.read(LEGACY_API_KEY)
        pin_hash = await self.preferences.get_string(LEGACY_PIN_HASH)
        provider = await self.preferences.get_string(LEGACY_PROVIDER)
        if not (api_key and pin_hash and provider):
            return

        if not await self.store.save_credential(api_key, pin_hash, provider):
            logger.warning("Could not write legacy %s credential to the store", provider)
            return

        await self.secure_storage.delete(LEGACY_API_KEY)
        await self.preferences.remove(LEGACY_PIN_HASH)
        await self.preferences.remove(LEGACY_PROVIDER)
        logger.info("Migrated legacy %s credential to the credential store", provider)
