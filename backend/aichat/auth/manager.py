"""Authentication flows: first login, PIN login, key login and reset."""

import logging
from typing import Callable, Optional

from aichat.auth.migration import LegacyMigrationBridge
from aichat.auth.pin import generate_pin, hash_pin, validate_pin_format
from aichat.auth.repository import CredentialStore
from aichat.auth.validator import CredentialValidator
from aichat.models.schemas import AuthResult, CredentialStatus, ValidationResult

logger = logging.getLogger(__name__)

SAVE_FAILED_MESSAGE = "Failed to save authentication data"
EXISTING_PIN_MESSAGE = "API key saved. Use your existing PIN to unlock"


class AuthManager:
    """
    Coordinates key validation, PIN policy and credential persistence.

    Holds no state between calls; everything lives in the credential store. Every flow
    returns an :class:`AuthResult` and none of them raises under normal operation.
    """

    def __init__(
        self,
        store: CredentialStore,
        validator: CredentialValidator,
        migration: Optional[LegacyMigrationBridge] = None,
        pin_generator: Callable[[], str] = generate_pin,
    ):
        """
        Initialize the manager.

        Args:
            store: Credential store
            validator: Remote key validator
            migration: Legacy migration run before store access (skipped when None)
            pin_generator: Source of new PINs
        """
        self.store = store
        self.validator = validator
        self.migration = migration
        self.pin_generator = pin_generator

    async def handle_first_login(self, api_key: str) -> AuthResult:
        """
        Validate a key, generate a PIN and store both.

        A new PIN for a provider that is already stored replaces the device PIN. A new
        provider on a device that already holds another provider's key keeps the
        existing PIN, which the store enforces; the result then says so instead of
        returning a PIN that would not unlock anything.

        Returns:
            On success ``message`` is the new PIN and ``balance`` the key's balance
        """
        validation = await self.validator.validate_api_key(api_key)
        rejection = self._check_validation(validation)
        if rejection is not None:
            return rejection

        await self._migrate()
        pin = self.pin_generator()
        if not await self.store.save_credential(api_key.strip(), hash_pin(pin), validation.provider):
            logger.error("Failed to save %s credential after validation", validation.provider)
            return AuthResult(success=False, message=SAVE_FAILED_MESSAGE)

        balance = _format_balance(validation.balance)
        if not await self.store.verify_pin(pin):
            logger.info("Stored %s API key under the existing device PIN", validation.provider)
            return AuthResult(success=True, message=EXISTING_PIN_MESSAGE, balance=balance)

        logger.info("Stored %s API key under a new PIN", validation.provider)
        return AuthResult(success=True, message=pin, balance=balance)

    async def handle_pin_login(self, pin: str) -> AuthResult:
        """
        Unlock the stored key with a PIN. No network access.

        Returns:
            On success ``message`` is the decrypted API key
        """
        if not validate_pin_format(pin):
            return AuthResult(success=False, message="PIN must be 4 digits (1000-9999)")

        await self._migrate()
        if not await self.store.verify_pin(pin):
            logger.info("PIN login rejected")
            return AuthResult(success=False, message="Invalid PIN")

        api_key = await self.store.get_api_key()
        if not api_key:
            return AuthResult(success=False, message="Authentication data not found")

        provider = await self.store.get_provider()
        if provider is not None:
            await self.store.update_last_used(provider)

        return AuthResult(success=True, message=api_key)

    async def handle_api_key_login(self, api_key: str) -> AuthResult:
        """
        Validate a key and store it, keeping the existing PIN when there is one.

        Returns:
            On success ``message`` is the new PIN when none existed before, otherwise
            a confirmation that the key was updated
        """
        validation = await self.validator.validate_api_key(api_key)
        rejection = self._check_validation(validation)
        if rejection is not None:
            return rejection
        return await self._store_validated_key(api_key, validation)

    async def handle_reset(self) -> AuthResult:
        """Remove every stored credential."""
        await self._migrate()
        if not await self.store.clear_all():
            return AuthResult(success=False, message="Failed to clear authentication data")
        logger.info("Authentication data cleared")
        return AuthResult(success=True, message="Authentication data cleared")

    async def is_authenticated(self) -> bool:
        """Whether a credential is stored on this device."""
        await self._migrate()
        return await self.store.has_any_credential()

    async def get_stored_api_key(self) -> str:
        """Most recently used API key, or an empty string."""
        await self._migrate()
        return await self.store.get_api_key() or ""

    async def get_stored_provider(self) -> Optional[str]:
        """Provider of the most recently used credential."""
        await self._migrate()
        return await self.store.get_provider()

    async def list_credentials(self) -> list[CredentialStatus]:
        """Stored providers with their timestamps."""
        await self._migrate()
        return await self.store.list_credentials()

    async def delete_credential(self, provider: str) -> AuthResult:
        """Remove one provider's key; the PIN keeps working for the others."""
        await self._migrate()
        if not await self.store.delete_credential(provider):
            return AuthResult(success=False, message=f"No API key found for provider: {provider}")
        return AuthResult(success=True, message=f"API key for {provider} deleted")

    @staticmethod
    def _check_validation(validation: ValidationResult) -> Optional[AuthResult]:
        if not validation.is_valid:
            return AuthResult(success=False, message=validation.message)
        # Checked again here: some response shapes report valid with a negative balance
        if validation.balance < 0:
            logger.warning("Rejected %s key with negative balance", validation.provider)
            return AuthResult(
                success=False,
                message=f"API key has negative balance. Current balance: {validation.balance:.2f}",
            )
        return None

    async def _store_validated_key(self, api_key: str, validation: ValidationResult) -> AuthResult:
        await self._migrate()
        has_existing = await self.store.has_any_credential()

        generated_pin: Optional[str] = None
        existing_hash = await self.store.get_pin_hash() if has_existing else None
        if existing_hash:
            pin_hash = existing_hash
        else:
            generated_pin = self.pin_generator()
            pin_hash = hash_pin(generated_pin)

        if not await self.store.save_credential(api_key.strip(), pin_hash, validation.provider):
            logger.error("Failed to save %s credential after validation", validation.provider)
            return AuthResult(success=False, message=SAVE_FAILED_MESSAGE)

        balance = _format_balance(validation.balance)
        if generated_pin is None:
            logger.info("Updated %s API key", validation.provider)
            return AuthResult(success=True, message="API key updated successfully", balance=balance)

        logger.info("Stored %s API key under a new PIN", validation.provider)
        return AuthResult(success=True, message=generated_pin, balance=balance)

    async def _migrate(self) -> None:
        if self.migration is not None:
            await self.migration.ensure_migrated()


def _format_balance(balance: float) -> str:
    return str(round(balance, 2))
