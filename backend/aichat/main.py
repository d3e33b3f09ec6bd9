"""Composition root for the authentication core."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from aichat.auth import AuthManager, CredentialStore, CredentialValidator, LegacyMigrationBridge
from aichat.core.config import Settings, settings as default_settings
from aichat.core.logging_setup import setup_logging
from aichat.core.security import SecretCipher
from aichat.core.storage import KeyringSecureStorage, Preferences, SecureStorage
from aichat.core.storage.database import close_db, create_engine, create_session_factory, init_db

logger = logging.getLogger(__name__)


def build_auth_manager(
    session_factory: async_sessionmaker[AsyncSession],
    settings: Settings,
    secure_storage: SecureStorage,
    preferences: Preferences,
    http_client: Optional[httpx.AsyncClient] = None,
) -> AuthManager:
    """
    Wire one cipher, store, validator and migration bridge into an AuthManager.

    Args:
        session_factory: Sessions on an initialized credential database
        settings: Application settings
        secure_storage: Holds the encryption key and the legacy API key
        preferences: Holds the legacy PIN hash and provider
        http_client: Optional client for balance checks (owned by the caller)

    Returns:
        Ready-to-use AuthManager
    """
    cipher = SecretCipher(secure_storage)
    store = CredentialStore(session_factory, cipher)
    validator = CredentialValidator(
        openrouter_base_url=settings.openrouter_base_url,
        vsegpt_base_url=settings.vsegpt_base_url if settings.vsegpt_enabled else None,
        timeout=settings.validation_timeout,
        client=http_client,
    )
    migration = LegacyMigrationBridge(store, secure_storage, preferences)
    return AuthManager(store=store, validator=validator, migration=migration)


@asynccontextmanager
async def auth_lifespan(
    settings: Optional[Settings] = None,
    secure_storage: Optional[SecureStorage] = None,
    preferences: Optional[Preferences] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> AsyncIterator[AuthManager]:
    """
    Set up the database and yield an AuthManager; tear everything down on exit.

    Usage::

        async with auth_lifespan() as auth:
            if not await auth.is_authenticated():
                result = await auth.handle_first_login(api_key)
    """
    settings = settings or default_settings
    setup_logging(settings.log_level)

    # Startup
    logger.info("Initializing credential database...")
    engine = create_engine(settings.database_url, echo=settings.database_echo)
    try:
        await init_db(engine)
        manager = build_auth_manager(
            create_session_factory(engine),
            settings,
            secure_storage or KeyringSecureStorage(settings.keyring_service),
            preferences or Preferences(settings.preferences_path),
            http_client=http_client,
        )
        logger.info("Credential database initialized")

        try:
            yield manager
        finally:
            # Shutdown
            await manager.validator.aclose()
    finally:
        await close_db(engine)
        logger.info("Authentication core shut down")
