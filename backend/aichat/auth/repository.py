"""Credential persistence."""

import enum
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from aichat.auth.pin import verify_pin_hash
from aichat.core.security import EncryptionError, SecretCipher
from aichat.models.database import Credential, utcnow
from aichat.models.schemas import CredentialRecord, CredentialStatus

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Most recently used first
MRU_ORDER = (Credential.last_used_at.desc(), Credential.id.desc())


class StoreErrorKind(str, enum.Enum):
    """Failure categories absorbed by the store."""

    DATABASE = "database"
    ENCRYPTION = "encryption"
    UNEXPECTED = "unexpected"


@dataclass(frozen=True)
class StoreResult(Generic[T]):
    """Outcome of a store operation before it is collapsed to the public contract."""

    value: Optional[T] = None
    error: Optional[StoreErrorKind] = None
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class PinPlan:
    """
    Canonical PIN hash for the device and which existing rows must be moved onto it.

    ``replace_hash`` re-points rows still carrying a previous hash; ``replace_all``
    re-points every row (existing rows had no hash at all).
    """

    pin_hash: str
    replace_hash: Optional[str] = None
    replace_all: bool = False


class CredentialStore:
    """
    Encrypted credential storage, one row per provider, all rows under one PIN.

    Public methods never raise: database and encryption failures degrade to
    ``False`` / ``None`` / ``[]`` and the cause is kept in :attr:`last_error`.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], cipher: SecretCipher):
        """
        Initialize the store.

        Args:
            session_factory: Factory producing sessions on the credential database
            cipher: Cipher used for API keys at rest
        """
        self.session_factory = session_factory
        self.cipher = cipher
        self.last_error: Optional[StoreResult] = None

    async def save_credential(self, api_key: str, pin_hash: str, provider: str) -> bool:
        """
        Insert or update the credential for ``provider``.

        An update keeps the original ``created_at``; if the PIN hash changes, every row that
        shared the old hash follows. A new provider joins the PIN already on the device
        rather than establishing its own.

        Returns:
            True if the credential was written
        """

        async def operation() -> bool:
            encrypted_key = await self.cipher.encrypt(api_key)
            async with self.session_factory() as session:
                async with session.begin():
                    existing = await self._find(session, provider)
                    plan = await self._resolve_pin_hash(session, existing, pin_hash)
                    await self._apply_pin_hash(session, existing, plan, encrypted_key, provider)
            return True

        return await self._run("save_credential", operation, False)

    async def get_credential(self, provider: Optional[str] = None) -> Optional[CredentialRecord]:
        """Credential for ``provider``, or the most recently used one when not given."""

        async def operation() -> Optional[CredentialRecord]:
            async with self.session_factory() as session:
                query = select(Credential)
                if provider is not None:
                    query = query.where(Credential.provider == provider)
                else:
                    query = query.order_by(*MRU_ORDER)
                row = (await session.execute(query.limit(1))).scalar_one_or_none()
            return CredentialRecord.model_validate(row) if row is not None else None

        return await self._run("get_credential", operation, None)

    async def list_credentials(self) -> list[CredentialStatus]:
        """All stored providers, most recently used first. Key material is not included."""

        async def operation() -> list[CredentialStatus]:
            async with self.session_factory() as session:
                rows = (await session.execute(select(Credential).order_by(*MRU_ORDER))).scalars().all()
            return [CredentialStatus.model_validate(row) for row in rows]

        return await self._run("list_credentials", operation, [])

    async def get_api_key(self, provider: Optional[str] = None) -> Optional[str]:
        """Decrypted API key for ``provider``, or for the most recently used credential."""

        async def operation() -> Optional[str]:
            query = select(Credential.encrypted_key)
            if provider is not None:
                query = query.where(Credential.provider == provider)
            else:
                query = query.order_by(*MRU_ORDER)
            encrypted_key = await self._scalar(query.limit(1))
            if not encrypted_key:
                return None
            return await self.cipher.decrypt(encrypted_key)

        return await self._run("get_api_key", operation, None)

    async def get_pin_hash(self) -> Optional[str]:
        """PIN hash shared by the stored credentials."""

        async def operation() -> Optional[str]:
            return await self._scalar(select(Credential.pin_hash).order_by(*MRU_ORDER).limit(1))

        return await self._run("get_pin_hash", operation, None)

    async def get_provider(self) -> Optional[str]:
        """Provider of the most recently used credential."""

        async def operation() -> Optional[str]:
            return await self._scalar(select(Credential.provider).order_by(*MRU_ORDER).limit(1))

        return await self._run("get_provider", operation, None)

    async def verify_pin(self, pin: str) -> bool:
        """Check a PIN against the stored hash."""
        stored_hash = await self.get_pin_hash()
        if not stored_hash:
            return False
        return verify_pin_hash(pin, stored_hash)

    async def update_last_used(self, provider: str) -> bool:
        """Touch ``last_used_at`` for a provider. False if no such credential."""

        async def operation() -> bool:
            return await self._execute(
                update(Credential).where(Credential.provider == provider).values(last_used_at=utcnow())
            ) > 0

        return await self._run("update_last_used", operation, False)

    async def delete_credential(self, provider: str) -> bool:
        """Delete one provider's credential. False if nothing was deleted."""

        async def operation() -> bool:
            return await self._execute(delete(Credential).where(Credential.provider == provider)) > 0

        return await self._run("delete_credential", operation, False)

    async def clear_all(self) -> bool:
        """Delete every credential. An already empty store counts as cleared."""

        async def operation() -> bool:
            await self._execute(delete(Credential))
            return True

        return await self._run("clear_all", operation, False)

    async def has_any_credential(self) -> bool:
        """Whether at least one usable credential is stored."""

        async def operation() -> bool:
            count = await self._scalar(
                select(func.count())
                .select_from(Credential)
                .where(Credential.encrypted_key.is_not(None), Credential.pin_hash.is_not(None))
            )
            return bool(count)

        return await self._run("has_any_credential", operation, False)

    async def _resolve_pin_hash(
        self, session: AsyncSession, existing: Optional[Credential], pin_hash: str
    ) -> PinPlan:
        """Phase one of a save: decide the device-wide PIN hash."""
        if existing is not None:
            if existing.pin_hash != pin_hash:
                return PinPlan(pin_hash=pin_hash, replace_hash=existing.pin_hash)
            return PinPlan(pin_hash=pin_hash)

        first = (
            await session.execute(select(Credential).order_by(Credential.id).limit(1))
        ).scalar_one_or_none()
        if first is None:
            return PinPlan(pin_hash=pin_hash)
        if first.pin_hash:
            return PinPlan(pin_hash=first.pin_hash)
        return PinPlan(pin_hash=pin_hash, replace_all=True)

    async def _apply_pin_hash(
        self,
        session: AsyncSession,
        existing: Optional[Credential],
        plan: PinPlan,
        encrypted_key: str,
        provider: str,
    ) -> None:
        """Phase two of a save: move rows onto the canonical hash and upsert this provider."""
        if plan.replace_all:
            await session.execute(update(Credential).values(pin_hash=plan.pin_hash))
        elif plan.replace_hash is not None:
            await session.execute(
                update(Credential)
                .where(Credential.pin_hash == plan.replace_hash)
                .values(pin_hash=plan.pin_hash)
            )

        now = utcnow()
        if existing is not None:
            existing.encrypted_key = encrypted_key
            existing.pin_hash = plan.pin_hash
            existing.last_used_at = now
        else:
            session.add(
                Credential(
                    provider=provider,
                    encrypted_key=encrypted_key,
                    pin_hash=plan.pin_hash,
                    created_at=now,
                    last_used_at=now,
                )
            )

    @staticmethod
    async def _find(session: AsyncSession, provider: str) -> Optional[Credential]:
        result = await session.execute(select(Credential).where(Credential.provider == provider))
        return result.scalar_one_or_none()

    async def _scalar(self, query) -> Any:
        async with self.session_factory() as session:
            return (await session.execute(query)).scalar_one_or_none()

    async def _execute(self, statement) -> int:
        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(statement)
            return result.rowcount

    async def _run(self, name: str, operation: Callable[[], Awaitable[T]], default: T) -> T:
        result = await self._attempt(name, operation)
        if result.ok:
            return result.value
        self.last_error = result
        logger.error("Credential store %s error in %s", result.error.value, result.detail)
        return default

    @staticmethod
    async def _attempt(name: str, operation: Callable[[], Awaitable[T]]) -> StoreResult[T]:
        try:
            return StoreResult(value=await operation())
        except EncryptionError as e:
            return StoreResult(error=StoreErrorKind.ENCRYPTION, detail=f"{name}: {e}")
        except SQLAlchemyError as e:
            return StoreResult(error=StoreErrorKind.DATABASE, detail=f"{name}: {e}")
        except Exception as e:
            return StoreResult(error=StoreErrorKind.UNEXPECTED, detail=f"{name}: {e!r}")
