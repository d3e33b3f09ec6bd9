"""Shared fixtures."""

from typing import Optional

import pytest

from aichat.auth import CredentialStore
from aichat.core.security import SecretCipher
from aichat.core.storage import Preferences, SecureStorage
from aichat.core.storage.database import close_db, create_engine, create_session_factory, init_db
from aichat.models.schemas import ValidationResult


class MemorySecureStorage(SecureStorage):
    """In-memory secure storage that counts calls."""

    def __init__(self, initial: Optional[dict] = None):
        self.values = dict(initial or {})
        self.reads = 0
        self.writes = 0
        self.deletes = 0

    async def read(self, key: str) -> Optional[str]:
        self.reads += 1
        return self.values.get(key)

    async def write(self, key: str, value: str) -> None:
        self.writes += 1
        self.values[key] = value

    async def delete(self, key: str) -> None:
        self.deletes += 1
        self.values.pop(key, None)


class StubValidator:
    """Validator double returning a fixed result."""

    def __init__(self, result: ValidationResult):
        self.result = result
        self.calls = []

    async def validate_api_key(self, api_key: str) -> ValidationResult:
        self.calls.append(api_key)
        return self.result

    async def aclose(self) -> None:
        pass


def validation(is_valid=True, balance=10.0, provider="openrouter", message=None) -> ValidationResult:
    """Build a ValidationResult for tests."""
    return ValidationResult(
        is_valid=is_valid,
        balance=balance,
        message=message if message is not None else f"{balance:.2f}",
        provider=provider,
    )


@pytest.fixture
async def engine(tmp_path):
    """Initialized SQLite engine on a temporary file."""
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await init_db(engine)
    yield engine
    await close_db(engine)


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
async def db_session(session_factory):
    """Session for direct ORM access in tests."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def secure_storage():
    return MemorySecureStorage()


@pytest.fixture
def preferences(tmp_path):
    return Preferences(str(tmp_path / "preferences.json"))


@pytest.fixture
def cipher(secure_storage):
    return SecretCipher(secure_storage)


@pytest.fixture
def store(session_factory, cipher):
    return CredentialStore(session_factory, cipher)
