"""Credential database model."""

from datetime import datetime, timezone
import enum

from sqlalchemy import Column, Integer, String, DateTime, Text

from aichat.core.storage.database import Base


class Provider(str, enum.Enum):
    """Supported upstream API providers."""

    OPENROUTER = "openrouter"
    VSEGPT = "vsegpt"


def utcnow() -> datetime:
    """Naive UTC timestamp, as stored in the database."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Credential(Base):
    """Encrypted provider API key; every row on a device shares one PIN hash."""

    __tablename__ = "auth_keys"

    id = Column(Integer, primary_key=True, autoincrement=True)
    provider = Column(String(50), nullable=False, unique=True)  # openrouter, vsegpt
    encrypted_key = Column(Text, nullable=False)  # base64(iv):base64(ciphertext)
    pin_hash = Column(String(64), nullable=True)  # SHA-256 hex of the PIN
    created_at = Column(DateTime, default=utcnow, nullable=False)
    last_used_at = Column(DateTime, default=utcnow, nullable=True)
