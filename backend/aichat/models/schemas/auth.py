"""Authentication schemas."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class ValidationResult(BaseModel):
    """Outcome of checking an API key against its provider."""

    is_valid: bool = Field(..., description="Whether the key was accepted by the provider")
    balance: float = Field(0.0, description="Remaining credit reported by the provider")
    message: str = Field(..., description="Formatted balance on success, reason on failure")
    provider: str = Field(..., description="Detected provider, or 'unknown'")


class AuthResult(BaseModel):
    """
    Result returned by every authentication flow.

    ``message`` carries the generated PIN after a first login, the decrypted API key
    after a PIN login, and a displayable error on failure.
    """

    success: bool
    message: str
    balance: str = ""


class CredentialRecord(BaseModel):
    """A stored credential row, with the key still encrypted."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    provider: str
    encrypted_key: str
    pin_hash: Optional[str] = None
    created_at: datetime
    last_used_at: Optional[datetime] = None


class CredentialStatus(BaseModel):
    """Schema for a stored credential's status (without exposing the key)."""

    model_config = ConfigDict(from_attributes=True)

    provider: str = Field(..., description="Provider name")
    created_at: datetime = Field(..., description="When the key was first stored")
    last_used_at: Optional[datetime] = Field(None, description="Last time this key was used")
