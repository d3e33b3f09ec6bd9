"""Pydantic schemas."""

from aichat.models.schemas.auth import AuthResult, CredentialRecord, CredentialStatus, ValidationResult

__all__ = ["AuthResult", "CredentialRecord", "CredentialStatus", "ValidationResult"]
