"""Database models."""

from aichat.models.database.credential import Credential, Provider, utcnow

__all__ = ["Credential", "Provider", "utcnow"]
