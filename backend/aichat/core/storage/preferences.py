"""Plain (unencrypted) preferences stored as a JSON file."""

import json
import logging
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


class Preferences:
    """Small string key-value store persisted to a JSON file."""

    def __init__(self, path: str = "./data/preferences.json"):
        """
        Initialize preferences.

        Args:
            path: Location of the JSON file. Created on first write.
        """
        self.path = Path(path)

    async def get_string(self, key: str) -> Optional[str]:
        """Return a string preference, or None if missing or not a string."""
        value = self._load().get(key)
        return value if isinstance(value, str) else None

    async def set_string(self, key: str, value: str) -> None:
        """Store a string preference."""
        data = self._load()
        data[key] = value
        self._save(data)

    async def remove(self, key: str) -> None:
        """Remove a preference if present."""
        data = self._load()
        if key in data:
            del data[key]
            self._save(data)

    def _load(self) -> dict:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable preferences file %s: %s", self.path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def _save(self, data: dict) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(data, indent=2, sort_keys=True), encoding="utf-8")
