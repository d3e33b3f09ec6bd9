"""PIN generation, hashing and format checks."""

import hashlib
import hmac
import random

PIN_MIN = 1000
PIN_MAX = 9999


def generate_pin() -> str:
    """Return a random 4-digit PIN in the range 1000-9999."""
    return str(random.randint(PIN_MIN, PIN_MAX))


def hash_pin(pin: str) -> str:
    """SHA-256 hex digest of the PIN."""
    return hashlib.sha256(pin.encode("utf-8")).hexdigest()


def verify_pin_hash(pin: str, stored_hash: str) -> bool:
    """Compare a candidate PIN against a stored hash in constant time."""
    return hmac.compare_digest(hash_pin(pin), stored_hash)


def validate_pin_format(pin: str) -> bool:
    """A PIN is exactly four ASCII digits with a value between 1000 and 9999."""
    if len(pin) != 4 or not pin.isascii() or not pin.isdigit():
        return False
    return PIN_MIN <= int(pin) <= PIN_MAX
