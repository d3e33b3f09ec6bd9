"""AI chat client credential core."""

__version__ = "0.1.0"
