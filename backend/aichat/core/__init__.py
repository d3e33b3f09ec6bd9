"""Core infrastructure: configuration, security and storage."""
