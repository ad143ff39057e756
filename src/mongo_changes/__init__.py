"""Idempotent, audited and revertible MongoDB schema changes."""

__version__ = "0.1.0"
