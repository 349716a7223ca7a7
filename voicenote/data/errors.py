"""Exceptions raised by the storage layer.

Missing ids are never errors: lookups return ``None`` and mutations are
silent no-ops. Everything here is either fatal at startup or a recoverable
condition a caller can show to the user.
"""

from __future__ import annotations


class StoreError(Exception):
    """Base class for storage errors."""


class MigrationError(StoreError):
    """The database could not be brought to the expected schema version."""

    def __init__(self, version: int, message: str) -> None:
        super().__init__(f"Schema migration to version {version} failed: {message}")
        self.version = version


class DuplicatePhraseError(StoreError, ValueError):
    """A dictionary entry with the same spoken phrase already exists."""

    def __init__(self, phrase: str) -> None:
        super().__init__(f"Dictionary phrase '{phrase}' already exists")
        self.phrase = phrase
