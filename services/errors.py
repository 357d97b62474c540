"""Exceptions raised by the offline queue and its collaborators."""
from __future__ import annotations


class SyncError(Exception):
    """Base class for EntrySync errors."""


class StorageUnavailable(SyncError):
    """The local queue database could not be opened or accessed."""


class EntryNotFound(SyncError, KeyError):
    """No pending entry exists with the requested id."""

    def __init__(self, entry_id: str):
        super().__init__(entry_id)
        self.entry_id = entry_id

    def __str__(self) -> str:
        return f"Pending entry not found: {self.entry_id}"


class SubmitError(SyncError):
    """The remote endpoint rejected or failed to receive an entry."""

    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


__all__ = ["SyncError", "StorageUnavailable", "EntryNotFound", "SubmitError"]
