"""ORM models exposed by the EntrySync application."""
from .pending_entry import PendingEntryRecord

__all__ = ["PendingEntryRecord"]
