"""SQLModel table for entries waiting to be submitted."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel

from datetime_utils import utc_now


class PendingEntryRecord(SQLModel, table=True):
    __tablename__ = "pendingentry"

    id: str = Field(primary_key=True)
    payload: str
    created_at: datetime = Field(default_factory=utc_now, index=True)
    attempts: int = Field(default=0)
    last_attempt_at: Optional[datetime] = None
    last_error: Optional[str] = None


__all__ = ["PendingEntryRecord"]
