from __future__ import annotations

import json
import logging
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Iterator, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from core.settings import SYNC
from datetime_utils import ensure_utc, to_rfc3339_utc, utc_now
from models.pending_entry import PendingEntryRecord
from services.errors import EntryNotFound, StorageUnavailable


logger = logging.getLogger("entrysync.queue")

UPDATABLE_FIELDS = {"payload", "attempts", "last_attempt_at", "last_error"}


def new_entry_id() -> str:
    return f"pending-{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"


@dataclass
class PendingEntry:
    id: str
    payload: Any
    created_at: datetime
    attempts: int = 0
    last_attempt_at: Optional[datetime] = None
    last_error: Optional[str] = None

    def is_exhausted(self, max_attempts: int = SYNC.max_retry_attempts) -> bool:
        return self.attempts >= max_attempts

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "payload": self.payload,
            "createdAt": to_rfc3339_utc(self.created_at),
            "attempts": self.attempts,
            "lastAttemptAt": to_rfc3339_utc(self.last_attempt_at),
            "lastError": self.last_error,
        }


def _to_entry(row: PendingEntryRecord) -> PendingEntry:
    try:
        payload = json.loads(row.payload)
    except json.JSONDecodeError as exc:
        raise StorageUnavailable(f"Corrupt payload for pending entry {row.id}") from exc
    return PendingEntry(
        id=row.id,
        payload=payload,
        created_at=ensure_utc(row.created_at),
        attempts=row.attempts,
        last_attempt_at=ensure_utc(row.last_attempt_at),
        last_error=row.last_error,
    )


class PendingQueue:
    """Durable FIFO of entries that could not be submitted yet.

    Every operation touches exactly one entry (or the whole table) in a single
    short transaction. The methods are coroutines to fit the coordinator, but
    the SQLite work itself runs synchronously on the calling thread. The
    database is reached only through ``session_factory``.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        clock: Callable[[], datetime] = utc_now,
        id_factory: Callable[[], str] = new_entry_id,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock
        self._id_factory = id_factory

    @contextmanager
    def _session(self) -> Iterator[Session]:
        try:
            with self._session_factory() as session:
                yield session
        except SQLAlchemyError as exc:
            logger.error("Pending entry store failed: %s", exc)
            raise StorageUnavailable(str(exc)) from exc

    async def enqueue(self, payload: Any) -> str:
        encoded = json.dumps(payload, ensure_ascii=False)
        entry_id = self._id_factory()
        record = PendingEntryRecord(
            id=entry_id,
            payload=encoded,
            created_at=self._clock(),
            attempts=0,
        )
        with self._session() as session:
            session.add(record)
            session.commit()
        logger.info("Queued entry %s", entry_id)
        return entry_id

    async def list(self) -> List[PendingEntry]:
        with self._session() as session:
            stmt = select(PendingEntryRecord).order_by(
                PendingEntryRecord.created_at.asc(), PendingEntryRecord.id.asc()
            )
            rows = list(session.exec(stmt))
            return [_to_entry(row) for row in rows]

    async def count(self) -> int:
        with self._session() as session:
            return int(session.exec(select(func.count()).select_from(PendingEntryRecord)).one())

    async def get(self, entry_id: str) -> Optional[PendingEntry]:
        with self._session() as session:
            row = session.get(PendingEntryRecord, entry_id)
            return _to_entry(row) if row else None

    async def update(self, entry_id: str, **changes: Any) -> PendingEntry:
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update pending entry fields: {', '.join(sorted(unknown))}")
        with self._session() as session:
            row = session.get(PendingEntryRecord, entry_id)
            if row is None:
                raise EntryNotFound(entry_id)
            for key, value in changes.items():
                if key == "payload":
                    value = json.dumps(value, ensure_ascii=False)
                elif key == "last_error" and value is not None:
                    value = str(value)[:1000]
                setattr(row, key, value)
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_entry(row)

    async def charge_attempt(self, entry_id: str, at: Optional[datetime] = None) -> PendingEntry:
        """Increment the stored attempt counter and stamp ``last_attempt_at``.

        The counter is read and written in one transaction, so a caller
        holding an older copy of the entry cannot undercount.
        """

        with self._session() as session:
            row = session.get(PendingEntryRecord, entry_id)
            if row is None:
                raise EntryNotFound(entry_id)
            row.attempts = (row.attempts or 0) + 1
            row.last_attempt_at = at or self._clock()
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_entry(row)

    async def remove(self, entry_id: str) -> None:
        with self._session() as session:
            row = session.get(PendingEntryRecord, entry_id)
            if row:
                session.delete(row)
                session.commit()
                logger.info("Removed entry %s", entry_id)

    async def clear(self) -> int:
        with self._session() as session:
            rows = list(session.exec(select(PendingEntryRecord)))
            for row in rows:
                session.delete(row)
            session.commit()
            removed = len(rows)
        logger.info("Cleared %d pending entries", removed)
        return removed


__all__ = ["PendingQueue", "PendingEntry", "new_entry_id"]
