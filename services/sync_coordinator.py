"""Drains the offline entry queue against a remote submit function."""
from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from logging.handlers import RotatingFileHandler
from typing import Any, Awaitable, Callable, List, Optional, Set

from core.settings import SYNC, SYNC_LOG_PATH
from datetime_utils import to_rfc3339_utc, utc_now
from services.connectivity import ConnectivityMonitor
from services.errors import EntryNotFound, StorageUnavailable
from services.pending_queue import PendingEntry, PendingQueue


SubmitFn = Callable[[Any], Awaitable[Any]]
SuccessCallback = Callable[[Any], Any]
ErrorCallback = Callable[[str, PendingEntry], Any]


def _ensure_logger() -> logging.Logger:
    logger = logging.getLogger("entrysync.sync")
    if not logger.handlers:
        SYNC_LOG_PATH.parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(SYNC_LOG_PATH, maxBytes=1_000_000, backupCount=3, encoding="utf-8")
        formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(message)s")
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    logger.setLevel(logging.INFO)
    return logger


def _error_message(exc: BaseException) -> str:
    return str(exc) or exc.__class__.__name__


def _entries(count: int) -> str:
    return "entry" if count == 1 else "entries"


class SyncState(str, Enum):
    IDLE = "idle"
    SYNCING = "syncing"


@dataclass
class SyncReport:
    """Outcome of a single drain pass."""

    synced: int = 0
    failed: int = 0
    skipped: int = 0
    aborted: bool = False

    @property
    def attempted(self) -> int:
        return self.synced + self.failed


@dataclass
class SubmitOutcome:
    """Result of :meth:`SyncCoordinator.submit_or_queue`.

    Exactly one of ``record`` (the server's copy) and ``pending_id`` (the
    queued entry) is set. ``error`` carries the reason a direct submit failed.
    """

    record: Any = None
    pending_id: Optional[str] = None
    error: Optional[str] = None

    @property
    def queued(self) -> bool:
        return self.pending_id is not None


@dataclass(frozen=True)
class SyncStatus:
    state: SyncState
    online: bool
    pending_count: int
    eligible_count: int
    failed_count: int
    last_sync_at: Optional[datetime] = None

    @property
    def is_syncing(self) -> bool:
        return self.state is SyncState.SYNCING


def describe_status(status: SyncStatus) -> str:
    """Human readable line for an offline / syncing indicator."""

    if not status.online:
        if status.pending_count:
            return (
                f"You're offline. {status.pending_count} {_entries(status.pending_count)} "
                "saved locally."
            )
        return "You're offline."
    if status.is_syncing:
        return "Syncing entries..."
    if status.failed_count:
        return f"{status.failed_count} {_entries(status.failed_count)} failed to sync"
    if status.pending_count:
        return f"{status.pending_count} {_entries(status.pending_count)} pending sync"
    return "All entries synced"


class SyncCoordinator:
    """Runs at most one drain pass at a time over a :class:`PendingQueue`.

    Passes start on an explicit request, on a periodic tick and shortly after
    the monitor reports the network is back or an entry is queued while
    online. Entries are attempted one by one in creation order. An attempt is
    charged before the submit call goes out, so the retry ceiling holds even
    if the process dies mid-request. Failed
    submissions are recorded on the entry and never abort the pass; errors
    from the queue itself propagate.
    """

    def __init__(
        self,
        queue: PendingQueue,
        monitor: ConnectivityMonitor,
        submit: SubmitFn,
        *,
        on_sync_success: Optional[SuccessCallback] = None,
        on_sync_error: Optional[ErrorCallback] = None,
        max_attempts: int = SYNC.max_retry_attempts,
        sync_interval: float = SYNC.sync_interval_sec,
        settle_delay: float = SYNC.settle_delay_sec,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.queue = queue
        self.monitor = monitor
        self._submit = submit
        self.on_sync_success = on_sync_success
        self.on_sync_error = on_sync_error
        self.max_attempts = max_attempts
        self.sync_interval = sync_interval
        self.settle_delay = settle_delay
        self._clock = clock
        self.logger = _ensure_logger()

        self.state = SyncState.IDLE
        self.pending_entries: List[PendingEntry] = []
        self.last_sync_at: Optional[datetime] = None

        self._listeners: List[Callable[[SyncStatus], Any]] = []
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._unsubscribe_monitor: Optional[Callable[[], None]] = None
        self._periodic_task: Optional[asyncio.Task] = None
        self._settle_handle: Optional[asyncio.TimerHandle] = None
        self._sync_tasks: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Observable state
    @property
    def is_syncing(self) -> bool:
        return self.state is SyncState.SYNCING

    @property
    def is_online(self) -> bool:
        return self.monitor.is_online()

    @property
    def pending_count(self) -> int:
        return len(self.pending_entries)

    @property
    def eligible_entries(self) -> List[PendingEntry]:
        return [e for e in self.pending_entries if not e.is_exhausted(self.max_attempts)]

    @property
    def failed_entries(self) -> List[PendingEntry]:
        return [e for e in self.pending_entries if e.is_exhausted(self.max_attempts)]

    def snapshot(self) -> SyncStatus:
        failed = len(self.failed_entries)
        return SyncStatus(
            state=self.state,
            online=self.is_online,
            pending_count=self.pending_count,
            eligible_count=self.pending_count - failed,
            failed_count=failed,
            last_sync_at=self.last_sync_at,
        )

    def status(self) -> dict:
        snap = self.snapshot()
        return {
            "state": snap.state.value,
            "online": snap.online,
            "pendingCount": snap.pending_count,
            "eligibleCount": snap.eligible_count,
            "failedCount": snap.failed_count,
            "lastSyncAt": to_rfc3339_utc(snap.last_sync_at),
            "summary": describe_status(snap),
        }

    def subscribe(self, listener: Callable[[SyncStatus], Any]) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        if not self._listeners:
            return
        snap = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snap)
            except Exception:
                self.logger.exception("Status listener %r failed", listener)

    def _set_state(self, state: SyncState) -> None:
        if state is self.state:
            return
        self.state = state
        self._notify()

    async def refresh(self) -> List[PendingEntry]:
        self.pending_entries = await self.queue.list()
        self._notify()
        return self.pending_entries

    # ------------------------------------------------------------------
    # Public API
    async def save_offline(self, payload: Any) -> str:
        entry_id = await self.queue.enqueue(payload)
        await self.refresh()
        if self._loop is not None and self.monitor.is_online():
            self._cancel_settled_sync()
            self._schedule_settled_sync()
        return entry_id

    async def submit_or_queue(self, payload: Any) -> SubmitOutcome:
        if not self.monitor.is_online():
            self.logger.info("Offline, queueing entry")
            return SubmitOutcome(pending_id=await self.save_offline(payload))
        try:
            record = await self._submit(payload)
        except Exception as exc:
            message = _error_message(exc)
            self.logger.warning("Direct submit failed, queueing entry: %s", message)
            return SubmitOutcome(pending_id=await self.save_offline(payload), error=message)
        return SubmitOutcome(record=record)

    async def sync_all(self) -> Optional[SyncReport]:
        """Run one drain pass; ``None`` when offline or a pass is running."""

        if self.state is SyncState.SYNCING or not self.monitor.is_online():
            return None
        self._set_state(SyncState.SYNCING)
        report = SyncReport()
        try:
            for entry in await self.queue.list():
                if entry.is_exhausted(self.max_attempts):
                    report.skipped += 1
                    continue
                if not self.monitor.is_online():
                    self.logger.info("Connectivity lost, stopping sync pass")
                    report.aborted = True
                    break
                outcome = await self._sync_entry(entry)
                if outcome is True:
                    report.synced += 1
                elif outcome is False:
                    report.failed += 1
            self.last_sync_at = self._clock()
        finally:
            self._set_state(SyncState.IDLE)
            await self.refresh()
        self.logger.info(
            "Sync pass done: %d attempted, %d synced, %d failed, %d at retry ceiling%s",
            report.attempted,
            report.synced,
            report.failed,
            report.skipped,
            " (aborted)" if report.aborted else "",
        )
        return report

    async def retry_entry(self, entry_id: str) -> Optional[bool]:
        """Reset an entry's attempts and submit it once, ignoring the ceiling.

        Returns the outcome of the attempt, or ``None`` when offline or while
        another pass is running.
        """

        if await self.queue.get(entry_id) is None:
            raise EntryNotFound(entry_id)
        if self.state is SyncState.SYNCING or not self.monitor.is_online():
            return None
        self._set_state(SyncState.SYNCING)
        try:
            entry = await self.queue.update(entry_id, attempts=0, last_error=None)
            self.logger.info("Manual retry for entry %s", entry_id)
            outcome = await self._sync_entry(entry)
        finally:
            self._set_state(SyncState.IDLE)
            await self.refresh()
        return bool(outcome)

    async def remove_pending(self, entry_id: str) -> None:
        await self.queue.remove(entry_id)
        await self.refresh()

    async def clear_pending(self) -> int:
        removed = await self.queue.clear()
        await self.refresh()
        return removed

    # ------------------------------------------------------------------
    # Attempts
    async def _sync_entry(self, entry: PendingEntry) -> Optional[bool]:
        try:
            charged = await self.queue.charge_attempt(entry.id, self._clock())
        except EntryNotFound:
            self.logger.info("Entry %s was removed before its attempt", entry.id)
            return None
        attempts = charged.attempts
        if attempts > self.max_attempts:
            # Another writer used up the budget after this pass listed the entry.
            self.logger.info("Entry %s already at retry ceiling, skipping", entry.id)
            return None

        try:
            record = await self._submit(entry.payload)
        except Exception as exc:
            message = _error_message(exc)
            self.logger.warning(
                "Entry %s attempt %d/%d failed: %s", entry.id, attempts, self.max_attempts, message
            )
            try:
                updated = await self.queue.update(entry.id, last_error=message)
            except EntryNotFound:
                return False
            if attempts >= self.max_attempts:
                self.logger.error("Entry %s gave up after %d attempts", entry.id, attempts)
                await self._fire(
                    self.on_sync_error,
                    f"Failed after {self.max_attempts} attempts: {message}",
                    updated,
                )
            return False

        await self.queue.remove(entry.id)
        self.logger.info("Entry %s synced", entry.id)
        await self._fire(self.on_sync_success, record)
        return True

    async def _fire(self, callback: Optional[Callable[..., Any]], *args: Any) -> None:
        if callback is None:
            return
        try:
            result = callback(*args)
            if inspect.isawaitable(result):
                await result
        except Exception:
            self.logger.exception("Sync callback %r failed", callback)

    # ------------------------------------------------------------------
    # Background triggers
    async def start(self) -> None:
        if self._loop is not None:
            return
        self._loop = asyncio.get_running_loop()
        await self.refresh()
        self._unsubscribe_monitor = self.monitor.subscribe(self._on_connectivity_change)
        self._periodic_task = self._loop.create_task(self._periodic_loop())
        if self.monitor.is_online() and self.pending_entries:
            self._schedule_settled_sync()

    async def stop(self) -> None:
        if self._loop is None:
            return
        if self._unsubscribe_monitor:
            self._unsubscribe_monitor()
            self._unsubscribe_monitor = None
        self._cancel_settled_sync()
        task, self._periodic_task = self._periodic_task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        # Passes already running are left to finish; their results still apply.
        if self._sync_tasks:
            await asyncio.gather(*list(self._sync_tasks), return_exceptions=True)
        self._loop = None

    def _on_connectivity_change(self, online: bool) -> None:
        self._cancel_settled_sync()
        self._notify()
        if online:
            self._schedule_settled_sync()

    def _schedule_settled_sync(self) -> None:
        if self._loop is None:
            return
        self._settle_handle = self._loop.call_later(
            self.settle_delay, self._on_settled
        )

    def _cancel_settled_sync(self) -> None:
        if self._settle_handle is not None:
            self._settle_handle.cancel()
            self._settle_handle = None

    def _on_settled(self) -> None:
        self._settle_handle = None
        self._spawn_sync("reconnect")

    def _spawn_sync(self, reason: str) -> None:
        if self._loop is None:
            return
        task = self._loop.create_task(self._sync_if_pending(reason), name=f"{reason} sync")
        self._sync_tasks.add(task)
        task.add_done_callback(self._on_sync_task_done)

    def _on_sync_task_done(self, task: asyncio.Task) -> None:
        self._sync_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.logger.error("Background %s failed: %s", task.get_name(), exc, exc_info=exc)

    async def _sync_if_pending(self, reason: str) -> Optional[SyncReport]:
        if not self.monitor.is_online() or self.is_syncing:
            return None
        try:
            if await self.queue.count() == 0:
                return None
            self.logger.debug("Starting %s sync", reason)
            return await self.sync_all()
        except StorageUnavailable as exc:
            self.logger.error("%s sync skipped: %s", reason.capitalize(), exc)
            return None

    async def _periodic_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sync_interval)
            if self.monitor.is_online() and not self.is_syncing:
                self._spawn_sync("periodic")


__all__ = [
    "SyncCoordinator",
    "SyncReport",
    "SyncState",
    "SyncStatus",
    "SubmitOutcome",
    "describe_status",
]
