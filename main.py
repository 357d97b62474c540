"""Console front-end for the EntrySync offline entry queue."""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Optional, Sequence, TextIO

from core.settings import APP_NAME, CONFIG_PATH, DATA_DIR, DB_PATH
from services.connectivity import ConnectivityMonitor, ProbeConnectivityMonitor
from services.errors import SubmitError, SyncError
from services.http_submit import HttpSubmitter
from services.pending_queue import PendingQueue
from services.sync_coordinator import SubmitFn, SyncCoordinator
from storage.config import load_config, update_config
from storage.db import open_queue


LOG_PATH = DATA_DIR / "entrysync.log"


NO_URL_MESSAGE = "No submit URL configured (run: config --url URL)"
# Commands that submit queued entries and charge attempts.
DRAIN_COMMANDS = {"sync", "retry", "run"}


async def _no_submit_url(payload: Any) -> Any:
    raise SubmitError(NO_URL_MESSAGE)


def _dump(data: Any, out: TextIO) -> None:
    out.write(json.dumps(data, ensure_ascii=False, indent=2) + "\n")


def _parse_payload(raw: str) -> Any:
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise SystemExit(f"Payload is not valid JSON: {exc}") from exc


async def _default_monitor(assume_online: bool) -> ConnectivityMonitor:
    if assume_online:
        return ConnectivityMonitor(online=True)
    monitor = ProbeConnectivityMonitor()
    await monitor.probe_once()
    return monitor


async def run_command(
    args: argparse.Namespace,
    *,
    queue: Optional[PendingQueue] = None,
    monitor: Optional[ConnectivityMonitor] = None,
    submit: Optional[SubmitFn] = None,
    out: TextIO = sys.stdout,
) -> int:
    """Execute one parsed command; collaborators can be injected for tests."""

    if args.command == "config":
        changes = {}
        if args.url is not None:
            changes["submit_url"] = args.url or None
        if args.token is not None:
            changes["api_token"] = args.token or None
        cfg = update_config(args.config, **changes) if changes else load_config(args.config)
        _dump({"submit_url": cfg.submit_url, "api_token": "***" if cfg.api_token else None}, out)
        return 0

    submitter: Optional[HttpSubmitter] = None
    if submit is None:
        cfg = load_config(args.config)
        if cfg.submit_url:
            submitter = HttpSubmitter(cfg.submit_url, token=cfg.api_token)
            submit = submitter
        elif args.command in DRAIN_COMMANDS:
            raise SyncError(NO_URL_MESSAGE)
        else:
            submit = _no_submit_url

    queue = queue or open_queue(args.db)
    monitor = monitor or await _default_monitor(args.assume_online)

    def on_success(record: Any) -> None:
        ident = record.get("id") if isinstance(record, dict) else record
        out.write(f"Entry synced: {ident}\n")

    def on_error(message: str, entry) -> None:
        out.write(f"Failed to sync entry {entry.id}: {message}\n")

    coordinator = SyncCoordinator(
        queue,
        monitor,
        submit,
        on_sync_success=on_success,
        on_sync_error=on_error,
    )
    try:
        return await _dispatch(args, coordinator, monitor, out)
    finally:
        if submitter is not None:
            await submitter.aclose()


async def _dispatch(
    args: argparse.Namespace,
    coordinator: SyncCoordinator,
    monitor: ConnectivityMonitor,
    out: TextIO,
) -> int:
    command = args.command

    if command == "status":
        await coordinator.refresh()
        _dump(coordinator.status(), out)
        return 0

    if command == "list":
        entries = await coordinator.refresh()
        if args.failed:
            entries = coordinator.failed_entries
        _dump([entry.to_dict() for entry in entries], out)
        return 0

    if command == "add":
        entry_id = await coordinator.save_offline(_parse_payload(args.payload))
        out.write(f"Entry saved offline: {entry_id}\n")
        return 0

    if command == "save":
        outcome = await coordinator.submit_or_queue(_parse_payload(args.payload))
        if outcome.queued:
            reason = f" ({outcome.error})" if outcome.error else ""
            out.write(f"Entry saved offline: {outcome.pending_id}{reason}\n")
        else:
            _dump(outcome.record, out)
        return 0

    if command == "sync":
        report = await coordinator.sync_all()
        if report is None:
            out.write("Sync skipped: offline\n")
            return 2
        out.write(
            f"Synced {report.synced}, failed {report.failed}, "
            f"at retry limit {report.skipped}{', aborted' if report.aborted else ''}\n"
        )
        return 0 if not report.failed else 1

    if command == "retry":
        result = await coordinator.retry_entry(args.entry_id)
        if result is None:
            out.write("Retry skipped: offline\n")
            return 2
        return 0 if result else 1

    if command == "remove":
        await coordinator.remove_pending(args.entry_id)
        out.write(f"Removed {args.entry_id}\n")
        return 0

    if command == "clear":
        removed = await coordinator.clear_pending()
        out.write(f"Removed {removed} pending entries\n")
        return 0

    if command == "run":
        if isinstance(monitor, ProbeConnectivityMonitor):
            monitor.start()
        await coordinator.start()
        out.write(f"{APP_NAME} running; {coordinator.status()['summary']}\n")
        try:
            await asyncio.Event().wait()
        finally:
            await coordinator.stop()
            if isinstance(monitor, ProbeConnectivityMonitor):
                await monitor.stop()
        return 0

    raise SystemExit(f"Unknown command: {command}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="entrysync", description=__doc__ or "")
    parser.add_argument("--db", type=Path, default=DB_PATH, help="Queue database (default: %(default)s)")
    parser.add_argument(
        "--config", type=Path, default=CONFIG_PATH, help="Config file (default: %(default)s)"
    )
    parser.add_argument(
        "--log",
        type=Path,
        default=LOG_PATH,
        help="Path to a log file (default: %(default)s)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Also log to stderr")
    parser.add_argument(
        "--assume-online",
        action="store_true",
        help="Skip the connectivity probe and treat the network as up",
    )

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("status", help="Show queue and connectivity status")
    list_cmd = sub.add_parser("list", help="List pending entries, oldest first")
    list_cmd.add_argument("--failed", action="store_true", help="Only entries at the retry limit")
    add_cmd = sub.add_parser("add", help="Queue a JSON payload without submitting it")
    add_cmd.add_argument("payload")
    save_cmd = sub.add_parser("save", help="Submit a JSON payload, queueing it on failure")
    save_cmd.add_argument("payload")
    sub.add_parser("sync", help="Run one sync pass now")
    retry_cmd = sub.add_parser("retry", help="Reset and retry one entry")
    retry_cmd.add_argument("entry_id")
    remove_cmd = sub.add_parser("remove", help="Discard one pending entry")
    remove_cmd.add_argument("entry_id")
    sub.add_parser("clear", help="Discard all pending entries")
    sub.add_parser("run", help="Keep syncing in the background until interrupted")
    config_cmd = sub.add_parser("config", help="Show or change the submit endpoint")
    config_cmd.add_argument("--url", help="Submit endpoint URL (empty string to unset)")
    config_cmd.add_argument("--token", help="Bearer token (empty string to unset)")
    return parser


def _setup_logging(log_path: Path, verbose: bool = False) -> None:
    log_path.parent.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        filename=str(log_path),
        filemode="a",
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    if verbose:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter("[%(levelname)s] %(name)s: %(message)s"))
        logging.getLogger().addHandler(handler)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    _setup_logging(args.log, args.verbose)
    try:
        return asyncio.run(run_command(args))
    except KeyboardInterrupt:
        return 130
    except SyncError as exc:
        logging.exception("Command %s failed: %s", args.command, exc)
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    sys.exit(main())
