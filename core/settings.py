"""Centralized application configuration."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional
import os
import sys


def get_default_data_dir(
    app_name: str,
    *,
    platform: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
    home: Optional[Path] = None,
) -> Path:
    """Return an OS-specific user data directory for ``app_name``."""

    platform_id = (platform or sys.platform).lower()
    environ = dict(env or os.environ)
    home_dir = Path(home or Path.home())
    sanitized = app_name.strip() or "app"
    sanitized = sanitized.replace("/", "-").replace("\\", "-")

    if platform_id.startswith("win"):
        base = Path(environ.get("APPDATA") or home_dir / "AppData" / "Roaming")
    elif platform_id == "darwin":
        base = home_dir / "Library" / "Application Support"
    else:
        base = Path(environ.get("XDG_DATA_HOME") or home_dir / ".local" / "share")

    return (base.expanduser() / sanitized)


APP_NAME = "EntrySync"


DATA_DIR = get_default_data_dir(APP_NAME)
LOG_DIR = DATA_DIR / "logs"

for _dir in (DATA_DIR, LOG_DIR):
    _dir.mkdir(parents=True, exist_ok=True)


DB_PATH = DATA_DIR / "pending.db"
CONFIG_PATH = DATA_DIR / "config.json"
SYNC_LOG_PATH = LOG_DIR / "sync.log"


@dataclass(frozen=True)
class SyncSettings:
    max_retry_attempts: int = 5
    sync_interval_sec: float = 30
    settle_delay_sec: float = 2


SYNC = SyncSettings()


@dataclass(frozen=True)
class ConnectivitySettings:
    # Reachability of a public resolver stands in for the browser's online flag.
    probe_host: str = "1.1.1.1"
    probe_port: int = 53
    probe_timeout_sec: float = 3.0
    poll_interval_sec: float = 5


CONNECTIVITY = ConnectivitySettings()


@dataclass(frozen=True)
class SubmitSettings:
    timeout_sec: float = 15.0
    user_agent: str = f"{APP_NAME}/1.0"


SUBMIT = SubmitSettings()


__all__ = [
    "APP_NAME",
    "DATA_DIR",
    "LOG_DIR",
    "DB_PATH",
    "CONFIG_PATH",
    "SYNC_LOG_PATH",
    "SYNC",
    "CONNECTIVITY",
    "SUBMIT",
    "SyncSettings",
    "ConnectivitySettings",
    "SubmitSettings",
    "get_default_data_dir",
]
