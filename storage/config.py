"""Simple JSON-backed configuration store."""
from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from core.settings import CONFIG_PATH


TOKEN_ENV = "ENTRYSYNC_API_TOKEN"
URL_ENV = "ENTRYSYNC_SUBMIT_URL"


@dataclass
class AppConfig:
    """Lightweight configuration persisted to ``config.json``."""

    submit_url: Optional[str] = None
    api_token: Optional[str] = None


def _ensure_parent(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def _load_raw(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return {}
    return data if isinstance(data, dict) else {}


def load_config(
    path: Optional[Path] = None,
    *,
    env: Optional[Mapping[str, str]] = None,
) -> AppConfig:
    """Read ``config.json``; environment variables win over stored values."""

    target = path or CONFIG_PATH
    environ = os.environ if env is None else env
    data = _load_raw(target)
    return AppConfig(
        submit_url=environ.get(URL_ENV) or data.get("submit_url"),
        api_token=environ.get(TOKEN_ENV) or data.get("api_token"),
    )


def save_config(config: AppConfig, path: Optional[Path] = None) -> None:
    target = path or CONFIG_PATH
    _ensure_parent(target)
    payload = json.dumps(asdict(config), ensure_ascii=False, indent=2, sort_keys=True)
    tmp = target.with_suffix(".tmp")
    try:
        tmp.write_text(payload, encoding="utf-8")
        tmp.replace(target)
    finally:
        if tmp.exists():
            try:
                tmp.unlink()
            except OSError:
                pass


def update_config(path: Optional[Path] = None, **changes: Any) -> AppConfig:
    target = path or CONFIG_PATH
    cfg = load_config(target, env={})
    for key, value in changes.items():
        if hasattr(cfg, key):
            setattr(cfg, key, value)
    save_config(cfg, target)
    return cfg


__all__ = ["TOKEN_ENV", "URL_ENV", "AppConfig", "load_config", "save_config", "update_config"]
