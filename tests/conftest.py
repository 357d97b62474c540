from datetime import datetime, timedelta, timezone
import logging
import os
from pathlib import Path
import sys
import tempfile

import pytest

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# core.settings creates its data dirs at import time; keep them out of $HOME.
_TEST_DATA_HOME = tempfile.mkdtemp(prefix="entrysync-tests-")
os.environ["XDG_DATA_HOME"] = _TEST_DATA_HOME
os.environ["APPDATA"] = _TEST_DATA_HOME

import main  # noqa: E402
from services import sync_coordinator  # noqa: E402
from services.connectivity import ConnectivityMonitor  # noqa: E402
from services.pending_queue import PendingQueue  # noqa: E402
from storage.db import MEMORY, create_db_engine, init_db, make_session_factory  # noqa: E402


class FakeClock:
    """Monotonic UTC clock advancing one second per call."""

    def __init__(self, start=None):
        self.now = start or datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self):
        value = self.now
        self.now = self.now + timedelta(seconds=1)
        return value


class FakeSubmit:
    """Records payloads and fails for the ones ``should_fail`` picks."""

    def __init__(self, should_fail=None, on_call=None):
        self.should_fail = should_fail or (lambda payload: False)
        self.on_call = on_call
        self.calls = []

    async def __call__(self, payload):
        self.calls.append(payload)
        if self.on_call:
            self.on_call(payload)
        if self.should_fail(payload):
            raise RuntimeError(f"server rejected {payload}")
        return {"id": f"server-{len(self.calls)}", **payload}


@pytest.fixture()
def session_factory():
    engine = create_db_engine(MEMORY)
    init_db(engine)
    return make_session_factory(engine)


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def queue(session_factory, clock):
    return PendingQueue(session_factory, clock=clock)


@pytest.fixture()
def monitor():
    return ConnectivityMonitor(online=True)


@pytest.fixture(autouse=True)
def isolated_paths(tmp_path, monkeypatch):
    """Point the sync log and the CLI defaults at ``tmp_path``."""

    monkeypatch.setattr(sync_coordinator, "SYNC_LOG_PATH", tmp_path / "logs" / "sync.log")
    monkeypatch.setattr(main, "DB_PATH", tmp_path / "pending.db")
    monkeypatch.setattr(main, "CONFIG_PATH", tmp_path / "config.json")
    monkeypatch.setattr(main, "LOG_PATH", tmp_path / "entrysync.log")

    logger = logging.getLogger("entrysync.sync")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    yield tmp_path
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
