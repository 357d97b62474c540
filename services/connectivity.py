"""Network reachability signal for the sync coordinator."""
from __future__ import annotations

import asyncio
import logging
from typing import Callable, List, Optional

from core.settings import CONNECTIVITY


logger = logging.getLogger("entrysync.connectivity")

Listener = Callable[[bool], None]


class ConnectivityMonitor:
    """Holds the current online flag and tells subscribers when it flips.

    "Online" only means the local network path is up. It says nothing about
    whether the submission server will accept a request.
    """

    def __init__(self, online: bool = True) -> None:
        self._online = bool(online)
        self._listeners: List[Listener] = []

    def is_online(self) -> bool:
        return self._online

    def subscribe(self, callback: Listener) -> Callable[[], None]:
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def set_online(self, online: bool) -> None:
        online = bool(online)
        if online == self._online:
            return
        self._online = online
        logger.info("Connectivity changed: %s", "online" if online else "offline")
        for listener in list(self._listeners):
            try:
                listener(online)
            except Exception:
                logger.exception("Connectivity listener %r failed", listener)


class ProbeConnectivityMonitor(ConnectivityMonitor):
    """Polls a TCP endpoint and feeds the outcome into :meth:`set_online`."""

    def __init__(
        self,
        host: str = CONNECTIVITY.probe_host,
        port: int = CONNECTIVITY.probe_port,
        *,
        timeout: float = CONNECTIVITY.probe_timeout_sec,
        poll_interval: float = CONNECTIVITY.poll_interval_sec,
        online: bool = False,
    ) -> None:
        super().__init__(online=online)
        self.host = host
        self.port = port
        self.timeout = timeout
        self.poll_interval = poll_interval
        self._task: Optional[asyncio.Task] = None

    async def probe_once(self) -> bool:
        try:
            _, writer = await asyncio.wait_for(
                asyncio.open_connection(self.host, self.port), timeout=self.timeout
            )
        except (OSError, asyncio.TimeoutError) as exc:
            logger.debug("Probe %s:%s failed: %s", self.host, self.port, exc)
            online = False
        else:
            writer.close()
            try:
                await writer.wait_closed()
            except OSError:
                pass
            online = True
        self.set_online(online)
        return online

    async def _poll_loop(self) -> None:
        while True:
            await self.probe_once()
            await asyncio.sleep(self.poll_interval)

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self._poll_loop())

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass


__all__ = ["ConnectivityMonitor", "ProbeConnectivityMonitor", "Listener"]
