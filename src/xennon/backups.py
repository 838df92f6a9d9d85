"""Recurring backup timer.

BackupScheduler is idle until start() hands out a ScheduledBackups handle:
a daemon thread that calls ``trigger()`` every interval until stopped.
stop() cancels the handle; a backup job already queued by an earlier tick
still runs.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from xennon.errors import AlreadyRunning, NotRunning

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger("xennon.backups")

IDLE = "idle"
RUNNING = "running"


class ScheduledBackups:
    """Cancellable handle for one run of the backup timer."""

    def __init__(self, interval: float, trigger: Callable[[], object], name: str) -> None:
        self.interval = interval
        self._trigger = trigger
        self._stop = threading.Event()
        self._thread = threading.Thread(
            target=self._loop, daemon=True, name=f"xennon-backups-{name}",
        )

    def start(self) -> None:
        self._thread.start()

    def cancel(self) -> None:
        self._stop.set()
        if threading.current_thread() is not self._thread:
            self._thread.join()

    @property
    def cancelled(self) -> bool:
        return self._stop.is_set()

    def _loop(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                self._trigger()
            except Exception:
                logger.exception("scheduled backup trigger failed")


class BackupScheduler:
    """Idle/running state machine around a ScheduledBackups handle."""

    def __init__(self, interval: float, trigger: Callable[[], object], name: str = "store") -> None:
        self.interval = interval
        self.name = name
        self._trigger = trigger
        self._handle: ScheduledBackups | None = None
        self._lock = threading.Lock()

    @property
    def state(self) -> str:
        return RUNNING if self._handle is not None else IDLE

    @property
    def running(self) -> bool:
        return self._handle is not None

    def start(self) -> ScheduledBackups:
        with self._lock:
            if self._handle is not None:
                msg = f"Scheduled backups for {self.name!r} are already running"
                raise AlreadyRunning(msg)
            handle = ScheduledBackups(self.interval, self._trigger, self.name)
            handle.start()
            self._handle = handle
        logger.info("scheduled backups started for %s every %.1fs", self.name, self.interval)
        return handle

    def stop(self) -> None:
        with self._lock:
            handle, self._handle = self._handle, None
        if handle is None:
            msg = f"Scheduled backups for {self.name!r} are not running"
            raise NotRunning(msg)
        handle.cancel()
        logger.info("scheduled backups stopped for %s", self.name)
