"""Notifications announcing completed store operations.

Handlers take a single payload dict.  They run on the thread that emits,
which for a store is its notifier queue, never the worker that runs jobs.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Any

logger = logging.getLogger("xennon.events")

ADDED = "added"
EDITED = "edited"
REPLACED = "replaced"
DELETED = "deleted"
EMPTIED = "emptied"
BACKUPS_STARTED = "backupsStarted"
BACKUPS_STOPPED = "backupsStopped"
BACKUP = "backup"
RESTORE = "restore"

EVENTS = frozenset({
    ADDED, EDITED, REPLACED, DELETED, EMPTIED,
    BACKUPS_STARTED, BACKUPS_STOPPED, BACKUP, RESTORE,
})

Handler = Callable[[dict[str, Any]], Any]


class EventEmitter:
    """Observer registry keyed by event name."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[Handler]] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _check(event: str) -> None:
        if event not in EVENTS:
            msg = f"Unknown event {event!r}; expected one of {sorted(EVENTS)}"
            raise ValueError(msg)

    def on(self, event: str, handler: Handler) -> Handler:
        """Subscribe handler to event. Returns handler (usable as a decorator target)."""
        self._check(event)
        with self._lock:
            self._handlers.setdefault(event, []).append(handler)
        return handler

    def off(self, event: str, handler: Handler) -> bool:
        """Unsubscribe handler. Returns False if it was not subscribed."""
        self._check(event)
        with self._lock:
            handlers = self._handlers.get(event, [])
            if handler not in handlers:
                return False
            handlers.remove(handler)
            return True

    def emit(self, event: str, payload: dict[str, Any] | None = None) -> None:
        self._check(event)
        with self._lock:
            handlers = list(self._handlers.get(event, ()))
        for handler in handlers:
            try:
                handler(dict(payload or {}))
            except Exception:
                logger.exception("listener for %r failed", event)
