"""XennonStore: a JSON-file-backed document store for one process.

    store = XennonStore(name="people", path="/tmp/data", backups={"enabled": False})
    alice = store.add({"name": "Alice", "age": 30}).result()
    store.edit({"name": "Alice"}, {"age": 31})
    store.only({"age": "31"})            # loose match -> [{"name": "Alice", "age": 31, "id": ...}]
    store.sweep(lambda it: it["age"] > 30).result()

Reads run directly against the in-memory collection.  Every mutation,
backup and restore is a job on the store's ActionQueue and returns a
Future; filters are resolved inside the job, so an operation always sees
the effects of every operation submitted before it.

Each mutating job rewrites the whole collection to ``<path>/<name>.json``
(tmp file + rename).  If the write fails, the in-memory collection is rolled
back to its state before the job.

Notifications are delivered in order on a second, notifier queue once the
job that caused them has finished.
"""

from __future__ import annotations

import copy
import logging
import threading
from collections.abc import Mapping
from concurrent.futures import Future
from typing import TYPE_CHECKING, Any

from xennon import events as ev
from xennon.actions import ActionQueue
from xennon.backups import BackupScheduler
from xennon.config import StoreOptions, load_options, resolve_options
from xennon.errors import BackupMissing, InvalidFilter, QueueClosed, StoreCorrupt
from xennon.events import EventEmitter
from xennon.files import copy_file, ensure_path, read_json, write_json
from xennon.filters import FilterOptions, FilterResolver
from xennon.models import ById, Fields, Match, Where, as_filter, item_view, new_item_id

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence
    from pathlib import Path

    from xennon.events import Handler

logger = logging.getLogger("xennon.store")

Change = tuple[Any, list[tuple[str, dict[str, Any]]]]


def _check_collection(data: dict[str, Any], path: Path) -> dict[str, Fields]:
    for item_id, fields in data.items():
        if not isinstance(fields, dict):
            msg = f"{path}: item {item_id!r} is {type(fields).__name__}, expected an object"
            raise StoreCorrupt(msg)
    return data


def _fields(value: Any, what: str = "fields") -> Fields:
    if not isinstance(value, Mapping):
        msg = f"{what} must be a mapping, got {type(value).__name__}"
        raise TypeError(msg)
    return copy.deepcopy(dict(value))


def _chain(src: Future[Any], dst: Future[Any]) -> None:
    """Copy src's outcome onto dst once src is done."""
    if dst.cancelled():
        return
    exc = src.exception()
    if exc is not None:
        dst.set_exception(exc)
    else:
        dst.set_result(src.result())


class XennonStore:
    """Named collection of items persisted as one JSON object."""

    def __init__(self, options: StoreOptions | Mapping[str, Any] | None = None, **overrides: Any) -> None:
        self.options = resolve_options(options, **overrides)
        self.name = self.options.name
        self.path = self.options.store_file
        self.backup_path = self.options.backup_file

        self._lock = threading.RLock()
        self._events = EventEmitter()

        ensure_path(self.path)
        self._items: dict[str, Fields] = _check_collection(read_json(self.path), self.path)

        self._queue = ActionQueue(self.name)
        self._notifier = ActionQueue(f"{self.name}-events")
        self._scheduler = BackupScheduler(
            self.options.backups.interval_seconds,
            lambda: self.backup(scheduled=True),
            name=self.name,
        )
        self._closed = False
        logger.info("opened %s (%d items)", self.path, len(self._items))

        if self.options.backups.enabled:
            self.start_backups()

    @classmethod
    def open(cls, root: Path | str | None = None, **overrides: Any) -> XennonStore:
        """Open the store described by the nearest xennon.toml."""
        return cls(load_options(root), **overrides)

    def __repr__(self) -> str:
        return f"XennonStore(name={self.name!r}, path={str(self.path)!r})"

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Stop scheduled backups, run every queued job, stop the worker."""
        if self._closed:
            return
        self._closed = True
        if self._scheduler.running:
            self.stop_backups()
        self._queue.close(wait=True)
        self._notifier.close(wait=True)
        logger.info("closed %s", self.path)

    def __enter__(self) -> XennonStore:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def flush(self) -> None:
        """Block until every operation submitted so far has completed and notified."""
        self._queue.join()
        if not self._notifier.in_worker:
            self._notifier.join()

    @property
    def pending(self) -> int:
        return self._queue.pending

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def on(self, event: str, handler: Handler) -> Handler:
        """Subscribe handler to event.

        Handlers run one at a time, in event order, on the store's notifier
        thread rather than the queue worker, so a handler may submit store
        operations and wait on their Futures.  Call flush() to wait for
        pending notifications.
        """
        return self._events.on(event, handler)

    def off(self, event: str, handler: Handler) -> bool:
        return self._events.off(event, handler)

    def _notify(self, events: Sequence[tuple[str, dict[str, Any]]]) -> None:
        if not events:
            return
        batch = list(events)

        def emit() -> None:
            for name, payload in batch:
                self._events.emit(name, payload)

        self._notifier.submit(emit)

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def _resolver(self) -> FilterResolver:
        return FilterResolver(self._items)

    def get(self, item_id: str) -> Fields | None:
        """Fields of item_id, or None."""
        with self._lock:
            fields = self._items.get(item_id)
            return None if fields is None else copy.deepcopy(fields)

    def has(self, flt: Any) -> bool | list[dict[str, Any]]:
        """Identifier filters give a bool; mapping/predicate filters the matches."""
        flt = as_filter(flt)
        with self._lock:
            if isinstance(flt, ById):
                return flt.id in self._items
            return copy.deepcopy(self._resolver().resolve_many(flt))

    def only(
        self,
        fields: Mapping[str, Any],
        options: FilterOptions | Mapping[str, Any] | None = None,
        *,
        strict: bool | None = None,
    ) -> list[dict[str, Any]]:
        """Items matching every key/value in fields (loose unless strict)."""
        if not isinstance(fields, Mapping):
            msg = f"only() takes a mapping, got {type(fields).__name__}"
            raise InvalidFilter(msg)
        if isinstance(options, Mapping):
            options = FilterOptions(**options)
        if strict is not None:
            options = FilterOptions(strict=strict)
        with self._lock:
            return copy.deepcopy(self._resolver().resolve_many(Match(dict(fields)), options))

    def filter(self, predicate: Callable[[dict[str, Any]], Any]) -> list[dict[str, Any]]:
        if not callable(predicate):
            msg = f"filter() takes a predicate, got {type(predicate).__name__}"
            raise InvalidFilter(msg)
        with self._lock:
            return copy.deepcopy(self._resolver().resolve_many(Where(predicate)))

    def first(self, predicate: Callable[[dict[str, Any]], Any]) -> dict[str, Any] | None:
        if not callable(predicate):
            msg = f"first() takes a predicate, got {type(predicate).__name__}"
            raise InvalidFilter(msg)
        with self._lock:
            item_id = self._resolver().resolve_one(Where(predicate))
            if item_id is None:
                return None
            return copy.deepcopy(item_view(item_id, self._items[item_id]))

    def all(self) -> list[dict[str, Any]]:
        with self._lock:
            return [copy.deepcopy(item_view(i, f)) for i, f in self._items.items()]

    def object(self) -> dict[str, Fields]:
        """Raw id -> fields mapping."""
        with self._lock:
            return copy.deepcopy(self._items)

    def count(self, flt: Any = None) -> int:
        with self._lock:
            if flt is None:
                return len(self._items)
            return len(self._resolver().resolve_many(flt))

    def __len__(self) -> int:
        return self.count()

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    def _insert(self, fields: Fields) -> str:
        item_id = new_item_id()
        while item_id in self._items:
            item_id = new_item_id()
        self._items[item_id] = fields
        return item_id

    def _commit(self, change: Callable[[], Change]) -> Future[Any]:
        """Queue change(); persist and emit if it reports any events."""

        def execute() -> Change:
            with self._lock:
                before = dict(self._items)
                try:
                    result, events = change()
                    if events:
                        write_json(self.path, self._items)
                except Exception:
                    self._items = before
                    raise
            return result, events

        def finish(outcome: Change) -> Any:
            result, events = outcome
            self._notify(events)
            return result

        return self._queue.submit(execute, finish)

    def add(self, items: Mapping[str, Any] | Sequence[Mapping[str, Any]]) -> Future[Any]:
        """Insert one item (-> id) or a list of items (-> ids, same order)."""
        if isinstance(items, Mapping):
            payloads, single = [_fields(items)], True
        elif isinstance(items, (list, tuple)):
            payloads, single = [_fields(f, "each item") for f in items], False
        else:
            msg = f"add() takes a mapping or a list of mappings, got {type(items).__name__}"
            raise TypeError(msg)

        def change() -> Change:
            ids = [self._insert(f) for f in payloads]
            logger.debug("add %s", ids)
            if single:
                return ids[0], [(ev.ADDED, {"id": ids[0]})]
            return ids, [(ev.ADDED, {"ids": ids})] if ids else []

        return self._commit(change)

    def ensure(self, flt: Any, fields: Mapping[str, Any]) -> Future[Any]:
        """True if flt already matches; otherwise insert fields and return the new id."""
        flt = as_filter(flt)
        payload = _fields(fields)

        def change() -> Change:
            if self._resolver().resolve_one(flt) is not None:
                return True, []
            item_id = self._insert(payload)
            return item_id, [(ev.ADDED, {"id": item_id})]

        return self._commit(change)

    def edit(self, flt: Any, patch: Mapping[str, Any]) -> Future[Any]:
        """Merge patch into the first match. True, or None if nothing matched.

        Every key in patch overwrites, None included; no key is removed.
        """
        flt = as_filter(flt)
        payload = _fields(patch, "patch")

        def change() -> Change:
            target = self._resolver().resolve_one(flt)
            if target is None:
                return None, []
            self._items[target] = {**self._items[target], **payload}
            return True, [(ev.EDITED, {"id": target})]

        return self._commit(change)

    def upsert(self, flt: Any, fields: Mapping[str, Any]) -> Future[Any]:
        """Edit the first match, or insert a new item from the truthy fields only."""
        flt = as_filter(flt)
        payload = _fields(fields)

        def change() -> Change:
            target = self._resolver().resolve_one(flt)
            if target is not None:
                self._items[target] = {**self._items[target], **payload}
                return True, [(ev.EDITED, {"id": target})]
            item_id = self._insert({k: v for k, v in payload.items() if v})
            return True, [(ev.ADDED, {"id": item_id})]

        return self._commit(change)

    def replace(self, flt: Any, fields: Mapping[str, Any]) -> Future[Any]:
        """Replace the first match's fields wholesale. True, or None if nothing matched."""
        flt = as_filter(flt)
        payload = _fields(fields)

        def change() -> Change:
            target = self._resolver().resolve_one(flt)
            if target is None:
                return None, []
            self._items[target] = payload
            return True, [(ev.REPLACED, {"id": target})]

        return self._commit(change)

    def sweep(self, flt: Any) -> Future[int]:
        """Delete every match; returns how many were deleted."""
        flt = as_filter(flt)

        def change() -> Change:
            doomed = [view["id"] for view in self._resolver().resolve_many(flt)]
            for item_id in doomed:
                del self._items[item_id]
            logger.debug("sweep removed %d items", len(doomed))
            return len(doomed), [(ev.DELETED, {"id": i}) for i in doomed]

        return self._commit(change)

    def delete(self, flt: Any) -> Future[Any]:
        """Delete the first match. True, or None if nothing matched."""
        flt = as_filter(flt)

        def change() -> Change:
            target = self._resolver().resolve_one(flt)
            if target is None:
                return None, []
            del self._items[target]
            return True, [(ev.DELETED, {"id": target})]

        return self._commit(change)

    def empty(self) -> Future[bool]:
        """Remove every item."""

        def change() -> Change:
            self._items.clear()
            return True, [(ev.EMPTIED, {})]

        return self._commit(change)

    # ------------------------------------------------------------------
    # Backups
    # ------------------------------------------------------------------

    @property
    def backups_running(self) -> bool:
        return self._scheduler.running

    def start_backups(self) -> None:
        """Start the recurring backup timer. Raises AlreadyRunning."""
        if self._closed:
            msg = f"store {self.name!r} is closed"
            raise QueueClosed(msg)
        self._scheduler.start()
        self._notify([(ev.BACKUPS_STARTED, {})])

    def stop_backups(self) -> None:
        """Stop the recurring backup timer. Raises NotRunning."""
        self._scheduler.stop()
        self._notify([(ev.BACKUPS_STOPPED, {})])

    def backup(self, *, scheduled: bool = False) -> Future[Path]:
        """Snapshot the store file to ``<name>--backup.json``."""

        def execute() -> Path:
            if not self.path.exists():
                with self._lock:
                    write_json(self.path, self._items)
            copy_file(self.path, self.backup_path)
            return self.backup_path

        def finish(path: Path) -> Path:
            logger.info("%s backup written to %s", "scheduled" if scheduled else "manual", path)
            self._notify([(ev.BACKUP, {"path": str(path), "scheduled": scheduled})])
            return path

        return self._queue.submit(execute, finish)

    def restore(self) -> Future[bool]:
        """Replace the collection with the backup's contents.

        Two jobs: read the backup, then write it back as the store file.  A
        write queued between the two is overwritten by the restore.
        """
        done: Future[bool] = Future()

        def read_backup() -> dict[str, Fields]:
            if not self.backup_path.exists():
                msg = f"No backup found at {self.backup_path}"
                raise BackupMissing(msg)
            ensure_path(self.path)
            return _check_collection(read_json(self.backup_path), self.backup_path)

        def write_restored(data: dict[str, Fields]) -> Future[bool]:
            def execute() -> None:
                with self._lock:
                    write_json(self.path, data)
                    self._items = data

            def finish(_: None) -> bool:
                logger.info("restored %s from %s (%d items)", self.path, self.backup_path, len(data))
                self._notify([(ev.RESTORE, {})])
                return True

            return self._queue.submit(execute, finish)

        def on_read(read: Future[Future[bool]]) -> None:
            if read.exception() is not None:
                _chain(read, done)
            else:
                read.result().add_done_callback(lambda written: _chain(written, done))

        self._queue.submit(read_backup, write_restored).add_done_callback(on_read)
        return done
