"""ActionQueue: a FIFO job runner served by one worker thread.

A job is an executor (side-effecting work: file read/write/copy) followed by
an optional continuation that receives the executor's result, builds the
caller-visible value and emits notifications.  Job N's executor and
continuation both finish before job N+1 starts.

    q = ActionQueue("store")
    fut = q.submit(lambda: write(path, data), lambda _: True)
    fut.result()   # True, or re-raises whatever the job raised

A failing job sets the exception on its own Future; the worker moves on to
the next job.  There is no per-job timeout: bound waits with
``Future.result(timeout=...)``.
"""

from __future__ import annotations

import logging
import queue
import threading
from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from xennon.errors import QueueClosed

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger("xennon.actions")

_STOP = object()


@dataclass
class Job:
    executor: Callable[[], Any]
    continuation: Callable[[Any], Any] | None = None
    future: Future[Any] = field(default_factory=Future)
    seq: int = 0

    def run(self) -> None:
        if not self.future.set_running_or_notify_cancel():
            return
        try:
            result = self.executor()
            if self.continuation is not None:
                result = self.continuation(result)
        except Exception as exc:
            logger.debug("job %d failed: %r", self.seq, exc)
            self.future.set_exception(exc)
        else:
            self.future.set_result(result)


class ActionQueue:
    """Sequential task runner; holds no domain knowledge."""

    def __init__(self, name: str = "xennon") -> None:
        self.name = name
        self._jobs: queue.Queue[Any] = queue.Queue()
        self._lock = threading.Lock()
        self._closed = False
        self._seq = 0
        self._worker = threading.Thread(
            target=self._run, daemon=True, name=f"xennon-queue-{name}",
        )
        self._worker.start()

    def submit(
        self,
        executor: Callable[[], Any],
        continuation: Callable[[Any], Any] | None = None,
    ) -> Future[Any]:
        """Enqueue a job. Returns a Future resolved when the job completes.

        After close(), only jobs already running may submit follow-ups; those
        still run before the worker stops.
        """
        with self._lock:
            if self._closed and not self.in_worker:
                msg = f"action queue {self.name!r} is closed"
                raise QueueClosed(msg)
            self._seq += 1
            job = Job(executor, continuation, seq=self._seq)
            self._jobs.put(job)
        return job.future

    @property
    def pending(self) -> int:
        """Jobs submitted but not yet finished."""
        return self._jobs.unfinished_tasks

    @property
    def in_worker(self) -> bool:
        return threading.current_thread() is self._worker

    def join(self) -> None:
        """Block until every job submitted so far has run."""
        if self.in_worker:
            msg = "join() called from inside a queued job"
            raise RuntimeError(msg)
        self._jobs.join()

    def close(self, *, wait: bool = True) -> None:
        """Stop accepting jobs; run what is queued, then stop the worker."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._jobs.put(_STOP)
        if wait and not self.in_worker:
            self._worker.join()

    @property
    def closed(self) -> bool:
        return self._closed

    def _run(self) -> None:
        while True:
            job = self._jobs.get()
            try:
                if job is _STOP:
                    if self._jobs.empty():
                        return
                    # follow-ups submitted while draining run first
                    self._jobs.put(_STOP)
                    continue
                job.run()
            finally:
                self._jobs.task_done()
