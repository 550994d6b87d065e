"""
Background Worker Primitives

Building blocks shared by the analysis stages and the coordinator:

- CancelToken: revocable cancellation flag, replaced after every cancel
- run_indexed: bounded worker pool over independent task indices
- ProgressCounter: thread-safe, throttled progress aggregation
- ReadWriteLock: shared/exclusive lock around coordinator state
"""

from __future__ import annotations

import logging
import queue
import threading
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from typing import Callable, Iterator, List, Optional

from ..errors import Cancelled

logger = logging.getLogger(__name__)

# Type alias for stage progress callbacks (fraction of the stage's own work)
ProgressCallback = Callable[[float], None]


class CancelToken:
    """
    Cancellation signal observed by every worker of a run.

    A token only ever goes from live to cancelled. The coordinator
    installs a fresh token after cancelling, so work started later
    never sees a stale cancellation.
    """

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        """Raise Cancelled if the token has been cancelled."""
        if self._event.is_set():
            raise Cancelled()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until cancelled or timeout; returns True if cancelled."""
        return self._event.wait(timeout)


def run_indexed(
    task: Callable[[int], None],
    count: int,
    workers: int,
    cancel: CancelToken,
    thread_name_prefix: str = "wavscope-worker",
) -> None:
    """
    Run ``task(i)`` for every i in ``range(count)`` on a fixed pool.

    Workers pull indices from a shared queue until it is empty, the
    token is cancelled, or another worker fails. Tasks must write only
    to their own output slot; the single join barrier is this function
    returning.

    Raises:
        Cancelled: If the token was cancelled before all tasks ran
        Exception: The first exception raised by a task
    """
    if count <= 0:
        return

    tasks: "queue.SimpleQueue[int]" = queue.SimpleQueue()
    for index in range(count):
        tasks.put(index)

    failed = threading.Event()

    def drain() -> None:
        while not (cancel.cancelled or failed.is_set()):
            try:
                index = tasks.get_nowait()
            except queue.Empty:
                return
            try:
                task(index)
            except BaseException:
                failed.set()
                raise

    pool_size = max(1, min(workers, count))
    with ThreadPoolExecutor(max_workers=pool_size, thread_name_prefix=thread_name_prefix) as pool:
        futures = [pool.submit(drain) for _ in range(pool_size)]

    errors: List[BaseException] = [f.exception() for f in futures if f.exception() is not None]
    failures = [e for e in errors if not isinstance(e, Cancelled)]
    if failures:
        raise failures[0]
    if errors:
        raise errors[0]
    cancel.raise_if_cancelled()


def chunk_bounds(total: int, chunks: int, align: int = 1) -> List[tuple]:
    """
    Split ``range(total)`` into at most ``chunks`` contiguous (start, end)
    pairs whose boundaries fall on multiples of ``align``.
    """
    if total <= 0:
        return []
    units = total // align
    chunks = max(1, min(chunks, units or 1))
    per_chunk = max(1, units // chunks)
    bounds = []
    for i in range(chunks):
        start = i * per_chunk * align
        end = (i + 1) * per_chunk * align if i < chunks - 1 else units * align
        if end > start:
            bounds.append((start, end))
    return bounds


class ProgressCounter:
    """
    Aggregates progress from concurrent workers.

    Calls ``callback(fraction)`` once at least ``step`` units have been
    completed since the previous report, and always on completion.
    """

    def __init__(
        self,
        total: int,
        callback: Optional[ProgressCallback],
        step: Optional[int] = None,
    ):
        self._total = max(1, total)
        self._callback = callback
        self._step = step if step is not None else max(1, self._total // 200)
        self._done = 0
        self._last_reported = 0
        self._lock = threading.Lock()

    def advance(self, amount: int = 1) -> None:
        if self._callback is None:
            return
        with self._lock:
            self._done += amount
            if self._done - self._last_reported < self._step and self._done < self._total:
                return
            self._last_reported = self._done
            fraction = min(1.0, self._done / self._total)
        self._callback(fraction)


class ReadWriteLock:
    """
    Writer-preferring reader/writer lock.

    Readers share the lock; a writer holds it exclusively. Waiting
    writers block new readers so status publication is never starved
    by pollers. Not reentrant.
    """

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            while self._writer or self._readers:
                self._cond.wait()
            self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()
