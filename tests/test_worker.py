"""Tests for the background worker primitives."""
import threading
import time

import pytest

from wavscope.coordinator.worker import (
    CancelToken,
    ProgressCounter,
    ReadWriteLock,
    chunk_bounds,
    run_indexed,
)
from wavscope.errors import Cancelled


# -----------------------------------------------------------------------------
# CancelToken
# -----------------------------------------------------------------------------

class TestCancelToken:

    def test_starts_live(self):
        token = CancelToken()
        assert not token.cancelled
        token.raise_if_cancelled()

    def test_cancel_is_sticky(self):
        token = CancelToken()
        token.cancel()
        token.cancel()
        assert token.cancelled
        with pytest.raises(Cancelled):
            token.raise_if_cancelled()

    def test_wait_returns_on_cancel(self):
        token = CancelToken()
        threading.Timer(0.05, token.cancel).start()
        assert token.wait(timeout=5.0)

    def test_wait_times_out(self):
        assert not CancelToken().wait(timeout=0.01)


# -----------------------------------------------------------------------------
# run_indexed
# -----------------------------------------------------------------------------

class TestRunIndexed:

    def test_runs_every_index_once(self):
        seen = []
        lock = threading.Lock()

        def task(i):
            with lock:
                seen.append(i)

        run_indexed(task, 100, 4, CancelToken())
        assert sorted(seen) == list(range(100))

    def test_zero_count_is_noop(self):
        run_indexed(lambda i: pytest.fail("should not run"), 0, 4, CancelToken())

    def test_disjoint_slot_writes(self):
        out = [None] * 50
        run_indexed(lambda i: out.__setitem__(i, i * i), 50, 8, CancelToken())
        assert out == [i * i for i in range(50)]

    def test_first_failure_propagates(self):
        def task(i):
            if i == 3:
                raise ValueError("boom")

        with pytest.raises(ValueError, match="boom"):
            run_indexed(task, 10, 2, CancelToken())

    def test_failure_stops_remaining_work(self):
        ran = []

        def task(i):
            ran.append(i)
            raise RuntimeError("stop")

        with pytest.raises(RuntimeError):
            run_indexed(task, 1000, 1, CancelToken())
        assert len(ran) == 1

    def test_cancel_raises_cancelled(self):
        token = CancelToken()
        ran = []

        def task(i):
            ran.append(i)
            if i == 2:
                token.cancel()

        with pytest.raises(Cancelled):
            run_indexed(task, 100, 1, token)
        assert len(ran) < 100

    def test_pre_cancelled_token_runs_nothing(self):
        token = CancelToken()
        token.cancel()
        ran = []
        with pytest.raises(Cancelled):
            run_indexed(ran.append, 10, 2, token)
        assert ran == []

    def test_real_error_wins_over_cancelled(self):
        token = CancelToken()

        def task(i):
            token.cancel()
            raise KeyError("real")

        with pytest.raises(KeyError):
            run_indexed(task, 5, 1, token)

    def test_uses_named_threads(self):
        names = set()
        run_indexed(lambda i: names.add(threading.current_thread().name), 8, 2, CancelToken(), "probe")
        assert all(name.startswith("probe") for name in names)


# -----------------------------------------------------------------------------
# chunk_bounds
# -----------------------------------------------------------------------------

class TestChunkBounds:

    def test_covers_range_contiguously(self):
        bounds = chunk_bounds(1000, 7)
        assert bounds[0][0] == 0
        assert bounds[-1][1] == 1000
        for (_, end), (start, _) in zip(bounds, bounds[1:]):
            assert end == start

    def test_alignment(self):
        bounds = chunk_bounds(1003, 4, align=4)
        assert all(start % 4 == 0 and end % 4 == 0 for start, end in bounds)
        # trailing partial unit is dropped
        assert bounds[-1][1] == 1000

    def test_more_chunks_than_units(self):
        assert chunk_bounds(3, 10) == [(0, 1), (1, 2), (2, 3)]

    def test_empty_and_short(self):
        assert chunk_bounds(0, 4) == []
        assert chunk_bounds(3, 2, align=4) == []


# -----------------------------------------------------------------------------
# ProgressCounter
# -----------------------------------------------------------------------------

class TestProgressCounter:

    def test_throttles_to_half_percent(self):
        reports = []
        counter = ProgressCounter(10000, reports.append)
        for _ in range(10000):
            counter.advance()
        assert len(reports) == 200
        assert reports[-1] == 1.0

    def test_always_reports_completion(self):
        reports = []
        counter = ProgressCounter(3, reports.append, step=100)
        counter.advance(3)
        assert reports == [1.0]

    def test_reaches_completion_across_threads(self):
        reports = []
        lock = threading.Lock()

        def record(fraction):
            with lock:
                reports.append(fraction)

        counter = ProgressCounter(4000, record)
        run_indexed(lambda i: counter.advance(), 4000, 4, CancelToken())
        assert max(reports) == 1.0
        assert all(0.0 < r <= 1.0 for r in reports)

    def test_no_callback(self):
        ProgressCounter(10, None).advance(10)


# -----------------------------------------------------------------------------
# ReadWriteLock
# -----------------------------------------------------------------------------

class TestReadWriteLock:

    def test_readers_share(self):
        lock = ReadWriteLock()
        inside = threading.Barrier(2)

        def reader():
            with lock.read():
                inside.wait(timeout=5)

        threads = [threading.Thread(target=reader) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=5)
        assert not any(t.is_alive() for t in threads)

    def test_writer_excludes_readers(self):
        lock = ReadWriteLock()
        events = []
        writer_in = threading.Event()

        def writer():
            with lock.write():
                writer_in.set()
                time.sleep(0.05)
                events.append("write-done")

        def reader():
            writer_in.wait(timeout=5)
            with lock.read():
                events.append("read")

        tw = threading.Thread(target=writer)
        tr = threading.Thread(target=reader)
        tw.start()
        tr.start()
        tw.join(timeout=5)
        tr.join(timeout=5)
        assert events == ["write-done", "read"]

    def test_lock_released_on_exception(self):
        lock = ReadWriteLock()
        with pytest.raises(ValueError):
            with lock.write():
                raise ValueError()
        with lock.read():
            pass
        with lock.write():
            pass
