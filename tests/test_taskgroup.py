"""
Tests for fetch contexts and the bounded task group.
"""

import threading

import pytest

from clsexporter.context import FetchContext
from clsexporter.errors import FetchCancelledError, FetchError
from clsexporter.fetch.taskgroup import TaskGroup


class TestFetchContext:
    """Test cases for deadline and cancellation propagation."""

    def test_deadline_expires(self, clock):
        """Test that check raises once the deadline passes."""
        ctx = FetchContext(timeout=5, clock=clock)
        ctx.check()

        clock.advance(5)

        assert ctx.expired()
        with pytest.raises(FetchCancelledError, match="deadline exceeded"):
            ctx.check()

    def test_no_deadline(self):
        """Test that a context without timeout never expires."""
        ctx = FetchContext()

        assert ctx.remaining() is None
        assert not ctx.expired()

    def test_child_inherits_parent_cancel(self):
        """Test that cancelling the parent cancels its children."""
        parent = FetchContext()
        child = parent.child()

        parent.cancel("shutting down")

        assert child.cancelled
        with pytest.raises(FetchCancelledError, match="shutting down"):
            child.check()

    def test_child_cancel_does_not_reach_parent(self):
        """Test that a cancelled child leaves its parent untouched."""
        parent = FetchContext()
        child = parent.child()

        child.cancel()

        assert not parent.cancelled

    def test_child_keeps_earlier_parent_deadline(self, clock):
        """Test that the child deadline never exceeds the parent's."""
        parent = FetchContext(timeout=2, clock=clock)
        child = FetchContext(timeout=10, parent=parent, clock=clock)

        assert child.deadline == parent.deadline


class TestTaskGroup:
    """Test cases for bounded fan-out."""

    def test_all_units_run_with_group_context(self):
        """Test that every unit runs and receives the group's child context."""
        seen = []
        lock = threading.Lock()

        def unit(ctx, value):
            with lock:
                seen.append((ctx, value))

        parent = FetchContext()
        with TaskGroup(parent, limit=3) as group:
            for value in range(10):
                group.submit(unit, value)

        assert sorted(value for _, value in seen) == list(range(10))
        assert all(ctx is group.ctx for ctx, _ in seen)

    def test_concurrency_bounded_by_limit(self):
        """Test that no more than ``limit`` units run at once."""
        limit = 3
        barrier = threading.Barrier(limit, timeout=5)
        lock = threading.Lock()
        state = {"running": 0, "peak": 0}

        def unit(ctx):
            with lock:
                state["running"] += 1
                state["peak"] = max(state["peak"], state["running"])
            # each wave of ``limit`` units meets here before any finishes
            barrier.wait()
            with lock:
                state["running"] -= 1

        with TaskGroup(FetchContext(), limit=limit) as group:
            for _ in range(limit * 3):
                group.submit(unit)

        assert state["peak"] == limit

    def test_first_error_raised_and_rest_skipped(self):
        """Test that the first failure cancels units not yet started."""
        ran = []
        error = FetchError("first")

        def failing(ctx):
            raise error

        def later(ctx):
            ran.append(1)

        with pytest.raises(FetchError) as exc_info:
            with TaskGroup(FetchContext(), limit=1) as group:
                group.submit(failing)
                for _ in range(5):
                    group.submit(later)

        assert exc_info.value is error
        assert ran == []

    def test_failure_does_not_cancel_parent(self):
        """Test that the parent context survives a failed group."""
        parent = FetchContext()

        def failing(ctx):
            raise FetchError("boom")

        with pytest.raises(FetchError):
            with TaskGroup(parent, limit=2) as group:
                group.submit(failing)

        assert not parent.cancelled

    def test_cancelled_parent_raises(self):
        """Test that units skipped by a cancelled parent surface the cancellation."""
        parent = FetchContext()
        parent.cancel("caller gone")
        ran = []

        with pytest.raises(FetchCancelledError, match="caller gone"):
            with TaskGroup(parent, limit=2) as group:
                group.submit(lambda ctx: ran.append(1))

        assert ran == []

    def test_invalid_limit(self):
        """Test that a non-positive limit is rejected."""
        with pytest.raises(ValueError):
            TaskGroup(FetchContext(), limit=0)

    def test_submit_after_wait_rejected(self):
        """Test that a waited group accepts no more work."""
        group = TaskGroup(FetchContext(), limit=1)
        group.wait()

        with pytest.raises(RuntimeError):
            group.submit(lambda ctx: None)
