"""Tests for the background worker handle and the event channel."""

import threading
import time
from typing import List

from hp_counter_lib.events import EventChannel
from hp_counter_lib.models import CounterEvent
from hp_counter_lib.worker import LoopWorker


def test_worker_runs_target_until_stopped() -> None:
    """Test cooperative stop of a polling target."""
    worker = LoopWorker(name="TestWorker")
    iterations: List[int] = []

    def target() -> None:
        while not worker.stop_requested:
            iterations.append(1)
            time.sleep(0.01)

    assert worker.start(target)
    time.sleep(0.1)
    assert worker.is_running()

    worker.request_stop()
    assert worker.join(timeout=1.0)
    assert not worker.is_running()
    assert len(iterations) > 0


def test_worker_single_thread() -> None:
    """Test that a second start is refused while the thread lives."""
    worker = LoopWorker()
    gate = threading.Event()

    assert worker.start(gate.wait)
    assert worker.start(gate.wait) is False

    gate.set()
    assert worker.join(timeout=1.0)
    assert worker.start(lambda: None)
    assert worker.join(timeout=1.0)


def test_worker_start_clears_stop_flag() -> None:
    """Test that a stale stop request does not end a new worker."""
    worker = LoopWorker()
    worker.request_stop()
    seen: List[bool] = []

    worker.start(lambda: seen.append(worker.stop_requested))
    worker.join(timeout=1.0)

    assert seen == [False]


def test_join_without_thread() -> None:
    """Test that joining an idle worker returns at once."""
    assert LoopWorker().join(timeout=0.1)


def test_join_from_worker_thread() -> None:
    """Test that the worker cannot join itself."""
    worker = LoopWorker()
    results: List[bool] = []

    worker.start(lambda: results.append(worker.join(timeout=0.1)))
    worker.join(timeout=1.0)

    assert results == [False]


def test_join_timeout_while_blocked() -> None:
    """Test that join reports a worker that is still running."""
    worker = LoopWorker()
    gate = threading.Event()
    worker.start(gate.wait)

    assert worker.join(timeout=0.05) is False

    gate.set()
    assert worker.join(timeout=1.0)


def test_emit_in_subscription_order() -> None:
    """Test that handlers receive the sender in registration order."""
    channel = EventChannel()
    calls: List[tuple] = []

    channel.subscribe(CounterEvent.UPDATED, lambda s: calls.append(("a", s)))
    channel.subscribe(CounterEvent.UPDATED, lambda s: calls.append(("b", s)))
    channel.subscribe(CounterEvent.READY, lambda s: calls.append(("ready", s)))

    channel.emit(CounterEvent.UPDATED, "sender")

    assert calls == [("a", "sender"), ("b", "sender")]


def test_failing_handler_isolated(caplog) -> None:
    """Test that a raising handler is logged and others still run."""
    channel = EventChannel()
    calls: List[str] = []

    def broken(sender) -> None:
        raise ValueError("boom")

    channel.subscribe(CounterEvent.TIMEOUT, broken)
    channel.subscribe(CounterEvent.TIMEOUT, lambda s: calls.append("ok"))

    channel.emit(CounterEvent.TIMEOUT, None)

    assert calls == ["ok"]
    assert "boom" in caplog.text


def test_unsubscribe_and_clear() -> None:
    """Test handler removal."""
    channel = EventChannel()
    calls: List[str] = []

    def handler(sender) -> None:
        calls.append("x")

    channel.subscribe(CounterEvent.READY, handler)
    channel.unsubscribe(CounterEvent.READY, handler)
    channel.unsubscribe(CounterEvent.READY, handler)
    channel.emit(CounterEvent.READY, None)
    assert calls == []

    channel.subscribe(CounterEvent.READY, handler)
    channel.clear()
    channel.emit(CounterEvent.READY, None)
    assert calls == []


def test_handler_may_subscribe_during_emit() -> None:
    """Test that changing subscriptions inside a handler does not deadlock."""
    channel = EventChannel()
    calls: List[str] = []

    def late(sender) -> None:
        calls.append("late")

    def first(sender) -> None:
        calls.append("first")
        channel.subscribe(CounterEvent.UPDATED, late)

    channel.subscribe(CounterEvent.UPDATED, first)

    channel.emit(CounterEvent.UPDATED, None)
    assert calls == ["first"]

    channel.emit(CounterEvent.UPDATED, None)
    assert calls == ["first", "first", "late"]


def test_worker_restart_from_own_thread() -> None:
    """Test that a finishing target may start its successor."""
    worker = LoopWorker()
    results: List[bool] = []
    second = threading.Event()

    def first() -> None:
        results.append(worker.start(second.set))

    assert worker.start(first)
    assert second.wait(timeout=1.0)
    assert results == [True]
    assert worker.join(timeout=1.0)
