"""Tests for the long-running watcher."""
from __future__ import annotations

import threading
import time

from offlineq import worker
from offlineq.db import COMPLETED_COUNT_KEY, ITEMS_KEY
from offlineq.models import PENDING, SMALL
from offlineq.sync import SyncController, spawn_thread

from conftest import BlockingTransport


def wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


def test_watch_drains_on_reconnect_until_stopped(engine, observer, make_controller):
    controller = make_controller(engine, start=False)
    engine.enqueue(SMALL, b"")

    t = threading.Thread(target=worker.watch, args=(controller, observer))
    t.start()
    try:
        assert wait_for(lambda: len(observer._callbacks) == 1)
        assert engine.get_stats().total_pending == 1
        observer.set_connected(True)
        assert engine.get_stats().total_completed == 1
    finally:
        worker.stop()
        t.join(5)
    assert not t.is_alive()
    # detached once stopped
    assert len(observer._callbacks) == 0


def test_watch_returns_after_duration(engine, observer, make_controller):
    controller = make_controller(engine, start=False)
    started = time.monotonic()
    worker.watch(controller, observer, duration=0.2)
    assert time.monotonic() - started >= 0.2


def test_stop_waits_for_the_attempt_in_flight(make_engine, observer, store, settings):
    transport = BlockingTransport()
    engine = make_engine(transport)
    engine.enqueue(SMALL, b"1")
    engine.enqueue(SMALL, b"2")
    observer.set_connected(True)
    controller = SyncController(
        engine, observer, store, settings, dispatch=spawn_thread, sleep=lambda _: None,
    )

    t = threading.Thread(target=worker.watch, args=(controller, observer))
    t.start()
    try:
        assert transport.entered.wait(5)
        worker.stop()
        assert wait_for(lambda: engine.closed)
        # still joining the background drain
        t.join(0.2)
        assert t.is_alive()
    finally:
        transport.release.set()
        t.join(5)
    assert not t.is_alive()

    assert engine.draining is False
    assert len(transport.calls) == 1
    # the delivered item is recorded; the rest waits for the next run
    assert store.load(COMPLETED_COUNT_KEY) == 1
    assert [d["status"] for d in store.load(ITEMS_KEY)] == [PENDING]
