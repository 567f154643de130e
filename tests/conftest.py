"""Shared pytest fixtures."""
from __future__ import annotations

import itertools
import logging
import threading
from pathlib import Path

import pytest

from offlineq.config import Settings
from offlineq.db import SQLiteStore, StoreError
from offlineq.network import ManualNetworkObserver
from offlineq.queue import QueueEngine
from offlineq.sync import SyncController, run_inline
from offlineq.transport import Transport, TransportError


class ScriptedTransport(Transport):
    """Transport whose outcomes are queued by the test; succeeds once the script runs out.

    ``on_send`` hooks run inside ``send`` so a test can act mid-delivery.
    """

    def __init__(self):
        self.calls: list[tuple[str, bytes]] = []
        self.outcomes: list[str | None] = []
        self.on_send = []
        self._ts = itertools.count(10_000)

    def fail_next(self, times: int = 1, message: str = "Network request failed"):
        self.outcomes.extend([message] * times)

    def send(self, work_class: str, payload: bytes) -> int:
        self.calls.append((work_class, payload))
        for hook in list(self.on_send):
            hook(work_class, payload)
        if self.outcomes:
            error = self.outcomes.pop(0)
            if error is not None:
                raise TransportError(error)
        return next(self._ts)


class BlockingTransport(ScriptedTransport):
    """Holds the first delivery until ``release`` is set."""

    def __init__(self):
        super().__init__()
        self.entered = threading.Event()
        self.release = threading.Event()

    def send(self, work_class: str, payload: bytes) -> int:
        self.entered.set()
        assert self.release.wait(5), "transport was never released"
        return super().send(work_class, payload)


class FlakyStore:
    """Wraps a real store; saves raise StoreError while ``failing`` is set."""

    def __init__(self, inner: SQLiteStore):
        self.inner = inner
        self.failing = False

    def save(self, key, value):
        if self.failing:
            raise StoreError("disk unavailable")
        self.inner.save(key, value)

    def load(self, key):
        return self.inner.load(key)

    def clear_all(self):
        if self.failing:
            raise StoreError("disk unavailable")
        self.inner.clear_all()


@pytest.fixture(autouse=True)
def restore_logging():
    """CLI tests reconfigure the root logger; put it back afterwards."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def db_path(tmp_path: Path) -> str:
    return str(tmp_path / "queue.db")


@pytest.fixture
def store(db_path: str):
    s = SQLiteStore.open(db_path)
    yield s
    s.close()


@pytest.fixture
def settings() -> Settings:
    return Settings(pacing=0, startup_sync_delay=0.1)


@pytest.fixture
def sleeps() -> list:
    return []


@pytest.fixture
def clock():
    ticks = itertools.count(1_000)
    return lambda: next(ticks)


@pytest.fixture
def transport() -> ScriptedTransport:
    return ScriptedTransport()


@pytest.fixture
def make_engine(store, settings, sleeps, clock):
    def factory(transport=None, store_=None, settings_=None):
        engine = QueueEngine(
            store_ or store,
            transport or ScriptedTransport(),
            settings_ or settings,
            sleep=sleeps.append,
            clock=clock,
        )
        engine.initialize()
        return engine
    return factory


@pytest.fixture
def engine(make_engine, transport) -> QueueEngine:
    return make_engine(transport)


@pytest.fixture
def observer() -> ManualNetworkObserver:
    return ManualNetworkObserver(connected=False)


@pytest.fixture
def make_controller(store, settings, sleeps, observer):
    def factory(engine, auto_sync=True, start=True):
        controller = SyncController(
            engine, observer, store, settings, dispatch=run_inline, sleep=sleeps.append,
        )
        if start:
            controller.start(auto_sync=auto_sync)
        return controller
    return factory


@pytest.fixture
def controller(make_controller, engine) -> SyncController:
    c = make_controller(engine)
    yield c
    c.close()
