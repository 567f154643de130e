"""
Sync controller: decides when the queue engine drains.

It tracks the online/offline belief from a network observer and the AUTO/MANUAL
sync mode. Every trigger path ends in :meth:`QueueEngine.drain`, whose own guard
keeps a single drain active. Triggers raised from callbacks (network transitions,
mode switches, startup, producer policy) go through ``dispatch``, which runs them
on a background thread by default.
"""

import logging
import threading
import time
from typing import Callable, List, Optional

from .config import Settings
from .db import SYNC_MODE_KEY, StoreError
from .listeners import Listeners
from .models import AUTO, MANUAL, NetworkState, WorkItem, normalize_mode
from .network import NetworkObserver
from .queue import QueueEngine

logger = logging.getLogger(__name__)

Dispatch = Callable[[Callable[[], object]], object]


def spawn_thread(fn: Callable[[], object]) -> threading.Thread:
    """Run ``fn`` on a daemon thread, logging anything it raises."""
    def run():
        try:
            fn()
        except Exception:
            logger.exception("Background sync failed")

    t = threading.Thread(target=run, name="offlineq-sync", daemon=True)
    t.start()
    return t


def run_inline(fn: Callable[[], object]) -> object:
    return fn()


class SyncController:

    def __init__(
        self,
        engine: QueueEngine,
        observer: NetworkObserver,
        store,
        settings: Optional[Settings] = None,
        dispatch: Dispatch = spawn_thread,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._engine = engine
        self._observer = observer
        self._store = store
        self.settings = settings or engine.settings
        self._dispatch = dispatch
        self._sleep = sleep

        self._online = False
        self._mode = AUTO
        self._state_lock = threading.Lock()
        self._listeners: Listeners[Callable[[bool], None]] = Listeners("connectivity")
        self._unsubscribe_network: Optional[Callable[[], None]] = None
        self._background: List[threading.Thread] = []

    @property
    def is_online(self) -> bool:
        return self._online

    @property
    def mode(self) -> str:
        return self._mode

    def start(self, auto_sync: bool = True) -> None:
        """Load the sync mode, read connectivity and subscribe to transitions.

        With ``auto_sync``, a backlog found while online in AUTO mode is drained
        shortly after startup.
        """
        self._mode = self._load_mode()
        logger.info("Loaded sync mode: %s", self._mode)

        self._online = self._observer.current_state().connected
        logger.info("Initial network state: %s", "ONLINE" if self._online else "OFFLINE")

        self._unsubscribe_network = self._observer.on_change(self._on_network_transition)

        if auto_sync and self._online and self._mode == AUTO:
            self._run(self._startup_sync)

    def close(self, timeout: Optional[float] = None) -> None:
        """Detach from the observer and wait for background syncs to finish.

        A drain in progress stops at the next item boundary, so the attempt in
        flight is recorded before this returns.
        """
        if self._unsubscribe_network:
            self._unsubscribe_network()
            self._unsubscribe_network = None
        self._engine.close()
        with self._state_lock:
            background, self._background = self._background, []
        for t in background:
            t.join(timeout)
            if t.is_alive():
                logger.warning("Background sync %s still running after close", t.name)

    def _run(self, fn: Callable[[], object]) -> None:
        handle = self._dispatch(fn)
        if isinstance(handle, threading.Thread):
            with self._state_lock:
                self._background = [t for t in self._background if t.is_alive()]
                self._background.append(handle)

    def _startup_sync(self) -> None:
        # the engine may still be settling when the controller starts
        self._sleep(self.settings.startup_sync_delay)
        if self._mode == AUTO and self._engine.get_stats().total_pending > 0:
            logger.info("Started online with pending items; triggering auto-sync")
            self.trigger_sync()

    def _load_mode(self) -> str:
        raw = self._store.load(SYNC_MODE_KEY)
        if raw is None:
            return AUTO
        try:
            return normalize_mode(raw)
        except ValueError:
            logger.warning("Ignoring unreadable sync mode %r; defaulting to AUTO", raw)
            return AUTO

    # ---------- Connectivity ----------
    def _on_network_transition(self, state: NetworkState) -> None:
        with self._state_lock:
            was_online = self._online
            self._online = state.connected
        logger.info("Network state changed: %s", "ONLINE" if state.connected else "OFFLINE")

        self._listeners.notify(state.connected)

        if not was_online and state.connected:
            if self._mode == AUTO:
                logger.info("Connection restored; starting auto-sync")
                self._run(self.trigger_sync)
            else:
                logger.info("Connection restored; waiting for manual sync")

    def subscribe_connectivity(self, listener: Callable[[bool], None]) -> Callable[[], None]:
        unsubscribe = self._listeners.add(listener)
        listener(self._online)
        return unsubscribe

    def refresh_network_state(self) -> None:
        self._observer.force_refresh()

    # ---------- Triggers ----------
    def trigger_sync(self) -> bool:
        """Drain now if online. Returns True when this call ran the drain."""
        if not self._online:
            logger.info("Cannot sync - device is offline")
            return False
        return self._engine.drain()

    def set_mode(self, mode: str) -> None:
        mode = normalize_mode(mode)
        self._mode = mode
        try:
            self._store.save(SYNC_MODE_KEY, mode)
        except StoreError:
            logger.exception("Failed to persist sync mode %s", mode)
            raise
        logger.info("Sync mode changed to: %s", mode)

        if mode == AUTO and self._online and self._engine.get_stats().total_pending > 0:
            logger.info("Switched to AUTO mode with a backlog; processing pending queue")
            self._run(self.trigger_sync)

    def clear_all(self) -> None:
        """Wipe the queue and its history. The persisted mode goes too, so fall back to AUTO."""
        self._engine.clear_all()
        self._mode = AUTO
        logger.info("Queue data cleared; sync mode back to %s", AUTO)

    def submit(self, work_class: str, payload: bytes) -> WorkItem:
        """Enqueue, then drain straight away when in AUTO mode and online."""
        item = self._engine.enqueue(work_class, payload)
        if self._mode == AUTO and self._online:
            self._run(self.trigger_sync)
        elif self._mode == MANUAL:
            logger.debug("Item %s queued; manual sync required", item.id)
        return item
