"""
Network observers report connectivity and deliver every transition to subscribers.

``ManualNetworkObserver`` is driven by the caller (CLI overrides, tests).
``ProbeNetworkObserver`` probes a TCP endpoint from a daemon thread and
reports a transition whenever reachability flips.
"""

import logging
import socket
import threading
from abc import ABC, abstractmethod
from typing import Callable, Optional

from .config import Settings
from .listeners import Listeners
from .models import NetworkState

logger = logging.getLogger(__name__)

StateCallback = Callable[[NetworkState], None]


class NetworkObserver(ABC):

    def __init__(self):
        self._callbacks: Listeners[StateCallback] = Listeners("network")

    @abstractmethod
    def current_state(self) -> NetworkState:
        ...

    @abstractmethod
    def force_refresh(self) -> None:
        """Re-check connectivity now and deliver the result to every callback."""
        ...

    def on_change(self, callback: StateCallback) -> Callable[[], None]:
        return self._callbacks.add(callback)

    def start(self) -> None:
        pass

    def stop(self) -> None:
        pass


class ManualNetworkObserver(NetworkObserver):

    def __init__(self, connected: bool = False):
        super().__init__()
        self._state = NetworkState(connected=connected)

    def current_state(self) -> NetworkState:
        return self._state

    def set_connected(self, connected: bool) -> None:
        if connected == self._state.connected:
            return
        self._state = NetworkState(connected=connected)
        self._callbacks.notify(self._state)

    def force_refresh(self) -> None:
        self._callbacks.notify(self._state)


class ProbeNetworkObserver(NetworkObserver):
    """Connectivity from periodic TCP connects to ``host:port``."""

    def __init__(
        self,
        host: str = "1.1.1.1",
        port: int = 53,
        timeout: float = 3.0,
        interval: float = 5.0,
    ):
        super().__init__()
        self._host = host
        self._port = port
        self._timeout = timeout
        self._interval = interval
        self._state: Optional[NetworkState] = None
        self._state_lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "ProbeNetworkObserver":
        return cls(
            host=settings.probe_host,
            port=settings.probe_port,
            timeout=settings.probe_timeout,
            interval=settings.probe_interval,
        )

    def probe(self) -> bool:
        try:
            with socket.create_connection((self._host, self._port), timeout=self._timeout):
                return True
        except OSError as e:
            logger.debug("Probe %s:%s failed: %s", self._host, self._port, e)
            return False

    def current_state(self) -> NetworkState:
        with self._state_lock:
            state = self._state
        if state is None:
            state = self._record(self.probe())
        return state

    def force_refresh(self) -> None:
        self._callbacks.notify(self._record(self.probe()))

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="network-probe", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout=self._timeout + 1)
            self._thread = None

    def _record(self, connected: bool) -> NetworkState:
        state = NetworkState(connected=connected, detail={"host": self._host, "port": self._port})
        with self._state_lock:
            self._state = state
        return state

    def _run(self) -> None:
        while not self._stop.is_set():
            with self._state_lock:
                previous = self._state
            state = self._record(self.probe())
            if previous is None or previous.connected != state.connected:
                logger.info("Probe reports %s", "ONLINE" if state.connected else "OFFLINE")
                self._callbacks.notify(state)
            self._stop.wait(self._interval)
