import logging
import signal
import threading
from typing import Optional

from .network import NetworkObserver
from .sync import SyncController

logger = logging.getLogger(__name__)

_stop = threading.Event()


def setup_signal_handlers():
    """Route SIGINT/SIGTERM to the stop event. Returns the handlers they replaced."""
    def _handler(signum, frame):
        logger.info("Received signal %s. Stopping watcher", signum)
        _stop.set()

    previous = {}
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            previous[sig] = signal.signal(sig, _handler)
        except ValueError:
            # not the main thread
            pass
    return previous


def stop():
    _stop.set()


def watch(controller: SyncController, observer: NetworkObserver, duration: Optional[float] = None) -> None:
    """Keep the controller attached to a live observer until stopped.

    Offline->online transitions drain the queue in AUTO mode. Runs until
    SIGINT/SIGTERM, :func:`stop`, or ``duration`` seconds elapse.
    """
    previous = setup_signal_handlers()
    _stop.clear()

    controller.start()
    observer.start()
    logger.info("Watching connectivity (mode=%s, online=%s)", controller.mode, controller.is_online)
    try:
        _stop.wait(duration)
    finally:
        controller.close()
        observer.stop()
        for sig, handler in previous.items():
            if handler is not None:
                signal.signal(sig, handler)
        logger.info("Watcher stopped.")
