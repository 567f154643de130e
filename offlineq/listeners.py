import logging
import threading
from typing import Callable, Generic, List, TypeVar

logger = logging.getLogger(__name__)

L = TypeVar("L", bound=Callable)


class Listeners(Generic[L]):
    """Subscriber registry. ``add`` returns a handle that removes the listener.

    Notification is synchronous, in the calling thread, over a snapshot of
    the registry so listeners may unsubscribe while being notified.
    """

    def __init__(self, name: str):
        self._name = name
        self._items: List[L] = []
        self._lock = threading.Lock()

    def add(self, listener: L) -> Callable[[], None]:
        with self._lock:
            self._items.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                try:
                    self._items.remove(listener)
                except ValueError:
                    pass  # already removed

        return unsubscribe

    def notify(self, *args) -> None:
        with self._lock:
            snapshot = list(self._items)
        for listener in snapshot:
            try:
                listener(*args)
            except Exception:
                logger.exception("[%s] listener %r raised", self._name, listener)

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)
