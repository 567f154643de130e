"""Backend transport: the contract the queue engine delivers through, plus a simulated backend."""

import logging
import random
import time
from abc import ABC, abstractmethod
from typing import Callable, Optional

from .config import Settings
from .models import SMALL
from .utils import now_ms

logger = logging.getLogger(__name__)


class TransportError(Exception):
    """A delivery attempt failed. The message is recorded as the item's last error."""


class Transport(ABC):

    @abstractmethod
    def send(self, work_class: str, payload: bytes) -> int:
        """Deliver one payload. Returns the completion timestamp (epoch ms) or raises TransportError."""
        ...


class SimulatedTransport(Transport):
    """Stand-in backend with per-class latency and random failures."""

    def __init__(
        self,
        small_delay: float = 0.5,
        large_delay: float = 2.0,
        failure_rate: float = 0.1,
        sleep: Callable[[float], None] = time.sleep,
        rng: Optional[random.Random] = None,
    ):
        self.small_delay = small_delay
        self.large_delay = large_delay
        self.failure_rate = 0.0
        self.set_failure_rate(failure_rate)
        self._sleep = sleep
        self._rng = rng or random.Random()

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs) -> "SimulatedTransport":
        return cls(
            small_delay=settings.small_delay,
            large_delay=settings.large_delay,
            failure_rate=settings.failure_rate,
            **kwargs,
        )

    def set_failure_rate(self, rate: float) -> None:
        if not 0 <= rate <= 1:
            raise ValueError("failure rate must be between 0 and 1")
        self.failure_rate = rate
        logger.info("Simulated failure rate set to %.0f%%", rate * 100)

    def send(self, work_class: str, payload: bytes) -> int:
        small = work_class == SMALL
        logger.debug("Sending %s request (%d bytes)", work_class, len(payload))
        self._sleep(self.small_delay if small else self.large_delay)

        if self._rng.random() < self.failure_rate:
            logger.debug("%s request failed", work_class)
            raise TransportError(
                "Network request failed" if small else "Network request failed - large payload"
            )

        logger.debug("%s request succeeded", work_class)
        return now_ms()
