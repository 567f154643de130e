"""
Queue engine: the durable offline work queue and its single-flight drain loop.

The engine owns the resident item list, the completion log and the lifetime
completed counter. Every mutation is persisted through the store before
subscribers are notified. Transport calls and the pacing/backoff sleeps run
outside the state lock so producers can enqueue while a drain is in flight.
"""

import logging
import threading
import time
from typing import Callable, List, Optional

from .config import Settings
from .db import COMPLETED_COUNT_KEY, COMPLETION_LOG_KEY, ITEMS_KEY, StoreError
from .listeners import Listeners
from .models import (
    FAILED, LARGE, PENDING, PROCESSING, SMALL, COMPLETED,
    CompletionRecord, QueueStats, WorkItem, normalize_class,
)
from .transport import Transport, TransportError
from .utils import backoff_delay, new_item_id, now_ms

logger = logging.getLogger(__name__)


class QueueEngine:

    def __init__(
        self,
        store,
        transport: Transport,
        settings: Optional[Settings] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], int] = now_ms,
    ):
        self._store = store
        self._transport = transport
        self.settings = settings or Settings()
        self._sleep = sleep
        self._clock = clock

        self._items: List[WorkItem] = []
        self._log: List[CompletionRecord] = []
        self._completed = 0

        self._lock = threading.RLock()
        self._drain_guard = threading.Lock()
        self._closed = threading.Event()
        self._draining = False
        self._listeners: Listeners[Callable[[], None]] = Listeners("queue")

    # ---------- Lifecycle ----------
    def initialize(self) -> None:
        """Load persisted state and demote interrupted attempts back to PENDING."""
        try:
            items = [WorkItem.from_doc(d) for d in self._load(ITEMS_KEY, [])]
            log = [CompletionRecord.from_doc(d) for d in self._load(COMPLETION_LOG_KEY, [])]
            completed = int(self._load(COMPLETED_COUNT_KEY, 0))
        except (KeyError, TypeError, ValueError) as e:
            raise StoreError(f"Persisted queue state is unreadable: {e}")

        demoted = 0
        for item in items:
            if item.status == PROCESSING:
                logger.info("Resetting interrupted item %s from PROCESSING to PENDING", item.id)
                item.status = PENDING
                demoted += 1

        with self._lock:
            self._items = [i for i in items if i.status != COMPLETED]
            self._log = log[: self.settings.completion_log_limit]
            self._completed = completed
            if demoted:
                self._persist(ITEMS_KEY)

        stats = self.get_stats()
        logger.info(
            "Queue initialized with %d items (%d pending, %d failed, %d completed overall)",
            len(self._items), stats.total_pending, stats.failed, stats.total_completed,
        )
        self._notify()

    # ---------- Producers ----------
    def enqueue(self, work_class: str, payload: bytes) -> WorkItem:
        work_class = normalize_class(work_class)
        if not isinstance(payload, (bytes, bytearray, memoryview)):
            raise TypeError(f"payload must be bytes, got {type(payload).__name__}")
        payload = bytes(payload)
        if len(payload) > self.settings.max_payload_bytes:
            raise ValueError(
                f"payload is {len(payload)} bytes; the limit is {self.settings.max_payload_bytes}"
            )

        created_at = self._clock()
        item = WorkItem(
            id=new_item_id(created_at),
            work_class=work_class,
            payload=payload,
            created_at=created_at,
        )
        try:
            with self._lock:
                self._items.append(item)
                self._persist(ITEMS_KEY)
                size = len(self._items)
        finally:
            self._notify()

        logger.info("Added %s item %s to queue. Queue size: %d", work_class, item.id, size)
        return item.copy()

    # ---------- Selection ----------
    def select_next(self) -> Optional[WorkItem]:
        """Earliest pending SMALL item, else earliest pending LARGE item, else None."""
        item = self._select_next()
        return item.copy() if item else None

    def _select_next(self) -> Optional[WorkItem]:
        next_small = next_large = None
        with self._lock:
            for item in self._items:
                if item.status != PENDING:
                    continue
                if item.work_class == SMALL:
                    if next_small is None or item.created_at < next_small.created_at:
                        next_small = item
                elif next_large is None or item.created_at < next_large.created_at:
                    next_large = item
        return next_small or next_large

    # ---------- Drain ----------
    def drain(self) -> bool:
        """Deliver pending items until none is eligible.

        Returns False without doing anything when another drain is active or the
        engine is closed. Persistence errors end the loop and propagate after the
        guard is released.
        """
        if self._closed.is_set() or not self._drain_guard.acquire(blocking=False):
            logger.debug("Queue is already being processed or the engine is closed")
            return False

        while True:
            self._run_drain()
            # work enqueued between the last selection and the guard release was
            # refused by the guard, so pick it up here
            if self._closed.is_set() or self._select_next() is None:
                return True
            if not self._drain_guard.acquire(blocking=False):
                return True
            logger.debug("Items arrived as the drain finished; continuing")

    def _run_drain(self) -> None:
        self._draining = True
        attempts = 0
        logger.info("Starting queue processing")
        try:
            item = self._select_next()
            while item is not None and not self._closed.is_set():
                self._attempt(item)
                attempts += 1
                self._sleep(self.settings.pacing)
                item = self._select_next()
            logger.info("Queue processing completed after %d attempt(s)", attempts)
        finally:
            self._draining = False
            self._drain_guard.release()
            self._notify()

    def close(self) -> None:
        """End any drain at the next item boundary and refuse new ones.

        An attempt already in flight still runs to completion.
        """
        self._closed.set()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def _attempt(self, item: WorkItem) -> None:
        logger.debug("Processing item %s (%s)", item.id, item.work_class)
        try:
            with self._lock:
                item.status = PROCESSING
                self._persist(ITEMS_KEY)
        finally:
            self._notify()

        try:
            completed_at = self._transport.send(item.work_class, item.payload)
        except TransportError as e:
            self._record_failure(item, str(e) or "Transport failure")
        except Exception as e:
            logger.exception("Transport raised unexpectedly for item %s", item.id)
            self._record_failure(item, f"{type(e).__name__}: {e}")
        else:
            self._record_success(item, completed_at if isinstance(completed_at, int) else self._clock())

    def _record_success(self, item: WorkItem, completed_at: int) -> None:
        record = CompletionRecord(
            id=item.id,
            work_class=item.work_class,
            created_at=item.created_at,
            completed_at=completed_at,
        )
        try:
            with self._lock:
                item.status = COMPLETED
                self._log.insert(0, record)
                del self._log[self.settings.completion_log_limit:]
                self._completed += 1
                self._items = [i for i in self._items if i.id != item.id]
                self._persist(COMPLETED_COUNT_KEY, COMPLETION_LOG_KEY, ITEMS_KEY)
        finally:
            self._notify()
        logger.info("Item %s processed successfully", item.id)

    def _record_failure(self, item: WorkItem, error: str) -> None:
        max_retries = self.settings.max_retries
        delay = None
        try:
            with self._lock:
                item.retry_count += 1
                item.last_error = error
                if item.retry_count >= max_retries:
                    item.status = FAILED
                else:
                    item.status = PENDING
                    delay = backoff_delay(
                        item.retry_count, self.settings.initial_backoff, self.settings.max_backoff
                    )
                self._persist(ITEMS_KEY)
        finally:
            self._notify()

        if delay is None:
            logger.error(
                "Item %s permanently failed after %d retries: %s", item.id, item.retry_count, error
            )
            return
        logger.warning(
            "Item %s failed (%s); retrying after %.2fs (attempt %d/%d)",
            item.id, error, delay, item.retry_count, max_retries,
        )
        if not self._closed.is_set():
            self._sleep(delay)

    # ---------- Failed items ----------
    def retry_item(self, item_id: str) -> bool:
        """Reset a FAILED item to PENDING and drain. Any other target is a no-op."""
        reset = False
        try:
            with self._lock:
                item = self._find(item_id)
                if item is not None and item.status == FAILED:
                    reset = True
                    item.status = PENDING
                    item.retry_count = 0
                    item.last_error = None
                    self._persist(ITEMS_KEY)
        finally:
            if reset:
                self._notify()

        if not reset:
            logger.warning("Cannot retry item %s: not found or not failed", item_id)
            return False
        logger.info("Retrying failed item %s", item_id)
        self.drain()
        return True

    def clear_failed(self) -> int:
        try:
            with self._lock:
                kept = [i for i in self._items if i.status != FAILED]
                removed = len(self._items) - len(kept)
                self._items = kept
                self._persist(ITEMS_KEY)
        finally:
            self._notify()
        logger.info("Cleared %d failed item(s)", removed)
        return removed

    def clear_all(self) -> None:
        try:
            with self._lock:
                self._items = []
                self._log = []
                self._completed = 0
                try:
                    self._store.clear_all()
                except StoreError:
                    logger.exception("Failed to clear the durable store")
                    raise
        finally:
            self._notify()
        logger.info("Cleared all queue data")

    # ---------- Read projections ----------
    def get_stats(self) -> QueueStats:
        with self._lock:
            small = large = processing = failed = 0
            for item in self._items:
                if item.status == PENDING:
                    if item.work_class == SMALL:
                        small += 1
                    else:
                        large += 1
                elif item.status == PROCESSING:
                    processing += 1
                elif item.status == FAILED:
                    failed += 1
            return QueueStats(
                total_pending=small + large,
                small_pending=small,
                large_pending=large,
                total_completed=self._completed,
                processing=processing,
                failed=failed,
                draining=self._draining,
            )

    def get_pending(self) -> List[WorkItem]:
        """Pending and in-flight items, SMALL first, each class in creation order."""
        with self._lock:
            active = [i.copy() for i in self._items if i.status in (PENDING, PROCESSING)]
        small = sorted((i for i in active if i.work_class == SMALL), key=lambda i: i.created_at)
        large = sorted((i for i in active if i.work_class == LARGE), key=lambda i: i.created_at)
        return small + large

    def get_failed(self) -> List[WorkItem]:
        with self._lock:
            return [i.copy() for i in self._items if i.status == FAILED]

    def get_items(self) -> List[WorkItem]:
        with self._lock:
            return [i.copy() for i in self._items]

    def get_completion_log(self) -> List[CompletionRecord]:
        with self._lock:
            return list(self._log)

    @property
    def draining(self) -> bool:
        return self._draining

    # ---------- Notification ----------
    def subscribe(self, listener: Callable[[], None]) -> Callable[[], None]:
        return self._listeners.add(listener)

    def _notify(self) -> None:
        self._listeners.notify()

    # ---------- Persistence ----------
    def _find(self, item_id: str) -> Optional[WorkItem]:
        for item in self._items:
            if item.id == item_id:
                return item
        return None

    def _document(self, key: str):
        if key == ITEMS_KEY:
            return [i.to_doc() for i in self._items]
        if key == COMPLETION_LOG_KEY:
            return [r.to_doc() for r in self._log]
        if key == COMPLETED_COUNT_KEY:
            return self._completed
        raise KeyError(key)

    def _persist(self, *keys: str) -> None:
        for key in keys:
            try:
                self._store.save(key, self._document(key))
            except StoreError:
                logger.exception("Failed to persist %s; state may not survive a restart", key)
                raise

    def _load(self, key: str, default):
        try:
            value = self._store.load(key)
        except StoreError:
            logger.exception("Failed to load %s", key)
            raise
        return default if value is None else value
