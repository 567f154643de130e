import base64
from dataclasses import dataclass, field, replace
from typing import Optional

# Work classes
SMALL = "SMALL"
LARGE = "LARGE"
WORK_CLASSES = (SMALL, LARGE)

# Item states
PENDING = "PENDING"
PROCESSING = "PROCESSING"
COMPLETED = "COMPLETED"  # transient, never resident
FAILED = "FAILED"        # permanent, stays resident until retried or cleared
ITEM_STATES = (PENDING, PROCESSING, COMPLETED, FAILED)

# Sync modes
AUTO = "AUTO"
MANUAL = "MANUAL"
SYNC_MODES = (AUTO, MANUAL)


def normalize_class(value: str) -> str:
    cls = (value or "").strip().upper()
    if cls not in WORK_CLASSES:
        raise ValueError(f"Unknown work class {value!r}; expected one of {', '.join(WORK_CLASSES)}")
    return cls


def normalize_mode(value: str) -> str:
    mode = (value or "").strip().upper()
    if mode not in SYNC_MODES:
        raise ValueError(f"Unknown sync mode {value!r}; expected one of {', '.join(SYNC_MODES)}")
    return mode


@dataclass
class WorkItem:
    id: str
    work_class: str
    payload: bytes
    created_at: int          # epoch milliseconds
    retry_count: int = 0
    status: str = PENDING
    last_error: Optional[str] = None

    def copy(self) -> "WorkItem":
        return replace(self)

    def to_doc(self) -> dict:
        return {
            "id": self.id,
            "class": self.work_class,
            "payload": base64.b64encode(self.payload).decode("ascii"),
            "created_at": self.created_at,
            "retry_count": self.retry_count,
            "status": self.status,
            "last_error": self.last_error,
        }

    @classmethod
    def from_doc(cls, doc: dict) -> "WorkItem":
        if doc.get("status", PENDING) not in ITEM_STATES:
            raise ValueError(f"Unknown item status {doc.get('status')!r}")
        return cls(
            id=doc["id"],
            work_class=normalize_class(doc["class"]),
            payload=base64.b64decode(doc["payload"]),
            created_at=int(doc["created_at"]),
            retry_count=int(doc.get("retry_count", 0)),
            status=doc.get("status", PENDING),
            last_error=doc.get("last_error"),
        )


@dataclass(frozen=True)
class CompletionRecord:
    id: str
    work_class: str
    created_at: int
    completed_at: int

    def to_doc(self) -> dict:
        return {
            "id": self.id,
            "class": self.work_class,
            "created_at": self.created_at,
            "completed_at": self.completed_at,
        }

    @classmethod
    def from_doc(cls, doc: dict) -> "CompletionRecord":
        return cls(
            id=doc["id"],
            work_class=normalize_class(doc["class"]),
            created_at=int(doc["created_at"]),
            completed_at=int(doc["completed_at"]),
        )


@dataclass(frozen=True)
class QueueStats:
    total_pending: int = 0
    small_pending: int = 0
    large_pending: int = 0
    total_completed: int = 0
    processing: int = 0
    failed: int = 0
    draining: bool = False

    def to_dict(self) -> dict:
        return {
            "total_pending": self.total_pending,
            "small_pending": self.small_pending,
            "large_pending": self.large_pending,
            "total_completed": self.total_completed,
            "processing": self.processing,
            "failed": self.failed,
            "draining": self.draining,
        }


@dataclass(frozen=True)
class NetworkState:
    connected: bool = False
    detail: dict = field(default_factory=dict)
