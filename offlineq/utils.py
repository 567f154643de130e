from datetime import datetime, timezone
import re
import secrets
import time

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)([hms])")
_UNIT_SECONDS = {"h": 3600, "m": 60, "s": 1}

_ID_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"


def parse_duration(text: str) -> float:
    """'45s', '5m', '1h30m', '1.5s' -> seconds. Raises ValueError otherwise or for zero."""
    compact = "".join((text or "").split()).lower()
    parts = _DURATION_PART.findall(compact)
    if not parts or "".join(n + u for n, u in parts) != compact:
        raise ValueError(f"Invalid duration {text!r}; use e.g. 30s, 5m or 1h30m")
    seconds = sum(float(n) * _UNIT_SECONDS[u] for n, u in parts)
    if seconds <= 0:
        raise ValueError("duration must be > 0 seconds")
    return seconds


def now_ms() -> int:
    """Current UTC time in epoch milliseconds."""
    return time.time_ns() // 1_000_000


def new_item_id(created_at: int) -> str:
    """Creation time plus nine random base-36 characters, e.g. '1731400000000-k3j9x0a2b'."""
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"{created_at}-{suffix}"


def backoff_delay(retry_count: int, initial: float, maximum: float) -> float:
    """Seconds to wait after the n-th failed attempt: min(initial * 2^(n-1), maximum)."""
    if retry_count < 1:
        raise ValueError("retry_count must be >= 1")
    return min(initial * (2 ** (retry_count - 1)), maximum)


def format_timestamp(ms: int) -> str:
    """Local time and date for an epoch-millisecond timestamp."""
    dt = datetime.fromtimestamp(ms / 1000, tz=timezone.utc).astimezone()
    return dt.strftime("%H:%M:%S %Y-%m-%d")


def time_taken(start_ms: int, end_ms: int) -> str:
    """Whole seconds between two timestamps, e.g. '3s'."""
    return f"{round((end_ms - start_ms) / 1000)}s"
