from dataclasses import dataclass
from typing import Dict

DEFAULT_CONFIG = {
    "max_retries": "3",
    "initial_backoff": "1",       # seconds
    "max_backoff": "10",          # seconds
    "pacing": "0.05",             # seconds between items in a drain
    "completion_log_limit": "50",
    "startup_sync_delay": "0.1",
    "failure_rate": "0.1",
    "small_delay": "0.5",
    "large_delay": "2",
    "max_payload_bytes": "1048576",
    "probe_host": "1.1.1.1",
    "probe_port": "53",
    "probe_timeout": "3",
    "probe_interval": "5",
}

ALLOWED_CONFIG_KEYS = set(DEFAULT_CONFIG.keys())

_INT_KEYS = {"max_retries", "completion_log_limit", "max_payload_bytes", "probe_port"}
_STR_KEYS = {"probe_host"}


@dataclass(frozen=True)
class Settings:
    max_retries: int = 3
    initial_backoff: float = 1.0
    max_backoff: float = 10.0
    pacing: float = 0.05
    completion_log_limit: int = 50
    startup_sync_delay: float = 0.1
    failure_rate: float = 0.1
    small_delay: float = 0.5
    large_delay: float = 2.0
    max_payload_bytes: int = 1048576
    probe_host: str = "1.1.1.1"
    probe_port: int = 53
    probe_timeout: float = 3.0
    probe_interval: float = 5.0

    @classmethod
    def from_config(cls, cfg: Dict[str, str]) -> "Settings":
        """Build settings from the string-valued config table, defaults filling gaps."""
        merged = {**DEFAULT_CONFIG, **{k: v for k, v in cfg.items() if k in ALLOWED_CONFIG_KEYS}}
        return cls(**{k: parse_value(k, v) for k, v in merged.items()})


def parse_value(key: str, value: str):
    """Parse and range-check one config value. Raises ValueError."""
    if key not in ALLOWED_CONFIG_KEYS:
        raise ValueError(f"Allowed keys: {', '.join(sorted(ALLOWED_CONFIG_KEYS))}")
    if key in _STR_KEYS:
        if not value or not str(value).strip():
            raise ValueError(f"{key} cannot be empty.")
        return str(value).strip()

    try:
        parsed = int(value) if key in _INT_KEYS else float(value)
    except (TypeError, ValueError):
        kind = "an integer" if key in _INT_KEYS else "a number"
        raise ValueError(f"{key} must be {kind}, got {value!r}")

    if key == "failure_rate":
        if not 0 <= parsed <= 1:
            raise ValueError("failure_rate must be between 0 and 1")
    elif key in ("max_retries", "completion_log_limit", "max_payload_bytes", "probe_port"):
        if parsed < 1:
            raise ValueError(f"{key} must be >= 1")
    elif parsed < 0:
        raise ValueError(f"{key} must be >= 0")
    return parsed
