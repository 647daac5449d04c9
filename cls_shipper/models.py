"""Log entry model."""

import json
import time
from dataclasses import dataclass, field, fields
from typing import Optional


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class LogEntry:
    timestamp: int = field(default_factory=_now_ms)
    level: str = "info"
    message: str = ""
    data: Optional[dict] = None
    module: Optional[str] = None


def create_log_entry(
    level: str,
    message: str,
    data: Optional[dict] = None,
    module: Optional[str] = None,
    timestamp: Optional[int] = None,
) -> LogEntry:
    """Factory function that creates a LogEntry stamped with the current time."""
    return LogEntry(
        timestamp=timestamp if timestamp is not None else _now_ms(),
        level=level,
        message=message,
        data=data,
        module=module,
    )


def entry_to_dict(entry: LogEntry) -> dict:
    """Convert a LogEntry to a plain dictionary, omitting absent optional fields."""
    values = ((f.name, getattr(entry, f.name)) for f in fields(entry))
    return {key: value for key, value in values if value is not None}


def entry_from_dict(raw: dict) -> LogEntry:
    """Build a LogEntry from a decoded JSON object.

    Missing fields are left absent rather than rejected; only the timestamp
    falls back to "now" so the entry still has a wire time.
    """
    return LogEntry(
        timestamp=int(raw["timestamp"]) if raw.get("timestamp") is not None else _now_ms(),
        level=raw.get("level"),
        message=raw.get("message"),
        data=raw.get("data"),
        module=raw.get("module"),
    )


def serialized_size(entry: LogEntry) -> int:
    """Length of the entry's JSON text, used as a cheap estimate of wire size.

    Never raises: data that cannot be encoded (circular or too deeply nested)
    is measured by its repr instead.
    """
    try:
        return len(json.dumps(entry_to_dict(entry), default=str, ensure_ascii=False, skipkeys=True))
    except (TypeError, ValueError, RecursionError):
        return len(str(entry))
