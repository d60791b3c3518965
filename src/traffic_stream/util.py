"""
Time helpers shared by the stream engine and the stores

All event times are integer seconds since the UNIX epoch.
"""

import time
from datetime import datetime, timezone
from typing import Any, Callable


def now() -> int:
    """Number of seconds since UNIX epoch"""
    return int(time.time())


def iso(timestamp: int) -> str:
    """Convert a timestamp into an ISO-8601 string"""
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()


def parse_iso8601(value: str) -> float:
    """
    Parse an ISO-8601 date into seconds since epoch

    Naive dates are read as UTC. A trailing ``Z`` is accepted.

    Raises:
        ValueError: If the value is not a valid ISO-8601 date
    """
    if not isinstance(value, str):
        raise ValueError(f"Expected an ISO-8601 string, got {type(value).__name__}")
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.timestamp()


def complement(pred: Callable[..., Any]) -> Callable[..., bool]:
    """Return the negation of the predicate `pred`"""

    def negated(*args: Any, **kwargs: Any) -> bool:
        return not pred(*args, **kwargs)

    return negated
