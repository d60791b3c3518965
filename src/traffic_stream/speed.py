"""
Hit rate of an entity over fixed time windows

A SpeedCounter keeps one counter per bucket of ``window_size`` seconds and
only remembers the last ``size`` buckets.
"""

from typing import Any, Callable, Dict, List, Optional

from .util import now


class SpeedCounter:
    """Bounded sliding-window hit counter"""

    def __init__(
        self,
        window_size: int,
        size: int,
        clock: Callable[[], int] = now,
    ):
        if window_size <= 0 or size <= 0:
            raise ValueError("window_size and size must be positive")
        self.window_size = window_size
        self.size = size
        self.clock = clock
        self.counters: Dict[int, int] = {}
        self.started: Optional[int] = None

    def _bucket(self, time: int) -> int:
        return time - time % self.window_size

    def gc(self) -> None:
        """Delete counters that are too old"""
        cutoff = self.clock() - self.size * self.window_size
        self.counters = {t: n for t, n in self.counters.items() if t > cutoff}

    def hit(self, time: int) -> "SpeedCounter":
        self.started = time if self.started is None else min(self.started, time)
        bucket = self._bucket(time)
        self.counters[bucket] = self.counters.get(bucket, 0) + 1
        self.gc()
        return self

    def compute(self) -> List[int]:
        """
        Counts per bucket, most recent first

        Buckets before the first hit are omitted, so the result is shorter
        than ``size`` until enough history has been seen.
        """
        self.gc()
        if self.started is None:
            return []
        current = self.clock()
        first = self._bucket(self.started)
        speeds = []
        for n in range(self.size):
            bucket = self._bucket(current - n * self.window_size)
            if bucket >= first:
                speeds.append(self.counters.get(bucket, 0))
        return speeds

    def total(self) -> int:
        return sum(self.compute())

    def serialize(self) -> Dict[str, Any]:
        return {
            "window_size": self.window_size,
            "size": self.size,
            "counters": {str(t): n for t, n in self.counters.items()},
            "started": self.started,
        }

    @staticmethod
    def deserialize(
        data: Dict[str, Any], clock: Callable[[], int] = now
    ) -> "SpeedCounter":
        speed = SpeedCounter(data["window_size"], data["size"], clock=clock)
        speed.counters = {int(t): int(n) for t, n in data.get("counters", {}).items()}
        speed.started = data.get("started")
        speed.gc()
        return speed

    def __repr__(self) -> str:
        return (
            f"SpeedCounter(window_size={self.window_size}, size={self.size}, "
            f"started={self.started}, buckets={len(self.counters)})"
        )
