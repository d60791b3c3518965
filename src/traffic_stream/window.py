"""
Window strategies for the window stream processor

A strategy assigns an event to one or more time intervals. The engine keeps
one accumulator per assigned interval.
"""

from abc import ABC, abstractmethod
from typing import List, NamedTuple, Sequence

from .event import Event


class Bounds(NamedTuple):
    """Half-open interval [start, end[ in seconds"""

    start: int
    end: int

    @property
    def label(self) -> str:
        return f"{self.start}:{self.end}"


class WindowStrategy(ABC):
    """Base class for window strategies"""

    @abstractmethod
    def assign(self, event: Event) -> List[Bounds]:
        """Intervals the event belongs to, oldest first"""
        pass

    def merge(self, windows: Sequence[Bounds]) -> List[Bounds]:
        """Merge assigned intervals; strategies with fixed bounds keep them"""
        return list(windows)


class FixedWindow(WindowStrategy):
    """
    Fixed-size, non-overlapping windows

    Example: FixedWindow(60) assigns each event to its minute
    """

    def __init__(self, size: int, offset: int = 0):
        if size <= 0:
            raise ValueError("size must be positive")
        self.size = size
        self.offset = offset % size

    def assign(self, event: Event) -> List[Bounds]:
        t = event.time
        start = t - (t - self.offset) % self.size
        return [Bounds(start, start + self.size)]

    def __repr__(self) -> str:
        return f"FixedWindow(size={self.size}, offset={self.offset})"


class SlidingWindow(WindowStrategy):
    """
    Fixed-size, overlapping windows

    Example: SlidingWindow(600, 60) keeps 10-minute windows sliding every minute
    """

    def __init__(self, size: int, period: int, offset: int = 0):
        if size <= 0 or period <= 0:
            raise ValueError("size and period must be positive")
        self.size = size
        self.period = period
        self.offset = offset % size

    def assign(self, event: Event) -> List[Bounds]:
        t = event.time
        latest = t - (t - self.offset) % self.period
        starts = range(latest, latest - self.size, -self.period)
        return [Bounds(start, start + self.size) for start in reversed(starts)]

    def __repr__(self) -> str:
        return f"SlidingWindow(size={self.size}, period={self.period}, offset={self.offset})"


class SessionWindow(WindowStrategy):
    """
    Windows extended by activity, closed after `gap` seconds of inactivity

    Each event gets its own [time, time + gap[ window; overlapping windows
    are combined by :meth:`merge`.
    """

    def __init__(self, gap: int):
        if gap <= 0:
            raise ValueError("gap must be positive")
        self.gap = gap

    def assign(self, event: Event) -> List[Bounds]:
        return [Bounds(event.time, event.time + self.gap)]

    def merge(self, windows: Sequence[Bounds]) -> List[Bounds]:
        merged: List[Bounds] = []
        for window in sorted(windows):
            if merged and window.start <= merged[-1].end:
                last = merged[-1]
                merged[-1] = Bounds(last.start, max(last.end, window.end))
            else:
                merged.append(Bounds(*window))
        return merged

    def __repr__(self) -> str:
        return f"SessionWindow(gap={self.gap})"
