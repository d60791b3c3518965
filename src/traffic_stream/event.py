"""
Canonical unit flowing through the pipeline

An event is immutable: transformers build new events with
:meth:`Event.with_data` and :meth:`Event.with_key`.
"""

from dataclasses import dataclass, replace
from typing import Any, Optional


@dataclass(frozen=True)
class Event:
    """A timestamped piece of data, optionally bound to a partition key"""

    time: int
    data: Any
    key: Optional[str] = None

    def with_data(self, data: Any) -> "Event":
        return replace(self, data=data)

    def with_key(self, key: Optional[str]) -> "Event":
        return replace(self, key=key)
