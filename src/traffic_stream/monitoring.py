"""
Activity monitors for the pipeline's inputs and outputs

Each monitored item keeps a pair of speed counters (per minute over 15
minutes, per hour over 24 hours) for every tracked speed, e.g. ``accepted``
and ``rejected`` logs of an input.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from .speed import SpeedCounter
from .util import now


def _create_speed(clock: Callable[[], int]) -> Dict[str, SpeedCounter]:
    return {
        "per_minute": SpeedCounter(60, 15, clock=clock),
        "per_hour": SpeedCounter(3600, 24, clock=clock),
    }


@dataclass
class MonitoringItem:
    """Speeds and status of one input or output"""

    id: int
    name: str
    type: str
    speed_names: List[str]
    status: str = "Not started"
    clock: Callable[[], int] = now
    speeds: Dict[str, Dict[str, SpeedCounter]] = field(default_factory=dict)

    def __post_init__(self):
        if not self.speed_names:
            raise ValueError("A monitoring item needs at least one speed")
        self.speeds = {name: _create_speed(self.clock) for name in self.speed_names}

    def hit(self, speed_name: Optional[str] = None, value: Optional[int] = None) -> None:
        speed_name = speed_name or self.speed_names[0]
        value = self.clock() if value is None else value
        for speed in self.speeds[speed_name].values():
            speed.hit(value)

    def get_computed(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "status": self.status,
            "speeds": {
                name: {window: speed.compute() for window, speed in windows.items()}
                for name, windows in self.speeds.items()
            },
        }


class Monitoring:
    """Registry of monitored items"""

    def __init__(self, clock: Callable[[], int] = now):
        self.clock = clock
        self.items: Dict[int, MonitoringItem] = {}
        self._current_id = 0

    def register(
        self,
        name: str,
        type: str,
        speeds: List[str],
        status: str = "Not started",
    ) -> MonitoringItem:
        item = MonitoringItem(
            id=self._current_id,
            name=name,
            type=type,
            speed_names=list(speeds),
            status=status,
            clock=self.clock,
        )
        self.items[item.id] = item
        self._current_id += 1
        return item

    def register_output(self, name: str, status: str = "Running") -> MonitoringItem:
        return self.register(name=name, type="output", speeds=["processed"], status=status)

    def get(self, id: int) -> Optional[MonitoringItem]:
        return self.items.get(id)

    def get_all(self, type: Optional[str] = None) -> List[MonitoringItem]:
        return [item for item in self.items.values() if type is None or item.type == type]

    def get_all_computed(self) -> List[Dict[str, Any]]:
        return [item.get_computed() for item in self.items.values()]
