"""
Event-time windowing for the pipeline

The engine groups events into windows assigned by a WindowStrategy and
folds them with a Reducer. Windows fire early every ``fire_every`` seconds
of watermark progress, fire a final result once the watermark passes their
end, and are dropped once they are older than the allowed lateness.

State is kept per window definition and per partition key, so a stream
split with ``by`` maintains independent windows for each key.
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from .event import Event
from .instruments import Instruments, get_instruments
from .logger import get_logger, log_with_context
from .reducers import Reducer
from .util import iso, now
from .window import WindowStrategy

Emit = Callable[[Event], None]


@dataclass
class Window:
    """Accumulation bucket for one interval of one partition"""

    start: int
    end: int
    accumulator: Any
    triggered: bool = False
    last_fired: Optional[int] = None

    @property
    def label(self) -> str:
        return f"{self.start}:{self.end}"


@dataclass
class WindowDefinition:
    """Settings of one ``window`` step in the pipeline"""

    strategy: WindowStrategy
    reducer: Reducer
    watermark_delay: int
    allowed_lateness: int
    fire_every: Optional[int] = None

    def __post_init__(self):
        if self.watermark_delay < 0 or self.allowed_lateness < 0:
            raise ValueError("watermark_delay and allowed_lateness must not be negative")
        if self.fire_every is not None and self.fire_every <= 0:
            raise ValueError("fire_every must be positive")


class WindowEngine:
    """
    Owns the window state of every window step of a pipeline

    Definitions are registered while the pipeline is built; the returned id
    is the index of the definition and stays valid for the life of the
    engine.
    """

    def __init__(
        self,
        clock: Callable[[], int] = now,
        instruments: Optional[Instruments] = None,
    ):
        self.clock = clock
        self.instruments = instruments or get_instruments()
        self.logger = get_logger("pipeline.window")
        self._definitions: List[WindowDefinition] = []
        self._outputs: Dict[int, Emit] = {}
        # definition id -> partition key -> "start:end" -> Window
        self._windows: Dict[int, Dict[Optional[str], Dict[str, Window]]] = {}

    def define(
        self,
        strategy: WindowStrategy,
        reducer: Reducer,
        watermark_delay: int,
        allowed_lateness: int,
        fire_every: Optional[int] = None,
    ) -> int:
        """Register a window step and return its id"""
        definition = WindowDefinition(
            strategy=strategy,
            reducer=reducer,
            watermark_delay=watermark_delay,
            allowed_lateness=allowed_lateness,
            fire_every=fire_every,
        )
        self._definitions.append(definition)
        window_id = len(self._definitions) - 1
        self._windows[window_id] = {}
        return window_id

    def definition(self, window_id: int) -> WindowDefinition:
        return self._definitions[window_id]

    def bind(self, window_id: int, emit: Emit) -> None:
        """Set where results of `window_id` go when fired by :meth:`sweep`"""
        self._outputs[window_id] = emit

    def watermark(self, window_id: int) -> int:
        return self.clock() - self._definitions[window_id].watermark_delay

    def process(self, window_id: int, event: Event, emit: Emit) -> None:
        """Assign `event` to its windows, then fire and collect the partition"""
        definition = self._definitions[window_id]
        watermark = self.watermark(window_id)
        delta = event.time - watermark
        self.instruments.gauge("pipeline.window.delta", delta)

        if event.time < watermark - definition.allowed_lateness:
            self.instruments.increment("pipeline.window.late")
            log_with_context(
                self.logger,
                "warning",
                "Dropping late event",
                watermark=iso(watermark),
                event_time=iso(event.time),
                delta=delta,
            )
            return

        partitions = self._windows[window_id]
        windows = partitions.get(event.key, {})

        # Fold into every assigned window before touching the state
        updates = []
        for bounds in definition.strategy.assign(event):
            window = windows.get(bounds.label)
            acc = definition.reducer.init() if window is None else window.accumulator
            updates.append((bounds, window, definition.reducer.step(acc, event.data)))

        windows = partitions.setdefault(event.key, windows)
        for bounds, window, acc in updates:
            if window is None:
                window = Window(bounds.start, bounds.end, acc)
                windows[bounds.label] = window
            window.accumulator = acc
            window.triggered = False

        self._trigger(definition, windows, watermark, event.key, emit)
        self._collect(definition, partitions, event.key, watermark)

    def sweep(self, window_id: Optional[int] = None) -> int:
        """
        Fire and collect every partition without waiting for a new event

        Returns the number of results emitted.
        """
        ids = range(len(self._definitions)) if window_id is None else [window_id]
        emitted = 0
        for wid in ids:
            emit = self._outputs.get(wid)
            if emit is None:
                continue
            definition = self._definitions[wid]
            watermark = self.watermark(wid)
            partitions = self._windows[wid]
            for key in list(partitions):
                emitted += self._trigger(definition, partitions[key], watermark, key, emit)
                self._collect(definition, partitions, key, watermark)
        return emitted

    def _trigger(
        self,
        definition: WindowDefinition,
        windows: Dict[str, Window],
        watermark: int,
        key: Optional[str],
        emit: Emit,
    ) -> int:
        fired = 0
        for window in list(windows.values()):
            fire_every = definition.fire_every
            last_fired = window.start if window.last_fired is None else window.last_fired
            if fire_every and watermark < window.end and watermark - last_fired >= fire_every:
                window.last_fired = watermark
            elif window.end <= watermark and not window.triggered:
                window.triggered = True
            else:
                continue
            try:
                result = definition.reducer.result(window.accumulator)
            except Exception as e:
                self.instruments.increment("pipeline.transform_error")
                log_with_context(
                    self.logger,
                    "error",
                    f"Dropping window result after reducer error: {e}",
                    exc_info=e,
                    window=window.label,
                    key=key,
                )
                continue
            fired += 1
            emit(Event(time=window.start, data=result, key=key))
        return fired

    def _collect(
        self,
        definition: WindowDefinition,
        partitions: Dict[Optional[str], Dict[str, Window]],
        key: Optional[str],
        watermark: int,
    ) -> None:
        """Garbage collect windows past the allowed lateness"""
        cutoff = watermark - definition.allowed_lateness
        windows = partitions.get(key)
        if windows is None:
            return
        for label in [label for label, w in windows.items() if w.end < cutoff]:
            del windows[label]
        if not windows:
            del partitions[key]

    def windows(self, window_id: int, key: Optional[str] = None) -> List[Window]:
        """Open windows of a partition, oldest first"""
        partition = self._windows.get(window_id, {}).get(key, {})
        return sorted(partition.values(), key=lambda w: (w.start, w.end))

    def window_count(self) -> int:
        return sum(
            len(windows)
            for partitions in self._windows.values()
            for windows in partitions.values()
        )

    def serialize(self) -> Dict[str, Any]:
        """Window state as plain data; accumulators must be plain data too"""
        return {
            str(wid): [
                {
                    "key": key,
                    "start": w.start,
                    "end": w.end,
                    "accumulator": w.accumulator,
                    "triggered": w.triggered,
                    "last_fired": w.last_fired,
                }
                for key, windows in partitions.items()
                for w in windows.values()
            ]
            for wid, partitions in self._windows.items()
        }

    def load(self, data: Dict[str, Any]) -> None:
        """Restore state produced by :meth:`serialize` into the same definitions"""
        for wid, entries in data.items():
            window_id = int(wid)
            if window_id not in self._windows:
                self.logger.warning(f"Ignoring state of unknown window {window_id}")
                continue
            partitions = self._windows[window_id]
            for entry in entries:
                window = Window(
                    start=entry["start"],
                    end=entry["end"],
                    accumulator=entry["accumulator"],
                    triggered=entry.get("triggered", False),
                    last_fired=entry.get("last_fired"),
                )
                partitions.setdefault(entry.get("key"), {})[window.label] = window
