"""
Stream processing language

An event (see :class:`~traffic_stream.event.Event`) has a time in seconds
since UNIX epoch, arbitrary data and an optional partition key.

A stream is a callable receiving events. A transformer turns a downstream
stream into an upstream one. This module provides transformers and a
builder assembling them into a tree: each step forwards its output to all
of its children, and a failure in one branch never reaches its siblings.
"""

import asyncio
import inspect
import math
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from .config import EngineConfig, get_default_config
from .event import Event
from .inputs import Input, InputHandlers
from .instruments import Instruments, get_instruments
from .logger import get_logger, log_with_context
from .metrics import MetricStore
from .monitoring import Monitoring, MonitoringItem
from .reducers import Reducer
from .session import SessionStore
from .util import complement, now, parse_iso8601
from .validation import SchemaValidator, ValidationError, create_log_validator
from .window import WindowStrategy
from .windowing import WindowEngine

Stream = Callable[[Event], None]
Transformer = Callable[[Stream], Stream]

logger = get_logger("pipeline")

_DROPPED = object()


class TransformError(Exception):
    """A transformer step failed on an event"""

    def __init__(self, reason: Any, event: Optional[Event] = None):
        super().__init__(str(reason))
        self.reason = reason
        self.event = event


def report_error(reason: Any, event: Optional[Event] = None) -> None:
    """Log a failed step with the event that caused it"""
    get_instruments().increment("pipeline.transform_error")
    error = reason if isinstance(reason, TransformError) else TransformError(reason, event)
    exc_info = reason if isinstance(reason, BaseException) else None
    log_with_context(
        logger,
        "error",
        f"Dropping event after transform error: {error}",
        exc_info=exc_info,
        event_time=event.time if event else None,
        event_key=event.key if event else None,
        event_data=event.data if event else None,
    )


def forward(stream: Stream, event: Event) -> None:
    """Forward an event to a stream, isolating failures"""
    try:
        stream(event)
    except Exception as e:
        report_error(e, event)


# Transformers

def identity() -> Transformer:
    return lambda stream: stream


def trace_events(f: Callable[[Event], Any] = lambda event: event) -> Transformer:
    """Log `f(event)` and forward the event"""

    def transformer(stream: Stream) -> Stream:
        def on_event(event: Event) -> None:
            logger.info("Trace", extra={"ctx_trace": f(event)})
            forward(stream, event)

        return on_event

    return transformer


async def _resolve(
    awaitable: Any,
    event: Event,
    stream: Stream,
    previous: Optional["asyncio.Future[Any]"],
) -> None:
    try:
        value = await awaitable
    except Exception as e:
        report_error(e, event)
        value = _DROPPED
    if previous is not None:
        # Results of an ordered step leave in arrival order
        await asyncio.wait([previous])
    if value is not _DROPPED:
        forward(stream, event.with_data(value))


def map_events(
    f: Callable[[Any], Any],
    pending: Optional[Set["asyncio.Task[None]"]] = None,
    ordered: bool = False,
) -> Transformer:
    """
    Apply `f` to the data of each event

    `f` can return a value or an awaitable. Awaitables are resolved in a
    task and the event is forwarded once done; ordering between events is
    then only kept when `ordered` is set.
    """

    def transformer(stream: Stream) -> Stream:
        last_task: List[Optional["asyncio.Task[None]"]] = [None]

        def on_event(event: Event) -> None:
            res = f(event.data)
            if not inspect.isawaitable(res):
                forward(stream, event.with_data(res))
                return
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                if inspect.iscoroutine(res):
                    res.close()
                raise TransformError("Asynchronous map step needs a running event loop", event)
            task = loop.create_task(
                _resolve(res, event, stream, last_task[0] if ordered else None)
            )
            if ordered:
                last_task[0] = task
            if pending is not None:
                pending.add(task)
                task.add_done_callback(pending.discard)

        return on_event

    return transformer


def filter_events(pred: Callable[[Any], Any]) -> Transformer:
    """Forward events if `pred(data)` is true"""

    def transformer(stream: Stream) -> Stream:
        def on_event(event: Event) -> None:
            if pred(event.data):
                forward(stream, event)

        return on_event

    return transformer


def key_by(f: Callable[[Any], Optional[str]]) -> Transformer:
    """
    Logically split the stream for each unique value of `f(data)`

    Events for which `f` returns None are dropped.
    """

    def transformer(stream: Stream) -> Stream:
        def on_event(event: Event) -> None:
            value = f(event.data)
            if value is not None:
                forward(stream, event.with_key(value))

        return on_event

    return transformer


def window_events(engine: WindowEngine, window_id: int) -> Transformer:
    """Group events in the windows of definition `window_id`"""

    def transformer(stream: Stream) -> Stream:
        def emit(event: Event) -> None:
            forward(stream, event)

        engine.bind(window_id, emit)

        def on_event(event: Event) -> None:
            engine.process(window_id, event, emit)

        return on_event

    return transformer


def store_metrics(store: MetricStore) -> Transformer:
    """Add each event's metric to `store`, timestamped with the event time"""

    def transformer(stream: Stream) -> Stream:
        def on_event(event: Event) -> None:
            store.add({**event.data, "time": event.time})
            forward(stream, event)

        return on_event

    return transformer


def assign_session(
    store: SessionStore,
    type: str,
    gap: int,
    id: Callable[[Any], Optional[str]],
) -> Transformer:
    """Assign a session to each event and add it to the data as ``session``"""

    def transformer(stream: Stream) -> Stream:
        def on_event(event: Event) -> None:
            session_id = id(event.data)
            if session_id is None:
                return
            session = store.assign(type=type, id=session_id, time=event.time, gap=gap)
            forward(stream, event.with_data({**event.data, "session": session}))

        return on_event

    return transformer


def comp(transformers: List[Transformer]) -> Transformer:
    """Compose transformers sequentially, the first one receiving events first"""

    def transformer(stream: Stream) -> Stream:
        for xf in reversed(transformers):
            stream = xf(stream)
        return stream

    return transformer


def multiplex(transformers: List[Transformer]) -> Transformer:
    """Compose transformers in parallel"""

    def transformer(stream: Stream) -> Stream:
        streams = [xf(stream) for xf in transformers]

        def on_event(event: Event) -> None:
            for s in streams:
                forward(s, event)

        return on_event

    return transformer


class Builder:
    """A node of the pipeline tree"""

    def __init__(self, xf: Transformer, root: Optional["Pipeline"] = None):
        self.xf = xf
        self.children: List["Builder"] = []
        self.root = root

    def add(self, xf: Transformer) -> "Builder":
        child = Builder(xf, self.root)
        self.children.append(child)
        return child

    def map(self, f: Callable[[Any], Any], ordered: bool = False) -> "Builder":
        return self.add(map_events(f, self.root._pending, ordered))

    def filter(self, pred: Callable[[Any], Any]) -> "Builder":
        return self.add(filter_events(pred))

    def split(self, pred: Callable[[Any], Any]) -> Tuple["Builder", "Builder"]:
        """Two branches: events matching `pred` and the others"""
        return self.add(filter_events(pred)), self.add(filter_events(complement(pred)))

    def by(self, f: Callable[[Any], Optional[str]]) -> "Builder":
        return self.add(key_by(f))

    def window(
        self,
        strategy: WindowStrategy,
        reducer: Reducer,
        fire_every: Optional[int] = None,
        watermark_delay: Optional[int] = None,
        allowed_lateness: Optional[int] = None,
    ) -> "Builder":
        config = self.root.config.pipeline
        window_id = self.root.windows.define(
            strategy=strategy,
            reducer=reducer,
            watermark_delay=config.watermark_delay if watermark_delay is None else watermark_delay,
            allowed_lateness=config.allowed_lateness if allowed_lateness is None else allowed_lateness,
            fire_every=fire_every,
        )
        return self.add(window_events(self.root.windows, window_id))

    def metrics(self, f: Callable[[Any], Dict[str, Any]], store: MetricStore) -> "Builder":
        """Map events to metrics and split the stream by series"""
        return self.map(f).by(store.encode_series)

    def store(self, store: MetricStore) -> "Builder":
        return self.add(store_metrics(store))

    def session(
        self,
        store: SessionStore,
        type: str,
        gap: int,
        id: Callable[[Any], Optional[str]],
    ) -> "Builder":
        return self.add(assign_session(store, type, gap, id))

    def trace(self, f: Callable[[Event], Any] = lambda event: event) -> "Builder":
        return self.add(trace_events(f))

    def create(self) -> Transformer:
        """Compile this node and its descendants into one transformer"""
        if not self.children:
            return self.xf
        return comp([self.xf, multiplex([child.create() for child in self.children])])


class Pipeline(Builder):
    """
    Root of the pipeline tree

    Validates the raw logs of its inputs, turns them into events and pushes
    them through the tree. Owns the window state of all window steps.
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        clock: Callable[[], int] = now,
        instruments: Optional[Instruments] = None,
        validator: Optional[SchemaValidator] = None,
    ):
        self.config = config or get_default_config()
        self.clock = clock
        self.instruments = instruments or get_instruments()
        self.validator = validator or create_log_validator()
        self.windows = WindowEngine(clock=clock, instruments=self.instruments)
        self.monitoring = Monitoring(clock=clock)
        self.logger = logger
        self.inputs: List[Input] = []
        self.monitors: List[MonitoringItem] = []
        self.stream: Optional[Stream] = None
        self._pending: Set["asyncio.Task[None]"] = set()
        self._tasks: List["asyncio.Task[None]"] = []
        super().__init__(identity(), root=self)

    def register_input(self, input: Input) -> None:
        self.inputs.append(input)
        self.monitors.append(
            self.monitoring.register(
                name=input.name, type="input", speeds=["accepted", "rejected"]
            )
        )

    def compile(self) -> Stream:
        self.stream = self.create()(lambda event: None)
        return self.stream

    async def start(self) -> None:
        """Compile the tree and start the inputs"""
        self.compile()
        self.logger.info(f"Starting pipeline with {len(self.inputs)} inputs")

        for input, monitor in zip(self.inputs, self.monitors):
            handlers = self._handlers_for(input, monitor)
            try:
                input.start(handlers)
            except Exception as e:
                handlers.status(e, "Failed to start")

        sweep_interval = self.config.pipeline.sweep_interval
        if sweep_interval:
            self._tasks.append(asyncio.create_task(self._sweep_loop(sweep_interval)))

    async def stop(self) -> None:
        """Stop the inputs and wait for in-flight asynchronous steps"""
        self.logger.info("Stopping pipeline")
        await asyncio.gather(*(input.stop() for input in self.inputs), return_exceptions=True)
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        await self.drain()

    async def drain(self) -> None:
        """Wait until no asynchronous map step is in flight"""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def _sweep_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                self.windows.sweep()
            except Exception:
                self.logger.exception("Window sweep failed")

    def _handlers_for(self, input: Input, monitor: MonitoringItem) -> InputHandlers:
        def success(log: Dict[str, Any]) -> None:
            self.handle_log(log, monitor)

        def reject(reason: Any) -> None:
            self.instruments.increment("pipeline.reject")
            monitor.hit("rejected")
            self.logger.warning(f"{input.name}: rejected log: {reason}")

        def status(err: Optional[BaseException], message: str) -> None:
            if err is not None:
                self.logger.error(f"{input.name}: {message}", exc_info=err)
            else:
                self.logger.info(f"{input.name}: {message}")
            monitor.status = message

        def log(message: Any, level: str = "warning") -> None:
            getattr(self.logger, level)(str(message))

        return InputHandlers(success=success, reject=reject, status=status, log=log)

    def to_event(self, log: Dict[str, Any]) -> Event:
        return Event(time=math.floor(parse_iso8601(log["request"]["time"])), data=log)

    def handle_log(self, log: Dict[str, Any], monitor: Optional[MonitoringItem] = None) -> bool:
        """
        Validate a raw log and push it through the pipeline

        Returns:
            True if the log was valid
        """
        self.instruments.increment("pipeline.success")
        try:
            self.validator.validate(log, "log", strict=True)
        except ValidationError as e:
            self.instruments.increment("pipeline.invalid")
            if monitor is not None:
                monitor.hit("rejected")
            self.logger.warning(f"Invalid message: {e}")
            return False

        event = self.to_event(log)
        self.instruments.increment("pipeline.valid")
        if monitor is not None:
            monitor.hit("accepted", event.time)
        self.handle_event(event)
        return True

    def handle_event(self, event: Event) -> None:
        if self.stream is None:
            self.compile()
        self.instruments.gauge("pipeline.event.delta", event.time - self.clock())
        forward(self.stream, event)

    def get_monitoring(self) -> List[Dict[str, Any]]:
        return [monitor.get_computed() for monitor in self.monitors]

    def get_state(self) -> Dict[str, Any]:
        """Get current pipeline state"""
        return {
            "inputs": len(self.inputs),
            "window_count": self.windows.window_count(),
            "pending": len(self._pending),
            "validation": self.validator.get_stats(),
            "instruments": self.instruments.snapshot(),
        }


_pipeline: Optional[Pipeline] = None


def get_pipeline() -> Pipeline:
    """Process-wide pipeline"""
    global _pipeline
    if _pipeline is None:
        _pipeline = Pipeline()
    return _pipeline


def create_pipeline(
    config: Optional[EngineConfig] = None,
    **options: Any,
) -> Pipeline:
    """
    Create a new pipeline instance

    Args:
        config: Optional configuration
        **options: clock, instruments or validator overrides

    Returns:
        Pipeline instance
    """
    return Pipeline(config, **options)
