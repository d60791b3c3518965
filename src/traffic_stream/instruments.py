"""
Internal instrumentation of the engine

Counters, gauges and timings recorded by the pipeline and the stores.
A reporter periodically logs a snapshot and can push it to an HTTP
endpoint for an external collector.
"""

import asyncio
import time
from collections import defaultdict
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

import aiohttp

from .config import InstrumentsConfig, get_default_config
from .logger import get_logger
from .util import now


class Instruments:
    """In-process registry of counters, gauges and timings"""

    def __init__(self, enabled: bool = True):
        self.enabled = enabled
        self._counters: Dict[str, int] = defaultdict(int)
        self._gauges: Dict[str, float] = {}
        self._timings: Dict[str, float] = {}

    def increment(self, name: str, value: int = 1) -> None:
        if self.enabled:
            self._counters[name] += value

    def gauge(self, name: str, value: float) -> None:
        if self.enabled:
            self._gauges[name] = value

    def timing(self, name: str, milliseconds: float) -> None:
        if self.enabled:
            self._timings[name] = milliseconds

    @contextmanager
    def timer(self, name: str) -> Iterator[None]:
        """Record the wall time of the block, in milliseconds"""
        start = time.perf_counter()
        try:
            yield
        finally:
            self.timing(name, (time.perf_counter() - start) * 1000)

    def counter(self, name: str) -> int:
        return self._counters.get(name, 0)

    def get_gauge(self, name: str) -> Optional[float]:
        return self._gauges.get(name)

    def snapshot(self) -> Dict[str, Any]:
        return {
            "timestamp": now(),
            "counters": dict(self._counters),
            "gauges": dict(self._gauges),
            "timings": dict(self._timings),
        }

    def reset(self) -> None:
        self._counters.clear()
        self._gauges.clear()
        self._timings.clear()


class InstrumentsReporter:
    """Periodically logs instruments and optionally POSTs them"""

    def __init__(
        self,
        instruments: "Instruments",
        config: Optional[InstrumentsConfig] = None,
    ):
        self.instruments = instruments
        self.config = config or get_default_config().instruments
        self.logger = get_logger("instruments")
        self._task: Optional[asyncio.Task] = None

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._report_loop())

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None

    async def _report_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.report_interval)
            await self.report()

    async def report(self) -> Dict[str, Any]:
        """Emit one snapshot"""
        snapshot = self.instruments.snapshot()
        self.logger.info("Engine instruments", extra={"ctx_instruments": snapshot})

        if self.config.endpoint:
            await self._export(snapshot)
        return snapshot

    async def _export(self, snapshot: Dict[str, Any]) -> None:
        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(self.config.endpoint, json=snapshot) as resp:
                    if resp.status >= 300:
                        self.logger.error(f"Failed to export instruments: {resp.status}")
        except aiohttp.ClientError as e:
            self.logger.error(f"Failed to export instruments: {e}")


_instruments: Optional[Instruments] = None


def get_instruments() -> Instruments:
    """Process-wide instruments registry"""
    global _instruments
    if _instruments is None:
        _instruments = Instruments(get_default_config().instruments.enabled)
    return _instruments
