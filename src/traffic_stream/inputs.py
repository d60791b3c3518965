"""
Inputs feeding raw logs to the pipeline

An input is started once by the pipeline with a set of handlers and must
call ``success`` for every parsed log. Network listeners and format parsers
live outside the engine; MemoryInput is provided for tests and replays.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from .logger import get_logger


@dataclass
class InputHandlers:
    """Callbacks handed to an input when it starts"""

    success: Callable[[Dict[str, Any]], None]
    reject: Callable[[Any], None]
    status: Callable[[Optional[BaseException], str], None]
    log: Callable[..., None]


class Input(ABC):
    """Base class for inputs"""

    name: str = "input"

    @abstractmethod
    def start(self, handlers: InputHandlers) -> None:
        """Start producing raw logs"""
        pass

    async def stop(self) -> None:
        """Stop producing raw logs"""
        pass


@dataclass
class MemoryInput(Input):
    """
    Replay logs from memory (for testing/development)

    With no delay the logs are delivered synchronously by :meth:`start`;
    otherwise a task delivers them one by one.
    """

    logs: List[Any] = field(default_factory=list)
    name: str = "memory"
    delay: float = 0  # Delay between items (to simulate streaming)

    def __post_init__(self):
        self.logger = get_logger("inputs.memory")
        self._handlers: Optional[InputHandlers] = None
        self._task: Optional[asyncio.Task] = None

    def start(self, handlers: InputHandlers) -> None:
        self._handlers = handlers
        handlers.status(None, "Running")
        if self.delay > 0:
            self._task = asyncio.create_task(self._replay())
        else:
            for log in self.logs:
                self.push(log)

    async def _replay(self) -> None:
        for log in self.logs:
            self.push(log)
            await asyncio.sleep(self.delay)

    def push(self, log: Any) -> None:
        """Deliver one more log"""
        if self._handlers is None:
            raise RuntimeError(f"Input {self.name} is not started")
        if isinstance(log, dict):
            self._handlers.success(log)
        else:
            self._handlers.reject(ValueError(f"Unparsable log: {log!r}"))

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None
        if self._handlers is not None:
            self._handlers.status(None, "Stopped")
