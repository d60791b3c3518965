"""
Lifecycle of the stores

A connection owns one store instance, runs its garbage collection on a
fixed interval and, for the ``file`` protocol, loads it from and saves it
to a JSON snapshot in the data directory. Stores only need to provide
``gc()``, ``serialize()`` and a way to rebuild them from serialized data.
"""

import asyncio
import json
import os
import time
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import aiofiles

from .config import get_default_config
from .logger import get_logger
from .metrics import MetricStore
from .session import SessionStore
from .util import now

Factory = Callable[[Optional[Dict[str, Any]]], Any]

logger = get_logger("database")


class Connection:
    """Holds a store and its periodic garbage collection"""

    def __init__(self, name: str, db: Any, gc_interval: Optional[float] = None):
        self.name = name
        self.db = db
        self.gc_interval = gc_interval
        self._tasks: list = []

    def start(self) -> None:
        """Start background tasks; needs a running event loop"""
        if self.gc_interval and not self._tasks:
            self._tasks.append(asyncio.create_task(self._gc_loop()))

    async def _gc_loop(self) -> None:
        while True:
            await asyncio.sleep(self.gc_interval)
            try:
                self.db.gc()
            except Exception:
                logger.exception(f"Garbage collection of {self.name} failed")

    async def _cancel_tasks(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

    async def close(self) -> None:
        await self._cancel_tasks()


class InMemoryConnection(Connection):
    """Connection to a store that lives only in memory"""

    def __init__(self, name: str, factory: Factory, gc_interval: Optional[float] = None):
        super().__init__(name, factory(None), gc_interval)


def read_json_file(path: Path) -> Optional[Dict[str, Any]]:
    """Return the JSON content of the file at `path`, or None if it doesn't exist"""
    try:
        with open(path) as f:
            return json.load(f)
    except FileNotFoundError:
        return None


async def write_json_file(path: Path, data: Dict[str, Any]) -> None:
    """Write `data` next to `path` then move it in place"""
    tmp_path = path.with_name(path.name + ".new")
    async with aiofiles.open(tmp_path, "w") as f:
        await f.write(json.dumps(data, indent=2))
    os.replace(tmp_path, path)


class FileConnection(Connection):
    """Connection to a store saved in the data directory"""

    def __init__(
        self,
        name: str,
        factory: Factory,
        gc_interval: Optional[float] = None,
        directory: Optional[str] = None,
        save_interval: Optional[float] = None,
    ):
        config = get_default_config().data
        self.directory = Path(directory or config.directory)
        self.save_interval = save_interval or config.save_interval
        self.file_path = self.directory / f"{name}.json"

        start = time.perf_counter()
        db = factory(read_json_file(self.file_path))
        super().__init__(name, db, gc_interval)
        logger.info(f"Loaded {self.file_path} in {time.perf_counter() - start:.3f}s")

    def start(self) -> None:
        first_start = not self._tasks
        super().start()
        if first_start:
            self._tasks.append(asyncio.create_task(self._save_loop()))

    async def _save_loop(self) -> None:
        while True:
            await asyncio.sleep(self.save_interval)
            try:
                await self.save()
            except OSError:
                logger.exception(f"Saving {self.file_path} failed")

    async def save(self) -> None:
        start = time.perf_counter()
        self.directory.mkdir(parents=True, exist_ok=True)
        await write_json_file(self.file_path, self.db.serialize())
        logger.info(f"Saved {self.file_path} in {time.perf_counter() - start:.3f}s")

    async def close(self) -> None:
        await super().close()
        await self.save()


# Connections cached by name
_connections: Dict[str, Connection] = {}


def connect(
    name: str,
    factory: Factory,
    protocol: Optional[str] = None,
    gc_interval: Optional[float] = None,
    **options: Any,
) -> Connection:
    """
    Connect to the store called `name`

    The `protocol` can be:

        'memory'    In-memory store
        'file'      JSON snapshot in the data directory

    Raises:
        ValueError: If the protocol is unknown
    """
    if name in _connections:
        return _connections[name]

    protocol = protocol or get_default_config().data.protocol
    if protocol == "memory":
        conn: Connection = InMemoryConnection(name, factory, gc_interval)
    elif protocol == "file":
        conn = FileConnection(name, factory, gc_interval, **options)
    else:
        raise ValueError(f"Unknown database protocol: {protocol}")

    _connections[name] = conn
    return conn


def connect_metrics(name: str = "metrics", protocol: Optional[str] = None, **options: Any) -> Connection:
    """Connect to a MetricStore collected every ``metrics.gc_interval`` seconds"""
    config = get_default_config().metrics
    return connect(name, MetricStore.deserialize, protocol, config.gc_interval, **options)


def connect_sessions(
    name: str = "sessions",
    protocol: Optional[str] = None,
    clock: Callable[[], int] = now,
    **options: Any,
) -> Connection:
    """Connect to a SessionStore collected every ``session.gc_interval`` seconds"""
    config = get_default_config().session

    def factory(data: Optional[Dict[str, Any]]) -> SessionStore:
        return SessionStore.deserialize(data, clock=clock)

    return connect(name, factory, protocol, config.gc_interval, **options)


async def close() -> None:
    """Close all opened connections; must be called when the process exits"""
    connections = list(_connections.values())
    _connections.clear()
    await asyncio.gather(*(conn.close() for conn in connections))
