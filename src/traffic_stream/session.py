"""
Database of visitor and robot sessions

A session tracks the activity of one entity (an address, a robot...) until
it has been inactive for longer than its gap. Each session carries two
speed counters and is ranked in two bounded activity indices:

    "24h"   hits over the last 24 hours (per_hour counter)
    "15m"   hits over the last 15 minutes (per_minute counter)
"""

import heapq
import time as _time
from typing import Any, Callable, Dict, List, Optional

from .config import get_default_config
from .instruments import Instruments, get_instruments
from .logger import get_logger
from .speed import SpeedCounter
from .util import now

Session = Dict[str, Any]

INDEX_SPEEDS = {"24h": "per_hour", "15m": "per_minute"}

SORT_INDEXES = {
    "count": "24h",
    "per_hour": "24h",
    "speed": "15m",
    "per_minute": "15m",
}


def _aggregate_speed(session: Session, speed: str) -> int:
    return session["speed"][speed].total()


class SessionStore:
    """Sessions keyed by (type, id), with top-N activity indices per type"""

    def __init__(
        self,
        index_size: Optional[int] = None,
        expiration: Optional[int] = None,
        clock: Callable[[], int] = now,
        instruments: Optional[Instruments] = None,
    ):
        config = get_default_config().session
        self.index_size = config.index_size if index_size is None else index_size
        self.expiration = config.expiration if expiration is None else expiration
        self.clock = clock
        self.instruments = instruments or get_instruments()
        self.logger = get_logger("session")
        # type -> id -> session
        self.sessions: Dict[str, Dict[str, Session]] = {}
        # type -> index name -> id -> aggregated speed
        self.indexes: Dict[str, Dict[str, Dict[str, int]]] = {}

    def _create_speed(self) -> Dict[str, SpeedCounter]:
        return {
            "per_minute": SpeedCounter(60, 15, clock=self.clock),
            "per_hour": SpeedCounter(3600, 24, clock=self.clock),
        }

    def assign(self, type: str, id: str, time: int, gap: int) -> Session:
        """Assign a hit at `time` to the session of (type, id), creating it if needed"""
        session = self.sessions.get(type, {}).get(id)
        if session is None or time - session["end"] > gap:
            session = {
                "type": type,
                "id": id,
                "updated": self.clock(),
                "start": time,
                "end": time + gap,
                "speed": self._create_speed(),
            }
        else:
            session = dict(session)
            session["updated"] = self.clock()
            session["start"] = min(session["start"], time)
            session["end"] = max(session["end"], time + gap)
        for speed in session["speed"].values():
            speed.hit(time)

        self.save(session)
        self.index(session)
        return dict(session)

    def save(self, session: Session) -> None:
        """Store session data, replacing the previous version"""
        self.sessions.setdefault(session["type"], {})[session["id"]] = session

    def index(self, session: Session) -> None:
        """Refresh the rank of a session in the activity indices"""
        indexes = self.indexes.setdefault(session["type"], {"24h": {}, "15m": {}})
        for name, speed in INDEX_SPEEDS.items():
            index = indexes.setdefault(name, {})
            index[session["id"]] = _aggregate_speed(session, speed)
            if len(index) > self.index_size:
                del index[min(index, key=index.__getitem__)]

    def _with_speed(self, session: Session) -> Session:
        computed = dict(session)
        computed["speed"] = {name: speed.compute() for name, speed in session["speed"].items()}
        return computed

    def get(self, type: str, id: str) -> Optional[Session]:
        """Session of the given type and id, with computed speeds"""
        session = self.sessions.get(type, {}).get(id)
        if session is None:
            return None
        return self._with_speed(session)

    def list(
        self,
        type: str,
        sort: str = "count",
        filter: Optional[Callable[[Session], bool]] = None,
        limit: Optional[int] = None,
    ) -> List[Session]:
        """Most active sessions of a type, according to the `sort` index"""
        if sort not in SORT_INDEXES:
            raise ValueError(f"Unknown sort: {sort}")
        index = self.indexes.get(type, {}).get(SORT_INDEXES[sort], {})
        ranked = sorted(index.items(), key=lambda item: item[1], reverse=True)

        sessions = []
        for id, _ in ranked:
            session = self.get(type, id)
            if session is None:
                continue
            if filter is not None and not filter(session):
                continue
            sessions.append(session)
            if limit and len(sessions) >= limit:
                break
        return sessions

    def gc(self, expiration: Optional[int] = None) -> int:
        """
        Drop sessions that ended before `now - expiration` and rebuild the indices

        Returns:
            Number of deleted sessions
        """
        start = _time.perf_counter()
        expiration = self.expiration if expiration is None else expiration
        cutoff = self.clock() - expiration

        removed = 0
        for type, sessions in self.sessions.items():
            with self.instruments.timer(f"session.{type}.gc.expired.time"):
                expired = [id for id, s in sessions.items() if s["end"] < cutoff]
                for id in expired:
                    del sessions[id]
                removed += len(expired)

        for type, indexes in self.indexes.items():
            with self.instruments.timer(f"session.{type}.gc.indexes.time"):
                for name, speed in INDEX_SPEEDS.items():
                    ranked = {}
                    for id in indexes.get(name, {}):
                        session = self.sessions.get(type, {}).get(id)
                        if session is not None:
                            ranked[id] = _aggregate_speed(session, speed)
                    top = heapq.nlargest(self.index_size, ranked.items(), key=lambda item: item[1])
                    indexes[name] = dict(top)

        elapsed = _time.perf_counter() - start
        self.instruments.timing("session.gc.time", elapsed * 1000)
        self.logger.info(f"Session garbage collection in {elapsed:.3f}s, {removed} expired")
        return removed

    def session_count(self, type: Optional[str] = None) -> int:
        if type is not None:
            return len(self.sessions.get(type, {}))
        return sum(len(sessions) for sessions in self.sessions.values())

    def instrument(self) -> None:
        for type, sessions in self.sessions.items():
            self.instruments.gauge(f"sessions.{type}.size", len(sessions))

    def serialize(self) -> Dict[str, Any]:
        return {
            "sessions": {
                type: {
                    id: {
                        **session,
                        "speed": {name: speed.serialize() for name, speed in session["speed"].items()},
                    }
                    for id, session in sessions.items()
                }
                for type, sessions in self.sessions.items()
            },
            "indexes": {
                type: {name: dict(index) for name, index in indexes.items()}
                for type, indexes in self.indexes.items()
            },
        }

    @staticmethod
    def deserialize(
        data: Optional[Dict[str, Any]],
        clock: Callable[[], int] = now,
        **options: Any,
    ) -> "SessionStore":
        store = SessionStore(clock=clock, **options)
        data = data or {}
        for type, sessions in data.get("sessions", {}).items():
            for id, session in sessions.items():
                restored = dict(session)
                restored["speed"] = {
                    name: SpeedCounter.deserialize(speed, clock=clock)
                    for name, speed in session["speed"].items()
                }
                store.sessions.setdefault(type, {})[id] = restored
        store.indexes = {
            type: {name: dict(index) for name, index in indexes.items()}
            for type, indexes in data.get("indexes", {}).items()
        }
        return store
