"""
Time series database to store metrics

A metric is a dict with the following keys:

    time    int      required    Number of seconds since UNIX epoch
    name    str      required    Name of the time series this metric belongs to
    value   number   required    Value of the metric
    tags    dict     optional    Tags associated to this metric (indexed)

A series is identified by its name and its tags. Points of a series are
kept sorted by time, one value per timestamp.
"""

import bisect
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

from .config import get_default_config
from .instruments import Instruments, get_instruments
from .logger import get_logger, log_with_context
from .util import iso

Point = List[Any]  # [time, value]


def series_for(metric: Dict[str, Any]) -> Dict[str, Any]:
    """Tags of the series a metric (or query) belongs to, name included"""
    series = dict(metric.get("tags") or {})
    series["__name"] = metric.get("name")
    return {k: v for k, v in series.items() if v is not None}


def encode(series: Dict[str, Any]) -> str:
    """Canonical string for a series"""
    return ",".join(f"{k}:{v}" for k, v in sorted(series.items()))


def merge_with(merge: Callable[[Any, Any], Any], d1: List[Point], d2: List[Point]) -> List[Point]:
    """Merge two time-sorted lists of points, combining equal timestamps"""
    result: List[Point] = []
    c1 = c2 = 0
    l1, l2 = len(d1), len(d2)
    while c1 < l1 and c2 < l2:
        t1, t2 = d1[c1][0], d2[c2][0]
        if t1 == t2:
            result.append([t1, merge(d1[c1][1], d2[c2][1])])
            c1 += 1
            c2 += 1
        elif t1 < t2:
            result.append(d1[c1])
            c1 += 1
        else:
            result.append(d2[c2])
            c2 += 1
    result.extend(d1[c1:])
    result.extend(d2[c2:])
    return result


def filter_points(data: List[Point], start: Optional[int], end: Optional[int]) -> List[Point]:
    """Points in [start, end["""
    if start is None and end is None:
        return data
    return [
        p for p in data
        if (start is None or p[0] >= start) and (end is None or p[0] < end)
    ]


def aggregate(data: List[Point], step: int) -> List[Point]:
    """
    Sum points per `step` seconds

    Buckets go from the first point's bucket to the last point's bucket;
    buckets without points are filled with 0.
    """
    if not data:
        return []
    first = data[0][0] - data[0][0] % step
    last = data[-1][0] - data[-1][0] % step
    res: List[Point] = []
    c = 0
    size = len(data)
    for bucket in range(first, last + 1, step):
        total = 0
        while c < size and data[c][0] < bucket + step:
            total += data[c][1]
            c += 1
        res.append([bucket, total])
    return res


class MetricStore:
    """In-memory time series database with a tag index"""

    def __init__(
        self,
        delete_after: Optional[int] = None,
        instruments: Optional[Instruments] = None,
    ):
        if delete_after is None:
            delete_after = get_default_config().metrics.expiration
        self.delete_after = delete_after
        self.instruments = instruments or get_instruments()
        self.logger = get_logger("metrics")
        self.series: Dict[str, List[Point]] = {}
        # tag key -> tag value -> series encodings
        self.indices: Dict[str, Dict[str, Set[str]]] = {}

    def encode_series(self, metric: Dict[str, Any]) -> str:
        return encode(series_for(metric))

    def add(self, metric: Dict[str, Any]) -> Dict[str, Any]:
        """Add a metric to the store"""
        series = series_for(metric)
        s = encode(series)
        if s not in self.series:
            self.series[s] = []
            for key, value in series.items():
                self.indices.setdefault(key, {}).setdefault(str(value), set()).add(s)
        self._insert(self.series[s], metric["time"], metric["value"], s)
        return metric

    def _insert(self, data: List[Point], time: int, value: Any, series: str) -> None:
        """Insert keeping `data` sorted; cheap when points come in order"""
        if not data or data[-1][0] < time:
            data.append([time, value])
            return
        for i in range(len(data) - 1, -1, -1):
            if data[i][0] < time:
                data.insert(i + 1, [time, value])
                return
            if data[i][0] == time:
                if data[i][1] > value:
                    log_with_context(
                        self.logger,
                        "warning",
                        "Overwriting metric with a lower value",
                        series=series,
                        time=iso(time),
                        previous=data[i][1],
                        value=value,
                    )
                data[i][1] = value
                return
        data.insert(0, [time, value])

    def _candidates(self, query: Dict[str, Any]) -> Set[str]:
        sets = [
            self.indices.get(key, {}).get(str(value), set())
            for key, value in series_for(query).items()
        ]
        if not sets:
            return set()
        return set.intersection(*sets)

    def query(
        self,
        name: str,
        tags: Optional[Dict[str, str]] = None,
        start: Optional[int] = None,
        end: Optional[int] = None,
        step: Optional[int] = None,
        by: Optional[str] = None,
    ) -> List[Point]:
        """
        Query metrics

        Args:
            name: The name of the time series
            tags: Tags the series must have (exact match)
            start: Lower time bound, inclusive
            end: Upper time bound, exclusive
            step: Group points by intervals of `step` seconds (default 1)
            by: Group results by the values of this tag

        Returns:
            ``[time, value]`` pairs, or ``[time, {tag_value: value}]`` pairs
            when `by` is given
        """
        if step is not None and step <= 0:
            raise ValueError("step must be positive")
        candidates = self._candidates({"name": name, "tags": tags})

        if by is None:
            return self._query_series_set(candidates, start, end, step)

        points: List[Point] = []
        for tag_value, series_set in self.indices.get(by, {}).items():
            data = self._query_series_set(series_set & candidates, start, end, step)
            grouped = [[t, {tag_value: v} if v != 0 else {}] for t, v in data]
            points = merge_with(lambda a, b: {**a, **b}, points, grouped)
        return points

    def _query_series_set(
        self,
        series_set: Iterable[str],
        start: Optional[int],
        end: Optional[int],
        step: Optional[int],
    ) -> List[Point]:
        results: List[Point] = []
        for s in sorted(series_set):
            data = aggregate(filter_points(self.series[s], start, end), step or 1)
            results = merge_with(lambda a, b: a + b, results, data)
        return results

    def gc(self, delete_after: Optional[int] = None) -> int:
        """
        Delete points older than `delete_after` seconds before the most
        recent point of the store

        Returns:
            Number of deleted points
        """
        delete_after = self.delete_after if delete_after is None else delete_after
        if not self.series:
            return 0

        horizon = max((points[-1][0] for points in self.series.values() if points), default=0)
        cutoff = horizon - delete_after
        self.logger.info(f"Garbage collecting points older than {iso(cutoff)}")

        total = 0
        for s in list(self.series):
            points = self.series[s]
            index = bisect.bisect_left([p[0] for p in points], cutoff)
            if index:
                del points[:index]
                total += index
            if not points:
                self._drop_series(s)

        self.instruments.increment("metrics.gc.deleted", total)
        self.logger.info(f"Deleted {total} points")
        return total

    def _drop_series(self, s: str) -> None:
        del self.series[s]
        for key in list(self.indices):
            values = self.indices[key]
            for value in list(values):
                values[value].discard(s)
                if not values[value]:
                    del values[value]
            if not values:
                del self.indices[key]

    def series_count(self) -> int:
        return len(self.series)

    def point_count(self) -> int:
        return sum(len(points) for points in self.series.values())

    def serialize(self) -> Dict[str, Any]:
        return {
            "delete_after": self.delete_after,
            "series": {s: [list(p) for p in points] for s, points in self.series.items()},
            "indices": {
                key: {value: sorted(series_set) for value, series_set in values.items()}
                for key, values in self.indices.items()
            },
        }

    @staticmethod
    def deserialize(data: Optional[Dict[str, Any]]) -> "MetricStore":
        data = data or {}
        store = MetricStore(delete_after=data.get("delete_after"))
        store.series = {
            s: [list(p) for p in points] for s, points in data.get("series", {}).items()
        }
        store.indices = {
            key: {value: set(series) for value, series in values.items()}
            for key, values in data.get("indices", {}).items()
        }
        return store


_databases: Dict[str, MetricStore] = {}


def create_database(name: str, **options: Any) -> MetricStore:
    """Create a named metric store"""
    if name in _databases:
        raise ValueError("A database with the same name already exists.")
    _databases[name] = MetricStore(**options)
    return _databases[name]


def get_database(name: str) -> Optional[MetricStore]:
    return _databases.get(name)


def drop_database(name: str) -> None:
    _databases.pop(name, None)
