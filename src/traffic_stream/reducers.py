"""
Reducers for the pipeline's window processor

Reducers must be stateless: all state lives in the accumulator the engine
passes back on every call.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Tuple


class Reducer(ABC):
    """Base class for associative window aggregations"""

    @abstractmethod
    def init(self) -> Any:
        """Empty accumulator"""
        pass

    @abstractmethod
    def step(self, acc: Any, value: Any) -> Any:
        """Fold one value into the accumulator"""
        pass

    def result(self, acc: Any) -> Any:
        """Output emitted when the window fires"""
        return acc

    @abstractmethod
    def merge(self, acc1: Any, acc2: Any) -> Any:
        """Combine two accumulators"""
        pass


class CountReducer(Reducer):
    """Count values"""

    def init(self) -> int:
        return 0

    def step(self, acc: int, value: Any) -> int:
        return acc + 1

    def merge(self, acc1: int, acc2: int) -> int:
        return acc1 + acc2


class SumReducer(Reducer):
    """Sum numeric values"""

    def init(self) -> float:
        return 0

    def step(self, acc: float, value: Any) -> float:
        return acc + value

    def merge(self, acc1: float, acc2: float) -> float:
        return acc1 + acc2


class MinReducer(Reducer):
    """Smallest value, None for an empty window"""

    def init(self) -> Optional[float]:
        return None

    def step(self, acc: Optional[float], value: Any) -> float:
        return value if acc is None else min(acc, value)

    def merge(self, acc1: Optional[float], acc2: Optional[float]) -> Optional[float]:
        if acc1 is None:
            return acc2
        if acc2 is None:
            return acc1
        return min(acc1, acc2)


class MaxReducer(Reducer):
    """Largest value, None for an empty window"""

    def init(self) -> Optional[float]:
        return None

    def step(self, acc: Optional[float], value: Any) -> float:
        return value if acc is None else max(acc, value)

    def merge(self, acc1: Optional[float], acc2: Optional[float]) -> Optional[float]:
        if acc1 is None:
            return acc2
        if acc2 is None:
            return acc1
        return max(acc1, acc2)


class AvgReducer(Reducer):
    """Mean of numeric values"""

    def init(self) -> Tuple[float, int]:
        return (0, 0)

    def step(self, acc: Tuple[float, int], value: Any) -> Tuple[float, int]:
        return (acc[0] + value, acc[1] + 1)

    def result(self, acc: Tuple[float, int]) -> Optional[float]:
        total, n = acc
        return total / n if n else None

    def merge(self, acc1: Tuple[float, int], acc2: Tuple[float, int]) -> Tuple[float, int]:
        return (acc1[0] + acc2[0], acc1[1] + acc2[1])


class MetricReducer(Reducer):
    """
    Wrap a reducer so that it works on a metric's value

    The accumulator is a metric ``{"value", "name", "tags"}``: the wrapped
    reducer folds ``value`` while name and tags are copied from the last
    metric seen, so the result can be written straight into a MetricStore.
    """

    def __init__(self, reducer: Reducer):
        self.reducer = reducer

    def init(self) -> Dict[str, Any]:
        return {"value": self.reducer.init()}

    def step(self, acc: Dict[str, Any], metric: Dict[str, Any]) -> Dict[str, Any]:
        updated = dict(acc)
        updated["value"] = self.reducer.step(acc["value"], metric.get("value"))
        for key in ("name", "tags"):
            if key in metric:
                updated[key] = metric[key]
        return updated

    def result(self, acc: Dict[str, Any]) -> Dict[str, Any]:
        res = dict(acc)
        res["value"] = self.reducer.result(acc["value"])
        return res

    def merge(self, acc1: Dict[str, Any], acc2: Dict[str, Any]) -> Dict[str, Any]:
        merged = dict(acc1)
        merged["value"] = self.reducer.merge(acc1["value"], acc2["value"])
        return merged


# Factory functions

def count() -> CountReducer:
    """Create a count reducer"""
    return CountReducer()


def sum_of() -> SumReducer:
    """Create a sum reducer"""
    return SumReducer()


def min_of() -> MinReducer:
    """Create a minimum reducer"""
    return MinReducer()


def max_of() -> MaxReducer:
    """Create a maximum reducer"""
    return MaxReducer()


def avg() -> AvgReducer:
    """Create an average reducer"""
    return AvgReducer()


def metric(reducer: Reducer) -> MetricReducer:
    """Apply `reducer` to the value of metric events"""
    return MetricReducer(reducer)
