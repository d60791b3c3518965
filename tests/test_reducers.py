"""Tests for window reducers"""

from functools import reduce

from traffic_stream.reducers import avg, count, max_of, metric, min_of, sum_of


def fold(reducer, values):
    return reducer.result(reduce(reducer.step, values, reducer.init()))


def test_count():
    assert fold(count(), ["a", "b", "c"]) == 3
    assert fold(count(), []) == 0


def test_sum():
    assert fold(sum_of(), [1, 2, 3.5]) == 6.5


def test_min_max():
    assert fold(min_of(), [3, 1, 2]) == 1
    assert fold(max_of(), [3, 1, 2]) == 3
    assert fold(min_of(), []) is None
    assert max_of().merge(None, 4) == 4


def test_avg():
    reducer = avg()
    assert fold(reducer, [1, 2, 3, 6]) == 3
    assert fold(reducer, []) is None
    merged = reducer.merge(reducer.step(reducer.init(), 2), reducer.step(reducer.init(), 4))
    assert reducer.result(merged) == 3


def test_merge_is_consistent_with_step():
    reducer = sum_of()
    left = reduce(reducer.step, [1, 2], reducer.init())
    right = reduce(reducer.step, [3, 4], reducer.init())
    assert reducer.merge(left, right) == reduce(reducer.step, [1, 2, 3, 4], reducer.init())


class TestMetricReducer:
    def test_keeps_name_and_tags(self):
        reducer = metric(sum_of())
        metrics = [
            {"name": "hits", "tags": {"host": "a"}, "value": 2},
            {"name": "hits", "tags": {"host": "a"}, "value": 3},
        ]
        assert fold(reducer, metrics) == {"name": "hits", "tags": {"host": "a"}, "value": 5}

    def test_count_of_metrics(self):
        reducer = metric(count())
        result = fold(reducer, [{"name": "hits", "value": 10}, {"name": "hits", "value": 1}])
        assert result == {"name": "hits", "value": 2}

    def test_accumulator_is_not_mutated(self):
        reducer = metric(sum_of())
        acc = reducer.init()
        reducer.step(acc, {"name": "hits", "value": 1})
        assert acc == {"value": 0}
