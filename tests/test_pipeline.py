"""Tests for the pipeline"""

import asyncio
import logging

import pytest

from traffic_stream.config import EngineConfig, PipelineConfig
from traffic_stream.event import Event
from traffic_stream.inputs import Input, MemoryInput
from traffic_stream.metrics import MetricStore
from traffic_stream.pipeline import Pipeline, comp, filter_events, forward, map_events, multiplex
from traffic_stream.reducers import CountReducer, count, metric, sum_of
from traffic_stream.session import SessionStore
from traffic_stream.window import FixedWindow

T0 = 1704067200  # 2024-01-01T00:00:00Z


def make_log(time="2024-01-01T00:00:10.900Z", address="1.2.3.4", status=200):
    return {
        "request": {"time": time, "address": address, "method": "GET", "url": "/"},
        "response": {"status": status},
    }


def collect(builder):
    """Attach a leaf collecting the events reaching `builder`"""
    results = []
    builder.add(lambda stream: results.append)
    return results


@pytest.fixture
def pipeline(clock, instruments):
    clock.time = T0 + 15
    config = EngineConfig(
        pipeline=PipelineConfig(watermark_delay=0, allowed_lateness=60, sweep_interval=None)
    )
    return Pipeline(config=config, clock=clock, instruments=instruments)


class TestTransformers:
    def test_comp_applies_in_order(self):
        results = []
        xf = comp([map_events(lambda x: x + 1), map_events(lambda x: x * 10)])
        xf(results.append)(Event(time=0, data=1))
        assert results == [Event(time=0, data=20)]

    def test_multiplex_fans_out(self):
        results = []
        xf = multiplex([filter_events(lambda x: x > 0), map_events(lambda x: -x)])
        xf(results.append)(Event(time=0, data=2))
        assert [e.data for e in results] == [2, -2]

    def test_forward_isolates_failures(self, caplog):
        def failing(event):
            raise KeyError("status")

        with caplog.at_level(logging.ERROR, logger="traffic_stream.pipeline"):
            forward(failing, Event(time=0, data={}))

        assert "Dropping event after transform error" in caplog.text


class TestBuilder:
    def test_map_filter_by(self, pipeline):
        results = collect(
            pipeline
            .filter(lambda log: log["response"]["status"] >= 400)
            .map(lambda log: log["request"]["url"])
            .by(lambda url: url.split("/")[1] or None)
        )

        pipeline.handle_event(Event(time=T0, data=make_log(status=404)))
        pipeline.handle_event(Event(time=T0, data=make_log(status=200)))
        pipeline.handle_event(Event(
            time=T0,
            data={"request": {"url": "/admin/login"}, "response": {"status": 403}},
        ))

        assert results == [Event(time=T0, data="/admin/login", key="admin")]

    def test_branches_are_isolated(self, pipeline):
        failing = collect(pipeline.map(lambda log: log["missing"]))
        working = collect(pipeline.map(lambda log: log["request"]["address"]))

        pipeline.handle_event(Event(time=T0, data=make_log()))

        assert failing == []
        assert [e.data for e in working] == ["1.2.3.4"]

    def test_split(self, pipeline):
        errors, others = pipeline.split(lambda log: log["response"]["status"] >= 400)
        error_results, other_results = collect(errors), collect(others)

        for status in (200, 500, 301):
            pipeline.handle_event(Event(time=T0, data=make_log(status=status)))

        assert [e.data["response"]["status"] for e in error_results] == [500]
        assert [e.data["response"]["status"] for e in other_results] == [200, 301]

    def test_window(self, pipeline, clock):
        results = collect(pipeline.window(FixedWindow(10), count()))

        for offset in (10, 11, 12):
            pipeline.handle_event(Event(time=T0 + offset, data=make_log()))
        assert results == []

        clock.advance(5)
        pipeline.windows.sweep()
        assert results == [Event(time=T0 + 10, data=3)]

    def test_window_overrides(self, pipeline):
        pipeline.window(FixedWindow(10), count(), fire_every=5, watermark_delay=2)
        definition = pipeline.windows.definition(0)
        assert definition.watermark_delay == 2
        assert definition.allowed_lateness == 60
        assert definition.fire_every == 5

    def test_metrics_to_store(self, pipeline, clock):
        db = MetricStore(instruments=pipeline.instruments)
        (
            pipeline
            .metrics(lambda log: {"name": "requests", "tags": {"status": log["response"]["status"]}, "value": 1}, db)
            .window(FixedWindow(10), metric(sum_of()))
            .store(db)
        )

        for status in (200, 200, 404):
            pipeline.handle_event(Event(time=T0 + 10, data=make_log(status=status)))
        clock.advance(5)
        pipeline.windows.sweep()

        assert db.query("requests", by="status") == [[T0 + 10, {"200": 2, "404": 1}]]

    def test_session(self, pipeline):
        sessions = SessionStore(clock=pipeline.clock, instruments=pipeline.instruments)
        results = collect(
            pipeline.session(sessions, "ip", 1800, lambda log: log["request"]["address"])
        )

        pipeline.handle_event(Event(time=T0, data=make_log()))
        pipeline.handle_event(Event(time=T0 + 10, data=make_log()))

        session = results[-1].data["session"]
        assert (session["start"], session["end"]) == (T0, T0 + 1810)
        assert sessions.session_count("ip") == 1

    def test_trace(self, pipeline, caplog):
        results = collect(pipeline.trace(lambda event: event.time))
        with caplog.at_level(logging.INFO, logger="traffic_stream.pipeline"):
            pipeline.handle_event(Event(time=T0, data=make_log()))

        assert len(results) == 1
        assert caplog.records[-1].ctx_trace == T0


class TestAsyncMap:
    @pytest.mark.asyncio
    async def test_awaitable_results(self, pipeline):
        async def lookup(log):
            await asyncio.sleep(0)
            return {**log, "country": "FR"}

        results = collect(pipeline.map(lookup))
        pipeline.handle_event(Event(time=T0, data=make_log()))
        assert results == []

        await pipeline.drain()
        assert results[0].data["country"] == "FR"
        assert results[0].time == T0

    @pytest.mark.asyncio
    async def test_failed_awaitable_is_dropped(self, pipeline):
        async def lookup(n):
            await asyncio.sleep(0)
            if n == 2:
                raise ConnectionError("lookup failed")
            return n

        results = collect(pipeline.map(lookup))
        for n in (1, 2, 3):
            pipeline.handle_event(Event(time=T0, data=n))
        await pipeline.drain()

        assert sorted(e.data for e in results) == [1, 3]

    @pytest.mark.asyncio
    async def test_unordered_completion(self, pipeline):
        async def slow(n):
            await asyncio.sleep(n / 100)
            return n

        results = collect(pipeline.map(slow))
        for n in (3, 1, 2):
            pipeline.handle_event(Event(time=T0, data=n))
        await pipeline.drain()

        assert [e.data for e in results] == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_ordered(self, pipeline):
        async def slow(n):
            await asyncio.sleep(n / 100)
            return n

        results = collect(pipeline.map(slow, ordered=True))
        for n in (3, 1, 2):
            pipeline.handle_event(Event(time=T0, data=n))
        await pipeline.drain()

        assert [e.data for e in results] == [3, 1, 2]

    def test_needs_running_loop(self, pipeline, caplog):
        async def lookup(log):
            return log

        results = collect(pipeline.map(lookup))
        with caplog.at_level(logging.ERROR, logger="traffic_stream.pipeline"):
            pipeline.handle_event(Event(time=T0, data=make_log()))

        assert results == []
        assert "running event loop" in caplog.text


class TestLogs:
    def test_valid_log(self, pipeline, instruments):
        results = collect(pipeline)
        assert pipeline.handle_log(make_log())

        assert results[0].time == T0 + 10
        assert instruments.counter("pipeline.valid") == 1

    def test_invalid_log(self, pipeline, instruments, caplog):
        results = collect(pipeline)
        with caplog.at_level(logging.WARNING, logger="traffic_stream.pipeline"):
            assert not pipeline.handle_log({"request": {"time": "now"}})

        assert results == []
        assert instruments.counter("pipeline.invalid") == 1
        assert "Invalid message" in caplog.text


class BrokenInput(Input):
    name = "broken"

    def start(self, handlers):
        raise OSError("Address already in use")


class TestInputs:
    @pytest.mark.asyncio
    async def test_memory_input(self, pipeline):
        results = collect(pipeline)
        source = MemoryInput(logs=[make_log(), "GET / HTTP/1.1", {"request": {}}])
        pipeline.register_input(source)

        await pipeline.start()
        monitor = pipeline.get_monitoring()[0]
        await pipeline.stop()

        assert len(results) == 1
        assert monitor["name"] == "memory"
        assert monitor["status"] == "Running"
        assert sum(monitor["speeds"]["accepted"]["per_minute"]) == 1
        assert sum(monitor["speeds"]["rejected"]["per_minute"]) == 2
        assert pipeline.monitors[0].status == "Stopped"

    @pytest.mark.asyncio
    async def test_failing_input_does_not_stop_others(self, pipeline):
        results = collect(pipeline)
        pipeline.register_input(BrokenInput())
        pipeline.register_input(MemoryInput(logs=[make_log()]))

        await pipeline.start()
        await pipeline.stop()

        assert len(results) == 1
        assert pipeline.monitors[0].status == "Failed to start"

    @pytest.mark.asyncio
    async def test_delayed_replay(self, pipeline):
        results = collect(pipeline)
        pipeline.register_input(MemoryInput(logs=[make_log(), make_log()], delay=0.01))

        await pipeline.start()
        await asyncio.sleep(0.05)
        await pipeline.stop()

        assert len(results) == 2

    @pytest.mark.asyncio
    async def test_sweep_loop_fires_idle_windows(self, clock, instruments):
        clock.time = T0 + 15
        pipeline = Pipeline(
            config=EngineConfig(pipeline=PipelineConfig(watermark_delay=0, sweep_interval=0.01)),
            clock=clock,
            instruments=instruments,
        )
        results = collect(pipeline.window(FixedWindow(10), count()))
        await pipeline.start()

        pipeline.handle_event(Event(time=T0 + 12, data=make_log()))
        clock.advance(5)
        await asyncio.sleep(0.05)
        await pipeline.stop()

        assert results == [Event(time=T0 + 10, data=1)]

    @pytest.mark.asyncio
    async def test_sweep_loop_survives_failing_reducer(self, clock, instruments):
        class BrokenResult(CountReducer):
            def result(self, acc):
                raise ZeroDivisionError("no result")

        clock.time = T0 + 15
        pipeline = Pipeline(
            config=EngineConfig(pipeline=PipelineConfig(watermark_delay=0, sweep_interval=0.01)),
            clock=clock,
            instruments=instruments,
        )
        broken = collect(pipeline.window(FixedWindow(10), BrokenResult()))
        results = collect(pipeline.window(FixedWindow(10), count()))
        await pipeline.start()

        pipeline.handle_event(Event(time=T0 + 12, data=make_log()))
        clock.advance(5)
        await asyncio.sleep(0.05)
        sweep_task = pipeline._tasks[0]
        assert not sweep_task.done()
        await pipeline.stop()

        assert broken == []
        assert results == [Event(time=T0 + 10, data=1)]


def test_state(pipeline):
    pipeline.window(FixedWindow(10), count())
    pipeline.handle_event(Event(time=T0 + 12, data=make_log()))

    state = pipeline.get_state()
    assert state["window_count"] == 1
    assert state["pending"] == 0
    assert state["validation"]["validations_performed"] == 0
