"""
Shared fixtures for traffic_stream tests
"""

import pytest

from traffic_stream import database, metrics
from traffic_stream.config import EngineConfig, set_default_config
from traffic_stream.instruments import Instruments


class FakeClock:
    """Controllable replacement for util.now"""

    def __init__(self, time: int = 0):
        self.time = time

    def __call__(self) -> int:
        return self.time

    def advance(self, seconds: int) -> None:
        self.time += seconds


@pytest.fixture
def clock():
    return FakeClock(1000)


@pytest.fixture
def instruments():
    return Instruments()


@pytest.fixture(autouse=True)
def reset_global_state():
    """Each test starts with default config and no named stores"""
    set_default_config(EngineConfig())
    yield
    metrics._databases.clear()
    database._connections.clear()
    set_default_config(EngineConfig())
