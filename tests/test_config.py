"""Tests for engine configuration"""

import pytest

from traffic_stream.config import (
    DataConfig,
    EngineConfig,
    MetricsConfig,
    PipelineConfig,
    SessionConfig,
    get_default_config,
    set_default_config,
)


def test_defaults():
    config = EngineConfig()
    assert config.pipeline.watermark_delay == 5
    assert config.pipeline.allowed_lateness == 60
    assert config.metrics.expiration == 24 * 3600
    assert config.session.index_size == 1000
    assert config.data.protocol == "memory"
    assert config.logging.formatter_type == "json"


def test_from_env(monkeypatch):
    monkeypatch.setenv("TRAFFIC_STREAM_WATERMARK_DELAY", "10")
    monkeypatch.setenv("TRAFFIC_STREAM_SWEEP_INTERVAL", "none")
    monkeypatch.setenv("TRAFFIC_STREAM_SESSION_INDEX_SIZE", "50")
    monkeypatch.setenv("TRAFFIC_STREAM_DATA_PROTOCOL", "FILE")
    monkeypatch.setenv("TRAFFIC_STREAM_LOG_FORMATTER", "xml")
    monkeypatch.setenv("TRAFFIC_STREAM_INSTRUMENTS", "false")

    config = EngineConfig.from_env()

    assert config.pipeline.watermark_delay == 10
    assert config.pipeline.sweep_interval is None
    assert config.session.index_size == 50
    assert config.data.protocol == "file"
    assert config.logging.formatter_type == "json"
    assert config.instruments.enabled is False


@pytest.mark.parametrize(
    "factory",
    [
        lambda: PipelineConfig(watermark_delay=-1),
        lambda: PipelineConfig(sweep_interval=0),
        lambda: MetricsConfig(expiration=0),
        lambda: SessionConfig(index_size=0),
        lambda: DataConfig(protocol="redis"),
    ],
)
def test_invalid_values(factory):
    with pytest.raises(ValueError):
        factory()


def test_default_config():
    config = EngineConfig(pipeline=PipelineConfig(watermark_delay=0))
    set_default_config(config)
    assert get_default_config() is config
