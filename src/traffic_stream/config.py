import os
from dataclasses import dataclass, field
from typing import Literal, Optional

FormatterType = Literal["json", "plain"]
Protocol = Literal["memory", "file"]


@dataclass
class PipelineConfig:
    """Event-time settings applied to windows that don't override them"""

    watermark_delay: int = 5  # Seconds behind wall clock
    allowed_lateness: int = 60  # Seconds of grace after the watermark
    sweep_interval: Optional[float] = 1.0  # Fire idle windows, None disables

    def __post_init__(self):
        if self.watermark_delay < 0:
            raise ValueError("watermark_delay must not be negative")
        if self.allowed_lateness < 0:
            raise ValueError("allowed_lateness must not be negative")
        if self.sweep_interval is not None and self.sweep_interval <= 0:
            raise ValueError("sweep_interval must be positive")


@dataclass
class MetricsConfig:
    """Retention of the metric store"""

    expiration: int = 24 * 3600  # Seconds of history kept
    gc_interval: float = 60.0

    def __post_init__(self):
        if self.expiration <= 0:
            raise ValueError("expiration must be positive")
        if self.gc_interval <= 0:
            raise ValueError("gc_interval must be positive")


@dataclass
class SessionConfig:
    """Retention and indexing of the session store"""

    index_size: int = 1000  # Max ids kept in each activity index
    expiration: int = 3600
    gc_interval: float = 60.0

    def __post_init__(self):
        if self.index_size <= 0:
            raise ValueError("index_size must be positive")
        if self.expiration <= 0:
            raise ValueError("expiration must be positive")
        if self.gc_interval <= 0:
            raise ValueError("gc_interval must be positive")


@dataclass
class DataConfig:
    """Where store snapshots live"""

    protocol: Protocol = "memory"
    directory: str = "data"
    save_interval: float = 3600.0

    def __post_init__(self):
        if self.protocol not in ("memory", "file"):
            raise ValueError(f"Unknown database protocol: {self.protocol}")
        if self.save_interval <= 0:
            raise ValueError("save_interval must be positive")


@dataclass
class LoggingConfig:
    """Configuration of the engine's own logs"""

    log_level: str = "INFO"
    formatter_type: FormatterType = "json"
    include_timestamp: bool = True


@dataclass
class InstrumentsConfig:
    """Internal counters and their optional HTTP export"""

    enabled: bool = True
    endpoint: Optional[str] = None  # POST target for snapshots
    report_interval: float = 30.0

    def __post_init__(self):
        if self.report_interval <= 0:
            raise ValueError("report_interval must be positive")


@dataclass
class EngineConfig:
    """Configuration for the whole engine"""

    pipeline: PipelineConfig = field(default_factory=PipelineConfig)
    metrics: MetricsConfig = field(default_factory=MetricsConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    data: DataConfig = field(default_factory=DataConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    instruments: InstrumentsConfig = field(default_factory=InstrumentsConfig)

    @classmethod
    def _parse_bool_env(cls, key: str, default: str = "false") -> bool:
        """Parse boolean from environment variable"""
        return os.getenv(key, default).lower() == "true"

    @classmethod
    def _create_pipeline_config_from_env(cls) -> PipelineConfig:
        sweep = os.getenv("TRAFFIC_STREAM_SWEEP_INTERVAL", "1.0")
        return PipelineConfig(
            watermark_delay=int(os.getenv("TRAFFIC_STREAM_WATERMARK_DELAY", "5")),
            allowed_lateness=int(os.getenv("TRAFFIC_STREAM_ALLOWED_LATENESS", "60")),
            sweep_interval=float(sweep) if sweep.lower() != "none" else None,
        )

    @classmethod
    def _create_metrics_config_from_env(cls) -> MetricsConfig:
        return MetricsConfig(
            expiration=int(os.getenv("TRAFFIC_STREAM_METRICS_EXPIRATION", str(24 * 3600))),
            gc_interval=float(os.getenv("TRAFFIC_STREAM_METRICS_GC_INTERVAL", "60")),
        )

    @classmethod
    def _create_session_config_from_env(cls) -> SessionConfig:
        return SessionConfig(
            index_size=int(os.getenv("TRAFFIC_STREAM_SESSION_INDEX_SIZE", "1000")),
            expiration=int(os.getenv("TRAFFIC_STREAM_SESSION_EXPIRATION", "3600")),
            gc_interval=float(os.getenv("TRAFFIC_STREAM_SESSION_GC_INTERVAL", "60")),
        )

    @classmethod
    def _create_data_config_from_env(cls) -> DataConfig:
        return DataConfig(
            protocol=os.getenv("TRAFFIC_STREAM_DATA_PROTOCOL", "memory").lower(),
            directory=os.getenv("TRAFFIC_STREAM_DATA_DIRECTORY", "data"),
            save_interval=float(os.getenv("TRAFFIC_STREAM_SAVE_INTERVAL", "3600")),
        )

    @classmethod
    def _create_logging_config_from_env(cls) -> LoggingConfig:
        formatter_type = os.getenv("TRAFFIC_STREAM_LOG_FORMATTER", "json").lower()
        if formatter_type not in ["json", "plain"]:
            formatter_type = "json"

        return LoggingConfig(
            log_level=os.getenv("TRAFFIC_STREAM_LOG_LEVEL", "INFO"),
            formatter_type=formatter_type,
            include_timestamp=cls._parse_bool_env("TRAFFIC_STREAM_LOG_TIMESTAMP", "true"),
        )

    @classmethod
    def _create_instruments_config_from_env(cls) -> InstrumentsConfig:
        return InstrumentsConfig(
            enabled=cls._parse_bool_env("TRAFFIC_STREAM_INSTRUMENTS", "true"),
            endpoint=os.getenv("TRAFFIC_STREAM_INSTRUMENTS_ENDPOINT"),
            report_interval=float(os.getenv("TRAFFIC_STREAM_INSTRUMENTS_INTERVAL", "30")),
        )

    @classmethod
    def from_env(cls) -> "EngineConfig":
        """Create configuration from environment variables"""
        return cls(
            pipeline=cls._create_pipeline_config_from_env(),
            metrics=cls._create_metrics_config_from_env(),
            session=cls._create_session_config_from_env(),
            data=cls._create_data_config_from_env(),
            logging=cls._create_logging_config_from_env(),
            instruments=cls._create_instruments_config_from_env(),
        )


_default_config: Optional[EngineConfig] = None


def get_default_config() -> EngineConfig:
    """Get the default configuration instance"""
    global _default_config
    if _default_config is None:
        _default_config = EngineConfig.from_env()
    return _default_config


def set_default_config(config: EngineConfig) -> None:
    """Set the default configuration instance"""
    global _default_config
    _default_config = config
