"""
Traffic Stream

Event-time stream processing of web traffic logs, with an in-memory
time series database and a session database.
"""

__version__ = "0.1.0"

from .config import (
    DataConfig,
    EngineConfig,
    InstrumentsConfig,
    LoggingConfig,
    MetricsConfig,
    PipelineConfig,
    SessionConfig,
    get_default_config,
    set_default_config,
)
from .database import close, connect, connect_metrics, connect_sessions
from .event import Event
from .inputs import Input, InputHandlers, MemoryInput
from .instruments import Instruments, InstrumentsReporter, get_instruments
from .logger import get_logger, log_with_context
from .metrics import MetricStore, create_database, drop_database, get_database
from .monitoring import Monitoring, MonitoringItem
from .pipeline import (
    Builder,
    Pipeline,
    TransformError,
    create_pipeline,
    forward,
    get_pipeline,
)
from .reducers import (
    AvgReducer,
    CountReducer,
    MaxReducer,
    MetricReducer,
    MinReducer,
    Reducer,
    SumReducer,
    avg,
    count,
    max_of,
    metric,
    min_of,
    sum_of,
)
from .session import SessionStore
from .speed import SpeedCounter
from .validation import SchemaValidator, ValidationError, create_log_validator
from .window import Bounds, FixedWindow, SessionWindow, SlidingWindow, WindowStrategy
from .windowing import Window, WindowEngine

__all__ = [
    # Configuration
    "DataConfig",
    "EngineConfig",
    "InstrumentsConfig",
    "LoggingConfig",
    "MetricsConfig",
    "PipelineConfig",
    "SessionConfig",
    "get_default_config",
    "set_default_config",
    # Pipeline
    "Builder",
    "Event",
    "Pipeline",
    "TransformError",
    "create_pipeline",
    "forward",
    "get_pipeline",
    # Inputs
    "Input",
    "InputHandlers",
    "MemoryInput",
    # Windows
    "Bounds",
    "FixedWindow",
    "SessionWindow",
    "SlidingWindow",
    "Window",
    "WindowEngine",
    "WindowStrategy",
    # Reducers
    "AvgReducer",
    "CountReducer",
    "MaxReducer",
    "MetricReducer",
    "MinReducer",
    "Reducer",
    "SumReducer",
    "avg",
    "count",
    "max_of",
    "metric",
    "min_of",
    "sum_of",
    # Stores
    "MetricStore",
    "SessionStore",
    "SpeedCounter",
    "close",
    "connect",
    "connect_metrics",
    "connect_sessions",
    "create_database",
    "drop_database",
    "get_database",
    # Validation
    "SchemaValidator",
    "ValidationError",
    "create_log_validator",
    # Observability
    "Instruments",
    "InstrumentsReporter",
    "Monitoring",
    "MonitoringItem",
    "get_instruments",
    "get_logger",
    "log_with_context",
]
