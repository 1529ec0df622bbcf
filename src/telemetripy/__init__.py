"""telemetripy - request telemetry shipped to Loki and OTLP collectors.

Build a ``Telemetry`` at startup, hand it to the middleware and start the
schedulers from the application's lifespan.
"""

from telemetripy.adapters.frameworks.asgi import RequestContext, TelemetryMiddleware
from telemetripy.adapters.frameworks.interceptors import (
    ActiveUserTracker,
    AuthOutcomeTracker,
    LatencyRecorder,
    OrderOutcomeTracker,
    RequestCounter,
    RequestLogger,
    default_interceptors,
)
from telemetripy.adapters.logging import (
    BatcherLogHandler,
    configure_logging,
    get_logger,
)
from telemetripy.config import (
    LogSinkSettings,
    MetricsSettings,
    TelemetrySettings,
    get_settings,
)
from telemetripy.core.aggregator import MetricAggregator, latency_dimension
from telemetripy.core.log_batcher import LogBatcher
from telemetripy.core.models import (
    FlushResult,
    LatencyAccumulator,
    LogEntry,
    LogLevel,
    MetricKind,
    MetricSample,
)
from telemetripy.core.sanitizer import SanitizerPolicy, safe_json, sanitize
from telemetripy.runtime import FlushScheduler, Telemetry

__all__ = [
    # Models
    "FlushResult",
    "LatencyAccumulator",
    "LogEntry",
    "LogLevel",
    "MetricKind",
    "MetricSample",
    # Core
    "LogBatcher",
    "MetricAggregator",
    "SanitizerPolicy",
    "latency_dimension",
    "safe_json",
    "sanitize",
    # Config
    "LogSinkSettings",
    "MetricsSettings",
    "TelemetrySettings",
    "get_settings",
    # Runtime
    "FlushScheduler",
    "Telemetry",
    # Middleware
    "ActiveUserTracker",
    "AuthOutcomeTracker",
    "LatencyRecorder",
    "OrderOutcomeTracker",
    "RequestContext",
    "RequestCounter",
    "RequestLogger",
    "TelemetryMiddleware",
    "default_interceptors",
    # Logging
    "BatcherLogHandler",
    "configure_logging",
    "get_logger",
]
