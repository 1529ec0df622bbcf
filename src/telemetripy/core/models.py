"""Core domain models for telemetry data."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class LogLevel(str, Enum):
    """Levels accepted by the log batcher."""

    DEBUG = "debug"
    INFO = "info"
    ERROR = "error"


class MetricKind(str, Enum):
    """How a metric is aggregated before it is shipped.

    Counters are cumulative monotonic sums since process start. Gauges are
    snapshots taken at flush time.
    """

    COUNTER = "counter"
    GAUGE = "gauge"


@dataclass(frozen=True)
class LogEntry:
    """A structured log entry waiting in the batcher queue.

    Attributes:
        level: Severity of the entry.
        message: Short tag describing the event (e.g. ``http_request``).
        source: Service/component tag from the log sink configuration.
        hostname: Host that produced the entry.
        timestamp: Unix timestamp in seconds.
        fields: Additional structured fields, already sanitized.
    """

    level: LogLevel
    message: str
    source: str
    hostname: str
    timestamp: float
    fields: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class MetricSample:
    """A single metric observation emitted by a flush.

    Attributes:
        name: Metric name (e.g. http_requests).
        unit: Unit string ("1", "ms", "USD", "percent").
        kind: Counter or gauge.
        value: Integer or floating value.
        attributes: Key-value pairs for metric dimensions.
        timestamp: Unix timestamp in seconds.
    """

    name: str
    unit: str
    kind: MetricKind
    value: int | float
    attributes: dict[str, str] = field(default_factory=dict)
    timestamp: float = 0.0


@dataclass
class LatencyAccumulator:
    """Running total of durations for one latency dimension."""

    total_ms: float = 0.0
    count: int = 0

    def add(self, duration_ms: float) -> None:
        self.total_ms += duration_ms
        self.count += 1

    @property
    def average(self) -> float | None:
        """Mean duration in milliseconds, or None when nothing was observed."""
        if self.count == 0:
            return None
        return self.total_ms / self.count


@dataclass(frozen=True)
class FlushResult:
    """Outcome of a single flush call.

    Attributes:
        sent: Number of entries or samples included in the POST.
        delivered: True when the sink answered with a 2xx status.
        status_code: HTTP status from the sink, None if no request was made
            or the transport failed.
    """

    sent: int = 0
    delivered: bool = False
    status_code: int | None = None
