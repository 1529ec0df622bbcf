"""Metric aggregator: in-memory counters, gauges and latency accumulators.

Everything recorded here is shipped as one OTLP payload per flush:

- counters are cumulative since process start and are never reset,
- gauges are the last value recorded before the flush,
- latency accumulators become a gauge holding the average of the interval
  and are then purged, so idle dimensions disappear from the next flush.
"""

import re
import threading
import time
from collections.abc import Mapping

import psutil

from telemetripy.adapters.logging import forwarding_suppressed, get_logger
from telemetripy.config import MetricsSettings
from telemetripy.core.encoding.otlp import encode_metrics
from telemetripy.core.models import (
    FlushResult,
    LatencyAccumulator,
    MetricKind,
    MetricSample,
)
from telemetripy.core.ports import SinkTransportPort
from telemetripy.core.sanitizer import to_json

logger = get_logger(__name__)

HTTP_LATENCY_METRIC = "http_request_latency"
ACTIVE_USERS_METRIC = "active_users"

DEFAULT_UNITS: dict[str, str] = {
    HTTP_LATENCY_METRIC: "ms",
    "pizza_creation_latency": "ms",
    "pizza_revenue": "USD",
    "cpu_usage": "percent",
    "memory_usage": "percent",
}

_REPEATED_SLASHES = re.compile(r"/{2,}")

AttributeKey = tuple[tuple[str, str], ...]
DimensionKey = Mapping[str, str] | AttributeKey | None


def _attr_key(attributes: DimensionKey) -> AttributeKey:
    if not attributes:
        return ()
    items = attributes.items() if isinstance(attributes, Mapping) else attributes
    return tuple(sorted((str(k), str(v)) for k, v in items))


def normalize_route(
    route_template: str | None, raw_path: str, prefix: str = ""
) -> str:
    """Pick the path used as the ``route`` latency attribute.

    The matched route template wins over the raw path so ``/api/order/1`` and
    ``/api/order/2`` land in the same dimension. Repeated separators are
    collapsed in both cases.

    Args:
        route_template: Template of the matched route, e.g. ``/api/order/{id}``.
        raw_path: Path of the request target, used when no template matched.
        prefix: Mount prefix to prepend to the template (ASGI root_path).
    """
    if route_template:
        route = f"{prefix}/{route_template}"
    else:
        route = raw_path or "/"
    return _REPEATED_SLASHES.sub("/", route)


def latency_dimension(
    method: str, route_template: str | None, raw_path: str, prefix: str = ""
) -> dict[str, str]:
    """Dimension attributes for the HTTP latency accumulator."""
    return {
        "method": method.upper(),
        "route": normalize_route(route_template, raw_path, prefix),
    }


class MetricAggregator:
    """Process-local metric state shared by interceptors and the scheduler.

    All mutators are O(1) and hold ``_lock`` only for the dictionary update.
    ``collect`` copies counters and swaps out the latency accumulators in
    the same lock, and ``flush`` releases it before any network I/O.
    """

    def __init__(
        self,
        settings: MetricsSettings,
        transport: SinkTransportPort,
        units: Mapping[str, str] | None = None,
    ) -> None:
        self.settings = settings
        self._transport = transport
        self._units: dict[str, str] = {**DEFAULT_UNITS, **(units or {})}
        self._lock = threading.Lock()
        self._counters: dict[tuple[str, AttributeKey], int | float] = {}
        self._gauges: dict[tuple[str, AttributeKey], int | float] = {}
        self._latency: dict[tuple[str, AttributeKey], LatencyAccumulator] = {}
        self._active_users: set[str] = set()
        self._active_users_enabled = False

    def unit_for(self, name: str) -> str:
        return self._units.get(name, "1")

    def declare_counter(
        self,
        name: str,
        attributes: Mapping[str, str] | None = None,
        initial: int | float = 0,
    ) -> None:
        """Register a counter so it is reported before its first hit.

        ``initial`` also fixes the wire type: pass ``0.0`` for a counter that
        accumulates fractional values.
        """
        key = (name, _attr_key(attributes))
        with self._lock:
            self._counters.setdefault(key, initial)

    def record_counter(
        self,
        name: str,
        attributes: Mapping[str, str] | None = None,
        value: int | float = 1,
    ) -> None:
        """Add ``value`` to the cumulative counter ``name``/``attributes``.

        Negative increments are ignored; counters never decrease.
        """
        if value < 0:
            logger.debug("Ignored negative counter increment", metric=name, value=value)
            return
        key = (name, _attr_key(attributes))
        with self._lock:
            self._counters[key] = self._counters.get(key, 0) + value

    def record_gauge(
        self,
        name: str,
        value: int | float,
        attributes: Mapping[str, str] | None = None,
    ) -> None:
        """Set the gauge ``name``/``attributes`` to ``value``."""
        key = (name, _attr_key(attributes))
        with self._lock:
            self._gauges[key] = value

    def observe_latency(
        self,
        dimension_key: DimensionKey,
        duration_ms: float,
        name: str = HTTP_LATENCY_METRIC,
    ) -> None:
        """Accumulate one duration for a latency dimension.

        Args:
            dimension_key: Attributes identifying the dimension, e.g. the
                result of ``latency_dimension``; None for an undimensioned
                accumulator.
            duration_ms: Elapsed time in milliseconds.
            name: Gauge name the interval average is reported under.
        """
        key = (name, _attr_key(dimension_key))
        with self._lock:
            accumulator = self._latency.get(key)
            if accumulator is None:
                accumulator = self._latency[key] = LatencyAccumulator()
            accumulator.add(duration_ms)

    def enable_active_users(self) -> None:
        """Report the ``active_users`` gauge on every flush, even when zero."""
        self._active_users_enabled = True

    def track_active_user(self, identity: str | int | None) -> None:
        """Add an authenticated identity to the distinct active-user set."""
        if identity is None or identity == "":
            return
        with self._lock:
            self._active_users_enabled = True
            self._active_users.add(str(identity))

    def counter_value(
        self, name: str, attributes: Mapping[str, str] | None = None
    ) -> int | float:
        """Current cumulative value of a counter (0 if never recorded)."""
        with self._lock:
            return self._counters.get((name, _attr_key(attributes)), 0)

    def _system_samples(self, now: float) -> list[MetricSample]:
        try:
            cpu = float(psutil.cpu_percent(interval=None))
            memory = float(psutil.virtual_memory().percent)
        except (OSError, RuntimeError, psutil.Error) as e:
            logger.debug("System metrics unavailable", error=str(e))
            return []
        return [
            MetricSample(
                "cpu_usage", self.unit_for("cpu_usage"), MetricKind.GAUGE, cpu, {}, now
            ),
            MetricSample(
                "memory_usage",
                self.unit_for("memory_usage"),
                MetricKind.GAUGE,
                memory,
                {},
                now,
            ),
        ]

    def discard_interval(self) -> None:
        """Drop the interval state ``collect`` would have reset."""
        with self._lock:
            self._latency = {}
            if self.settings.reset_active_users:
                self._active_users = set()

    def collect(self) -> list[MetricSample]:
        """Snapshot all live metrics and reset the interval state.

        Returns:
            One sample per counter, gauge and non-empty latency dimension,
            plus ``active_users`` when enabled and system gauges when
            configured.
        """
        now = time.time()
        with self._lock:
            counters = list(self._counters.items())
            gauges = list(self._gauges.items())
            latency, self._latency = self._latency, {}
            active_users = (
                len(self._active_users) if self._active_users_enabled else None
            )
            if self.settings.reset_active_users:
                self._active_users = set()

        samples = [
            MetricSample(
                name, self.unit_for(name), MetricKind.COUNTER, value, dict(attrs), now
            )
            for (name, attrs), value in counters
        ]
        samples.extend(
            MetricSample(
                name, self.unit_for(name), MetricKind.GAUGE, value, dict(attrs), now
            )
            for (name, attrs), value in gauges
        )
        for (name, attrs), accumulator in latency.items():
            average = accumulator.average
            if average is None:
                continue
            samples.append(
                MetricSample(
                    name,
                    self.unit_for(name),
                    MetricKind.GAUGE,
                    float(average),
                    dict(attrs),
                    now,
                )
            )
        if active_users is not None:
            samples.append(
                MetricSample(
                    ACTIVE_USERS_METRIC, "1", MetricKind.GAUGE, active_users, {}, now
                )
            )
        if self.settings.system_metrics:
            samples.extend(self._system_samples(now))
        return samples

    async def flush(self) -> FlushResult:
        """Collect and push every live metric in a single OTLP request.

        When the sink is not configured nothing is sent, but the interval's
        latency accumulators are still purged so they cannot grow without
        bound. Failed deliveries are logged together with the payload and are
        not retried; counters still carry the lost interval on the next flush.
        """
        if not self.settings.configured:
            self.discard_interval()
            return FlushResult()

        samples = self.collect()
        if not samples:
            return FlushResult()

        payload = encode_metrics(samples, self.settings.source)
        try:
            with forwarding_suppressed():
                response = await self._transport.post(
                    str(self.settings.url),
                    payload,
                    {"Authorization": f"Bearer {self.settings.api_key}"},
                )
        except Exception as e:
            logger.error(
                "Error pushing metrics",
                error=f"{type(e).__name__}: {e!s}",
                payload=to_json(payload),
            )
            return FlushResult(sent=len(samples))

        if not response.ok:
            logger.error(
                "Failed to push metrics",
                status=response.status_code,
                body=response.text,
                payload=to_json(payload),
            )
            return FlushResult(sent=len(samples), status_code=response.status_code)

        return FlushResult(
            sent=len(samples), delivered=True, status_code=response.status_code
        )
