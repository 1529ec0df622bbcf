"""Request telemetry interceptors for TelemetryMiddleware.

Each interceptor is independent: it is handed the request context on
arrival and, when it needs the outcome, subscribes its own completion
callback.
"""

import re
from collections.abc import Collection
from typing import Any

from telemetripy.adapters.frameworks.asgi import Interceptor, RequestContext
from telemetripy.core.aggregator import MetricAggregator, latency_dimension
from telemetripy.core.log_batcher import LogBatcher
from telemetripy.core.models import LogLevel

_REPEATED_SLASHES = re.compile(r"/{2,}")

AUTH_PATH = "/api/auth"
ORDER_PATH = "/api/order"


def _matches(ctx: RequestContext, methods: Collection[str], path: str) -> bool:
    request_path = _REPEATED_SLASHES.sub("/", ctx.path)
    if len(request_path) > 1:
        request_path = request_path.rstrip("/")
    return ctx.method in methods and request_path == path


def _is_success(status: int | None) -> bool:
    return status is not None and 200 <= status < 300


def _is_failure(status: int | None) -> bool:
    return status is not None and status >= 400


def _get_log_level_for_status(status_code: int | None) -> LogLevel:
    """5xx responses are logged at error level, everything else at info."""
    if status_code is not None and 500 <= status_code < 600:
        return LogLevel.ERROR
    return LogLevel.INFO


def _price(item: Any) -> float:
    if not isinstance(item, dict):
        return 0.0
    price = item.get("price")
    if isinstance(price, bool) or price is None:
        return 0.0
    try:
        return float(price)
    except (TypeError, ValueError):
        return 0.0


class RequestCounter:
    """Counts requests per HTTP method as ``http_requests{method}``."""

    def __init__(self, aggregator: MetricAggregator, name: str = "http_requests") -> None:
        self.aggregator = aggregator
        self.name = name

    def on_request(self, ctx: RequestContext) -> None:
        self.aggregator.record_counter(self.name, {"method": ctx.method})


class LatencyRecorder:
    """Accumulates request latency per method and route."""

    def __init__(self, aggregator: MetricAggregator) -> None:
        self.aggregator = aggregator

    def on_request(self, ctx: RequestContext) -> None:
        ctx.on_complete(self._record)

    def _record(self, ctx: RequestContext) -> None:
        dimension = latency_dimension(
            ctx.method, ctx.route_template, ctx.path, ctx.root_path
        )
        self.aggregator.observe_latency(dimension, ctx.elapsed_ms())


class ActiveUserTracker:
    """Adds authenticated identities to the distinct active-user set."""

    def __init__(self, aggregator: MetricAggregator) -> None:
        self.aggregator = aggregator
        aggregator.enable_active_users()

    def on_request(self, ctx: RequestContext) -> None:
        ctx.on_complete(self._record)

    def _record(self, ctx: RequestContext) -> None:
        self.aggregator.track_active_user(ctx.identity)


class AuthOutcomeTracker:
    """Classifies login/registration attempts as ``auth_attempts{status}``.

    A 2xx response carrying both ``user`` and ``token`` is a success; any
    4xx/5xx response is a failure. Other outcomes are not counted.
    """

    def __init__(
        self,
        aggregator: MetricAggregator,
        path: str = AUTH_PATH,
        methods: Collection[str] = ("POST", "PUT"),
        name: str = "auth_attempts",
    ) -> None:
        self.aggregator = aggregator
        self.path = path
        self.methods = frozenset(m.upper() for m in methods)
        self.name = name
        aggregator.declare_counter(name, {"status": "success"})
        aggregator.declare_counter(name, {"status": "failure"})

    def on_request(self, ctx: RequestContext) -> None:
        if _matches(ctx, self.methods, self.path):
            ctx.on_complete(self._classify)

    def _classify(self, ctx: RequestContext) -> None:
        body = ctx.response_body
        if (
            _is_success(ctx.status_code)
            and isinstance(body, dict)
            and body.get("user")
            and body.get("token")
        ):
            self.aggregator.record_counter(self.name, {"status": "success"})
        elif _is_failure(ctx.status_code):
            self.aggregator.record_counter(self.name, {"status": "failure"})


class OrderOutcomeTracker:
    """Tracks purchases, revenue, failures and latency of order creation."""

    def __init__(
        self,
        aggregator: MetricAggregator,
        path: str = ORDER_PATH,
        methods: Collection[str] = ("POST",),
    ) -> None:
        self.aggregator = aggregator
        self.path = path
        self.methods = frozenset(m.upper() for m in methods)
        aggregator.declare_counter("pizza_purchases")
        aggregator.declare_counter("pizza_creation_failures")
        aggregator.declare_counter("pizza_revenue", initial=0.0)

    def on_request(self, ctx: RequestContext) -> None:
        if _matches(ctx, self.methods, self.path):
            ctx.on_complete(self._record)

    def _record(self, ctx: RequestContext) -> None:
        self.aggregator.observe_latency(
            None, ctx.elapsed_ms(), name="pizza_creation_latency"
        )
        body = ctx.response_body
        if _is_success(ctx.status_code) and isinstance(body, dict) and body.get("order"):
            order = body["order"]
            items = order.get("items") if isinstance(order, dict) else None
            revenue = sum(_price(item) for item in items or [])
            self.aggregator.record_counter("pizza_purchases")
            self.aggregator.record_counter("pizza_revenue", value=float(revenue))
        elif _is_failure(ctx.status_code):
            self.aggregator.record_counter("pizza_creation_failures")


class RequestLogger:
    """Emits one ``http_request`` log entry per completed request."""

    def __init__(self, batcher: LogBatcher) -> None:
        self.batcher = batcher

    def on_request(self, ctx: RequestContext) -> None:
        ctx.on_complete(self._record)

    def _record(self, ctx: RequestContext) -> None:
        fields: dict[str, Any] = {
            "method": ctx.method,
            "path": ctx.target,
            "statusCode": ctx.status_code,
            "latencyMs": ctx.elapsed_ms(),
            "hasAuthorization": ctx.has_header("authorization"),
            "requestBody": ctx.request_body,
            "responseBody": ctx.response_body,
            "ip": ctx.client_ip,
        }
        if ctx.exception is not None:
            fields["exception"] = type(ctx.exception).__name__
        self.batcher.record(
            _get_log_level_for_status(ctx.status_code), "http_request", fields
        )


def default_interceptors(
    aggregator: MetricAggregator, batcher: LogBatcher
) -> list[Interceptor]:
    """The standard chain: logging, counting, latency, users, auth, orders."""
    return [
        RequestLogger(batcher),
        RequestCounter(aggregator),
        LatencyRecorder(aggregator),
        ActiveUserTracker(aggregator),
        AuthOutcomeTracker(aggregator),
        OrderOutcomeTracker(aggregator),
    ]
