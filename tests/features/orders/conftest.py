"""BDD step definitions for order and authentication outcome metrics."""

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any

import pytest
from pytest_bdd import given, parsers, then, when

from telemetripy.adapters.frameworks.asgi import TelemetryMiddleware
from telemetripy.adapters.frameworks.interceptors import default_interceptors
from telemetripy.core.aggregator import MetricAggregator
from telemetripy.core.log_batcher import LogBatcher
from telemetripy.core.models import MetricKind, MetricSample


@dataclass
class OrderScenarioContext:
    """Shared state between steps in an outcome scenario."""

    aggregator: MetricAggregator | None = None
    interceptors: list[Any] = field(default_factory=list)
    responses: list[dict[str, Any]] = field(default_factory=list)


@pytest.fixture
def ctx() -> OrderScenarioContext:
    """Fresh scenario context for each test."""
    return OrderScenarioContext()


def run_async(coro: Any) -> Any:
    """Run a coroutine synchronously."""
    return asyncio.run(coro)


async def simulate_request(
    ctx: OrderScenarioContext,
    method: str,
    path: str,
    status: int,
    response_body: dict[str, Any],
) -> None:
    """Send one request through the middleware to a fixed JSON endpoint."""

    async def app(scope: Any, receive: Any, send: Any) -> None:
        await receive()
        await send(
            {
                "type": "http.response.start",
                "status": status,
                "headers": [(b"content-type", b"application/json")],
            }
        )
        await send(
            {"type": "http.response.body", "body": json.dumps(response_body).encode()}
        )

    async def receive() -> dict[str, Any]:
        return {"type": "http.request", "body": b"{}", "more_body": False}

    async def send(message: dict[str, Any]) -> None:
        ctx.responses.append(message)

    scope = {
        "type": "http",
        "method": method,
        "path": path,
        "query_string": b"",
        "headers": [],
    }
    await TelemetryMiddleware(app, ctx.interceptors)(scope, receive, send)


def collected(ctx: OrderScenarioContext) -> list[MetricSample]:
    assert ctx.aggregator is not None
    return ctx.aggregator.collect()


# === Background Steps ===
@given("a metric aggregator")
def step_aggregator(ctx: OrderScenarioContext, aggregator: MetricAggregator) -> None:
    ctx.aggregator = aggregator


@given("the default request interceptors")
def step_interceptors(ctx: OrderScenarioContext, batcher: LogBatcher) -> None:
    assert ctx.aggregator is not None
    ctx.interceptors = default_interceptors(ctx.aggregator, batcher)


# === Request Steps ===
@when(
    parsers.parse('an order with prices "{prices}" is answered with status {status:d}')
)
def when_order(ctx: OrderScenarioContext, prices: str, status: int) -> None:
    items = [{"price": float(p)} for p in prices.split(",")]
    if 200 <= status < 300:
        body: dict[str, Any] = {"order": {"id": 1, "items": items}}
    else:
        body = {"message": "Failed to fulfill order at factory"}
    run_async(simulate_request(ctx, "POST", "/api/order", status, body))


@when("a login is answered with status 200 and a token")
def when_login_success(ctx: OrderScenarioContext) -> None:
    body = {"user": {"id": 1, "name": "pizza diner"}, "token": "abc"}
    run_async(simulate_request(ctx, "PUT", "/api/auth", 200, body))


@when(parsers.parse("a login is answered with status {status:d}"))
def when_login_failure(ctx: OrderScenarioContext, status: int) -> None:
    run_async(
        simulate_request(ctx, "PUT", "/api/auth", status, {"message": "unknown user"})
    )


# === Assertion Steps ===
@then(parsers.parse('the counter "{name}" should be {value:g}'))
def then_counter(ctx: OrderScenarioContext, name: str, value: float) -> None:
    assert ctx.aggregator is not None
    assert ctx.aggregator.counter_value(name) == pytest.approx(value)


@then(parsers.parse('the auth counter "{status}" should be {value:d}'))
def then_auth_counter(ctx: OrderScenarioContext, status: str, value: int) -> None:
    assert ctx.aggregator is not None
    assert ctx.aggregator.counter_value("auth_attempts", {"status": status}) == value


@then(parsers.parse('the flush should contain the gauge "{name}"'))
def then_flush_has_gauge(ctx: OrderScenarioContext, name: str) -> None:
    [sample] = [s for s in collected(ctx) if s.name == name]
    assert sample.kind is MetricKind.GAUGE
    assert sample.attributes == {}
    assert sample.unit == "ms"


@then(parsers.parse('the flush should contain the counter "{name}" at {value:d}'))
def then_flush_has_counter(ctx: OrderScenarioContext, name: str, value: int) -> None:
    samples = [s for s in collected(ctx) if s.name == name]
    assert samples
    assert all(s.kind is MetricKind.COUNTER for s in samples)
    assert all(s.value == value for s in samples)
