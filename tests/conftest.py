"""Shared test fixtures for all test modules."""

from dataclasses import dataclass, field
from typing import Any

import httpx
import pytest

from telemetripy.adapters.frameworks.asgi import Receive, Scope, Send
from telemetripy.config import LogSinkSettings, MetricsSettings, TelemetrySettings
from telemetripy.core.aggregator import MetricAggregator
from telemetripy.core.exceptions import SinkDeliveryError
from telemetripy.core.log_batcher import LogBatcher
from telemetripy.core.ports import SinkResponse


@dataclass
class PostedRequest:
    url: str
    payload: dict[str, Any]
    headers: dict[str, str]


@dataclass
class RecordingTransport:
    """SinkTransportPort double that records every POST."""

    status_code: int = 204
    text: str = ""
    fail: bool = False
    posts: list[PostedRequest] = field(default_factory=list)

    async def post(
        self, url: str, payload: dict[str, Any], headers: dict[str, str]
    ) -> SinkResponse:
        self.posts.append(PostedRequest(url, payload, headers))
        if self.fail:
            raise SinkDeliveryError("ConnectError: connection refused")
        return SinkResponse(status_code=self.status_code, text=self.text)


@pytest.fixture
def transport() -> RecordingTransport:
    """Transport double answering 204 to every POST."""
    return RecordingTransport()


@pytest.fixture
def log_settings() -> LogSinkSettings:
    return LogSinkSettings(
        url="https://logs.example.test/loki/api/v1/push",
        api_key="log-key",
        user_id="12345",
        source="pizza-service",
    )


@pytest.fixture
def metrics_settings() -> MetricsSettings:
    return MetricsSettings(
        url="https://otlp.example.test/otlp/v1/metrics",
        api_key="metrics-key",
        source="pizza-service",
        system_metrics=False,
    )


@pytest.fixture
def telemetry_settings(
    log_settings: LogSinkSettings, metrics_settings: MetricsSettings
) -> TelemetrySettings:
    return TelemetrySettings(
        environment="test", logs=log_settings, metrics=metrics_settings
    )


@pytest.fixture
def batcher(log_settings: LogSinkSettings, transport: RecordingTransport) -> LogBatcher:
    return LogBatcher(log_settings, transport, hostname="test-host")


@pytest.fixture
def aggregator(
    metrics_settings: MetricsSettings, transport: RecordingTransport
) -> MetricAggregator:
    return MetricAggregator(metrics_settings, transport)


# === ASGI Test Fixtures ===


@pytest.fixture
def asgi_scope():
    """Factory fixture for creating ASGI scope dicts."""

    def _scope(
        method: str = "GET",
        path: str = "/test",
        headers: dict[str, str] | None = None,
        **extra: Any,
    ) -> Scope:
        return {
            "type": "http",
            "method": method,
            "path": path,
            "query_string": b"",
            "headers": [
                (k.lower().encode(), v.encode()) for k, v in (headers or {}).items()
            ],
            "client": ("127.0.0.1", 50000),
            **extra,
        }

    return _scope


@pytest.fixture
def asgi_send_capture():
    """Fixture that returns a send callable and a responses list for capture."""

    responses: list[dict[str, object]] = []

    async def send(message: dict[str, object]) -> None:
        responses.append(message)

    return send, responses


@pytest.fixture
def json_app():
    """Factory for an ASGI app answering with a fixed status and JSON body.

    The app reads the whole request body first, like a real JSON endpoint.
    """
    import json

    def _app(status: int = 200, body: Any = None):
        async def app(scope: Scope, receive: Receive, send: Send) -> None:
            more_body = True
            while more_body:
                message = await receive()
                more_body = message.get("more_body", False)
            payload = json.dumps(body if body is not None else {}).encode()
            await send(
                {
                    "type": "http.response.start",
                    "status": status,
                    "headers": [(b"content-type", b"application/json")],
                }
            )
            await send({"type": "http.response.body", "body": payload})

        return app

    return _app


@pytest.fixture
def receive_json():
    """Factory for an ASGI receive callable delivering a JSON body once."""
    import json

    def _receive(body: Any = None) -> Receive:
        payload = json.dumps(body).encode() if body is not None else b""

        async def receive() -> dict[str, Any]:
            return {"type": "http.request", "body": payload, "more_body": False}

        return receive

    return _receive


@pytest.fixture
def asgi_test_client():
    """Factory fixture that creates an httpx.AsyncClient for ASGI testing."""

    def _get_client(app):
        return httpx.AsyncClient(
            transport=httpx.ASGITransport(app=app, raise_app_exceptions=False),
            base_url="http://test",
        )

    return _get_client
