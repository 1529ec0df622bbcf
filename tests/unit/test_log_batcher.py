"""Tests for LogBatcher recording, draining and Loki delivery."""

import json
import threading

import pytest
from structlog.testing import capture_logs

from telemetripy.config import LogSinkSettings
from telemetripy.core.log_batcher import LogBatcher
from telemetripy.core.models import LogLevel
from telemetripy.core.sanitizer import REDACTED_VALUE

pytestmark = [pytest.mark.unit, pytest.mark.tier(1)]


class TestRecord:
    def test_record_queues_entry_with_envelope(self, batcher: LogBatcher) -> None:
        batcher.record("info", "http_request", {"method": "GET"})

        [entry] = batcher.drain()
        assert entry.level is LogLevel.INFO
        assert entry.message == "http_request"
        assert entry.source == "pizza-service"
        assert entry.hostname == "test-host"
        assert entry.fields == {"method": "GET"}
        assert entry.timestamp > 0

    def test_record_sanitizes_fields(self, batcher: LogBatcher) -> None:
        batcher.record(LogLevel.INFO, "login", {"password": "pw", "user": "pat"})

        [entry] = batcher.drain()
        assert entry.fields == {"password": REDACTED_VALUE, "user": "pat"}

    def test_record_tolerates_cyclic_fields(self, batcher: LogBatcher) -> None:
        fields: dict[str, object] = {}
        fields["self"] = fields
        batcher.record("debug", "loop", fields)
        assert batcher.pending_count() == 1

    def test_record_never_raises_on_bad_level(self, batcher: LogBatcher) -> None:
        batcher.record("verbose", "nope", {})
        assert batcher.pending_count() == 0

    def test_log_error_captures_name_and_context(self, batcher: LogBatcher) -> None:
        try:
            raise ValueError("boom")
        except ValueError as e:
            batcher.log_error(e, path="/api/order", method="POST")

        [entry] = batcher.drain()
        assert entry.level is LogLevel.ERROR
        assert entry.message == "unhandled_error"
        assert entry.fields["name"] == "ValueError"
        assert entry.fields["error"] == "boom"
        assert entry.fields["path"] == "/api/order"
        assert entry.fields["method"] == "POST"
        assert "stack" in entry.fields

    def test_log_factory_request(self, batcher: LogBatcher) -> None:
        batcher.log_factory_request(
            url="/api/order",
            method="POST",
            request_body={"diner": "pat"},
            response_body={"jwt": "abc"},
            status_code=200,
        )

        [entry] = batcher.drain()
        assert entry.message == "factory_request"
        assert entry.fields["statusCode"] == 200
        assert entry.fields["responseBody"] == {"jwt": REDACTED_VALUE}


class TestFlush:
    @pytest.mark.asyncio
    async def test_empty_queue_makes_no_network_call(self, batcher, transport) -> None:
        result = await batcher.flush()

        assert transport.posts == []
        assert result.sent == 0

    @pytest.mark.asyncio
    async def test_unconfigured_sink_makes_no_network_call(self, transport) -> None:
        batcher = LogBatcher(LogSinkSettings(url=None, api_key=None), transport)
        batcher.info("http_request")

        await batcher.flush()

        assert transport.posts == []
        assert batcher.pending_count() == 0

    @pytest.mark.asyncio
    async def test_flush_posts_single_loki_stream(self, batcher, transport) -> None:
        batcher.info("http_request", method="GET", token="secret-value")
        batcher.error("unhandled_error", name="ValueError")

        result = await batcher.flush()

        assert result.delivered is True
        assert result.sent == 2
        [post] = transport.posts
        assert post.url == "https://logs.example.test/loki/api/v1/push"
        assert post.headers["Authorization"] == "Bearer 12345:log-key"
        [stream] = post.payload["streams"]
        assert stream["stream"] == {"component": "pizza-service"}
        assert len(stream["values"]) == 2

        timestamp, text, labels = stream["values"][0]
        assert timestamp.isdigit()
        assert labels == {"level": "info", "type": "http_request", "userId": "12345"}
        document = json.loads(text)
        assert document["method"] == "GET"
        assert document["token"] == REDACTED_VALUE
        assert document["hostname"] == "test-host"

    @pytest.mark.asyncio
    async def test_flush_drains_queue(self, batcher, transport) -> None:
        batcher.info("first")
        await batcher.flush()
        await batcher.flush()

        assert len(transport.posts) == 1
        assert batcher.pending_count() == 0

    @pytest.mark.asyncio
    async def test_rejected_batch_is_not_requeued(self, batcher, transport) -> None:
        transport.status_code = 500
        transport.text = "boom"
        batcher.info("lost")

        with capture_logs() as logs:
            result = await batcher.flush()

        assert result.delivered is False
        assert result.status_code == 500
        assert batcher.pending_count() == 0
        [event] = [e for e in logs if e["log_level"] == "error"]
        assert event["event"] == "Failed to push logs"
        assert event["status"] == 500
        assert event["entries"] == 1

    @pytest.mark.asyncio
    async def test_transport_failure_is_absorbed(self, batcher, transport) -> None:
        transport.fail = True
        batcher.info("lost")

        result = await batcher.flush()

        assert result.delivered is False
        assert result.status_code is None
        assert batcher.pending_count() == 0

    @pytest.mark.asyncio
    async def test_header_without_user_id(self, transport) -> None:
        batcher = LogBatcher(
            LogSinkSettings(url="https://logs.example.test", api_key="k"), transport
        )
        batcher.info("x")

        await batcher.flush()

        assert transport.posts[0].headers["Authorization"] == "Bearer k"
        labels = transport.posts[0].payload["streams"][0]["values"][0][2]
        assert "userId" not in labels


class TestConcurrency:
    def test_concurrent_records_are_neither_lost_nor_duplicated(
        self, batcher: LogBatcher
    ) -> None:
        threads_count, per_thread = 8, 250
        drained: list[list[object]] = []
        stop = threading.Event()

        def writer(worker: int) -> None:
            for i in range(per_thread):
                batcher.info("tick", worker=worker, i=i)

        def drainer() -> None:
            while not stop.is_set():
                drained.append(batcher.drain())

        drain_thread = threading.Thread(target=drainer)
        drain_thread.start()
        writers = [threading.Thread(target=writer, args=(n,)) for n in range(threads_count)]
        for thread in writers:
            thread.start()
        for thread in writers:
            thread.join()
        stop.set()
        drain_thread.join()

        seen = [
            (e.fields["worker"], e.fields["i"]) for batch in drained for e in batch
        ]
        seen.extend((e.fields["worker"], e.fields["i"]) for e in batcher.drain())
        assert len(seen) == threads_count * per_thread
        assert len(set(seen)) == len(seen)
