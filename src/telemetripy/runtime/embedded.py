"""Telemetry runtime owning the batcher, aggregator and their schedulers."""

from telemetripy.adapters.transport.httpx_transport import HttpxSinkTransport
from telemetripy.config import TelemetrySettings, get_settings
from telemetripy.core.aggregator import MetricAggregator
from telemetripy.core.log_batcher import LogBatcher
from telemetripy.core.ports import SinkTransportPort
from telemetripy.runtime.scheduler import FlushScheduler


class Telemetry:
    """Explicitly owned telemetry state for one application.

    Build one instance at startup and pass it to the middleware; tests build
    as many isolated instances as they need.

    Example:
        ```python
        telemetry = Telemetry(get_settings())
        await telemetry.start()
        ...
        await telemetry.stop()
        ```
    """

    def __init__(
        self,
        settings: TelemetrySettings | None = None,
        transport: SinkTransportPort | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._owns_transport = transport is None
        self.transport = transport or HttpxSinkTransport()
        self.log_batcher = LogBatcher(self.settings.logs, self.transport)
        self.aggregator = MetricAggregator(self.settings.metrics, self.transport)
        self.log_scheduler = FlushScheduler("logs")
        self.metric_scheduler = FlushScheduler("metrics")

    async def start(self) -> None:
        """Start both schedulers unless running under the test environment."""
        if not self.settings.schedulers_enabled:
            return
        self.log_scheduler.start(self.settings.logs.interval_ms, self.log_batcher.flush)
        self.metric_scheduler.start(
            self.settings.metrics.interval_ms, self.aggregator.flush
        )

    async def flush(self) -> None:
        """Flush both sinks now."""
        await self.log_batcher.flush()
        await self.aggregator.flush()

    async def stop(self) -> None:
        """Stop both schedulers without a final flush and release the client."""
        await self.log_scheduler.stop_and_wait()
        await self.metric_scheduler.stop_and_wait()
        if self._owns_transport and isinstance(self.transport, HttpxSinkTransport):
            await self.transport.aclose()
