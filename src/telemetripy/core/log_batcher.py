"""Log batcher: buffers sanitized log entries and pushes them to Loki."""

import socket
import threading
import time
import traceback
from typing import Any

from telemetripy.adapters.logging import forwarding_suppressed, get_logger
from telemetripy.config import LogSinkSettings
from telemetripy.core.encoding.loki import encode_log_batch
from telemetripy.core.models import FlushResult, LogEntry, LogLevel
from telemetripy.core.ports import SinkTransportPort
from telemetripy.core.sanitizer import SanitizerPolicy, sanitize

logger = get_logger(__name__)


class LogBatcher:
    """Pending queue of log entries drained by a scheduled flush.

    ``record`` is called from request-handling code and only appends under a
    lock. ``flush`` swaps the queue for a fresh list in the same lock, then
    releases it before the POST, so an entry is either in the swapped batch
    or in the new queue, never both and never neither.
    """

    def __init__(
        self,
        settings: LogSinkSettings,
        transport: SinkTransportPort,
        policy: SanitizerPolicy | None = None,
        hostname: str | None = None,
    ) -> None:
        self.settings = settings
        self._transport = transport
        self._policy = policy or SanitizerPolicy(
            max_string_length=settings.max_string_length
        )
        self._hostname = hostname or socket.gethostname()
        self._lock = threading.Lock()
        self._pending: list[LogEntry] = []

    def record(
        self,
        level: LogLevel | str,
        message: str,
        fields: dict[str, Any] | None = None,
    ) -> None:
        """Sanitize ``fields`` and queue a new entry. Never raises."""
        try:
            sanitized = sanitize(fields or {}, self._policy)
            if not isinstance(sanitized, dict):
                sanitized = {"value": sanitized}
            entry = LogEntry(
                level=LogLevel(level),
                message=message,
                source=self.settings.source,
                hostname=self._hostname,
                timestamp=time.time(),
                fields=sanitized,
            )
        except Exception as e:
            logger.debug(
                "Dropped unrecordable log entry", error=f"{type(e).__name__}: {e!s}"
            )
            return
        with self._lock:
            self._pending.append(entry)

    def debug(self, message: str, **fields: Any) -> None:
        self.record(LogLevel.DEBUG, message, fields)

    def info(self, message: str, **fields: Any) -> None:
        self.record(LogLevel.INFO, message, fields)

    def error(self, message: str, **fields: Any) -> None:
        self.record(LogLevel.ERROR, message, fields)

    def log_error(self, exc: BaseException, **context: Any) -> None:
        """Queue an ``unhandled_error`` entry for an exception.

        Args:
            exc: The exception that escaped the application.
            **context: Request details such as ``path`` and ``method``.
        """
        stack = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        self.error(
            "unhandled_error",
            name=type(exc).__name__,
            error=str(exc) or "Unhandled error",
            stack=stack,
            **context,
        )

    def log_factory_request(
        self,
        url: str,
        method: str,
        request_body: Any = None,
        response_body: Any = None,
        status_code: int | None = None,
    ) -> None:
        """Queue a ``factory_request`` entry for an outbound service call."""
        self.info(
            "factory_request",
            url=url,
            method=method,
            statusCode=status_code,
            requestBody=request_body,
            responseBody=response_body,
        )

    def pending_count(self) -> int:
        """Number of entries waiting for the next flush."""
        with self._lock:
            return len(self._pending)

    def drain(self) -> list[LogEntry]:
        """Swap out the pending queue and return what it held."""
        with self._lock:
            batch, self._pending = self._pending, []
        return batch

    def _auth_header(self) -> str:
        if self.settings.user_id:
            return f"Bearer {self.settings.user_id}:{self.settings.api_key}"
        return f"Bearer {self.settings.api_key}"

    async def flush(self) -> FlushResult:
        """Push everything queued so far as one Loki stream.

        The batch is spent as soon as it is swapped out: it is discarded when
        the sink is not configured and is not re-queued on failure.
        """
        batch = self.drain()
        if not batch or not self.settings.configured:
            return FlushResult()

        payload = encode_log_batch(batch, self.settings.source, self.settings.user_id)
        try:
            with forwarding_suppressed():
                response = await self._transport.post(
                    str(self.settings.url),
                    payload,
                    {"Authorization": self._auth_header()},
                )
        except Exception as e:
            logger.error(
                "Error pushing logs",
                entries=len(batch),
                error=f"{type(e).__name__}: {e!s}",
            )
            return FlushResult(sent=len(batch))

        if not response.ok:
            logger.error(
                "Failed to push logs",
                entries=len(batch),
                status=response.status_code,
                body=response.text,
            )
            return FlushResult(sent=len(batch), status_code=response.status_code)

        logger.debug("Flushed logs", entries=len(batch))
        return FlushResult(
            sent=len(batch), delivered=True, status_code=response.status_code
        )
