"""Port interfaces for sink transports.

The batcher and the aggregator depend only on this protocol, not on a
concrete HTTP client.
"""

from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable


@dataclass(frozen=True)
class SinkResponse:
    """Status and body returned by a sink."""

    status_code: int
    text: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


@runtime_checkable
class SinkTransportPort(Protocol):
    """Port for pushing one JSON payload to a collector.

    Implementations raise ``SinkDeliveryError`` on transport-level failures
    and return the response for any HTTP status.
    """

    async def post(
        self, url: str, payload: dict[str, Any], headers: dict[str, str]
    ) -> SinkResponse:
        """POST ``payload`` as JSON to ``url``."""
        ...
