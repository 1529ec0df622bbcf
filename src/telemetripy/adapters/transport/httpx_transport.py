"""httpx implementation of SinkTransportPort."""

from typing import Any

import httpx

from telemetripy.core.exceptions import SinkDeliveryError
from telemetripy.core.ports import SinkResponse
from telemetripy.core.sanitizer import to_json

DEFAULT_TIMEOUT_SECONDS = 10.0


class HttpxSinkTransport:
    """Push payloads with a shared ``httpx.AsyncClient``.

    The client is created lazily on first use so the transport can be built
    before an event loop exists. Pass ``transport=httpx.MockTransport(...)``
    in tests to intercept requests.
    """

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            )
        return self._client

    async def post(
        self, url: str, payload: dict[str, Any], headers: dict[str, str]
    ) -> SinkResponse:
        """POST ``payload`` as JSON to ``url``.

        Raises:
            SinkDeliveryError: If the request could not be completed.
        """
        request_headers = {"Content-Type": "application/json", **headers}
        try:
            response = await self._get_client().post(
                url, content=to_json(payload), headers=request_headers
            )
        except httpx.HTTPError as e:
            raise SinkDeliveryError(f"{type(e).__name__}: {e!s}") from e
        return SinkResponse(status_code=response.status_code, text=response.text)

    async def aclose(self) -> None:
        """Close the underlying client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
