"""Exceptions raised inside the telemetry core.

None of these are allowed to reach the request path: flush operations catch
them and report through operational logging.
"""


class TelemetryError(Exception):
    """Base class for telemetry failures."""


class SinkDeliveryError(TelemetryError):
    """A sink rejected a batch or could not be reached.

    Attributes:
        status_code: HTTP status returned by the sink, None for transport
            failures.
        body: Response body text, if any.
    """

    def __init__(
        self, message: str, status_code: int | None = None, body: str = ""
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body
