"""FastAPI wiring for the telemetry middleware, error handler and schedulers."""

from collections.abc import AsyncGenerator, Callable
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from telemetripy.adapters.frameworks.asgi import TelemetryMiddleware
from telemetripy.adapters.frameworks.interceptors import default_interceptors
from telemetripy.runtime.embedded import Telemetry


def create_error_handler(
    telemetry: Telemetry,
) -> Callable[[Request, Exception], Any]:
    """Create the top-level handler for unhandled application errors.

    The handler queues one error log entry before producing the client-facing
    ``{"message": ...}`` response. ``exc.status_code`` is honoured when the
    exception carries one.
    """

    async def handle_error(request: Request, exc: Exception) -> JSONResponse:
        telemetry.log_batcher.log_error(
            exc, path=request.url.path, method=request.method
        )
        status_code = getattr(exc, "status_code", None)
        if not isinstance(status_code, int):
            status_code = 500
        return JSONResponse({"message": str(exc)}, status_code=status_code)

    return handle_error


def create_lifespan(
    telemetry: Telemetry,
) -> Callable[[FastAPI], Any]:
    """Lifespan that starts the flush schedulers and stops them on shutdown."""

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncGenerator[None]:
        await telemetry.start()
        try:
            yield
        finally:
            await telemetry.stop()

    return lifespan


def install_telemetry(
    app: FastAPI,
    telemetry: Telemetry,
    exclude_paths: list[str] | None = None,
) -> None:
    """Install the standard interceptor chain and the error handler on ``app``.

    Schedulers are not started here; pass ``create_lifespan(telemetry)`` to
    the FastAPI constructor for that.
    """
    app.add_middleware(
        TelemetryMiddleware,
        interceptors=default_interceptors(telemetry.aggregator, telemetry.log_batcher),
        exclude_paths=exclude_paths,
    )
    app.add_exception_handler(Exception, create_error_handler(telemetry))
