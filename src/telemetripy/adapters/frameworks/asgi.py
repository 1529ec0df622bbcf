"""ASGI middleware hosting the request telemetry interceptors.

The middleware is framework-agnostic: it works with any ASGI server and only
reads optional scope keys that routers and auth layers populate (``route``,
``route_template``, ``user``). Each interceptor receives a per-request
``RequestContext`` on arrival and subscribes to the response-completion
event it needs, so no interceptor depends on another one's wrapping.
"""

import fnmatch
import json
import time
from collections.abc import Callable, Coroutine, Iterable
from dataclasses import dataclass, field
from typing import Any, Protocol

from telemetripy.adapters.logging import get_logger

# ASGI type aliases
Scope = dict[str, Any]
Receive = Callable[[], Coroutine[Any, Any, dict[str, Any]]]
Send = Callable[[dict[str, Any]], Coroutine[Any, Any, None]]
ASGIApp = Callable[[Scope, Receive, Send], Coroutine[Any, Any, None]]

CompletionCallback = Callable[["RequestContext"], None]
IdentityResolver = Callable[[Scope], str | None]

DEFAULT_MAX_BODY_BYTES = 64 * 1024

logger = get_logger(__name__)


def default_identity(scope: Scope) -> str | None:
    """Read the authenticated identity placed in the scope by the auth layer.

    Understands Starlette ``BaseUser`` objects (``is_authenticated`` and
    ``identity``), objects with an ``id`` attribute and dicts with an
    ``id`` key.
    """
    user = scope.get("user")
    if user is None:
        return None
    if isinstance(user, dict):
        identity = user.get("id")
    elif getattr(user, "is_authenticated", True) is False:
        return None
    else:
        identity = getattr(user, "id", None)
        if identity is None:
            identity = getattr(user, "identity", None)
    if identity is None or identity == "":
        return None
    return str(identity)


def _header_names(scope: Scope) -> frozenset[str]:
    headers: list[tuple[bytes, bytes]] = scope.get("headers", [])
    return frozenset(name.decode("latin-1").lower() for name, _value in headers)


def _decode_body(body: bytes | None) -> Any:
    """Parse a captured body as JSON, falling back to text."""
    if not body:
        return None
    text = body.decode("utf-8", errors="replace")
    try:
        return json.loads(text)
    except ValueError:
        return text


def _append_capped(
    buffer: bytearray | None, chunk: bytes, limit: int
) -> bytearray | None:
    """Append ``chunk``; once over ``limit`` the capture is abandoned for good."""
    if buffer is None or len(buffer) + len(chunk) > limit:
        return None
    buffer.extend(chunk)
    return buffer


@dataclass
class RequestContext:
    """Per-request state shared by every interceptor.

    Attributes:
        scope: The ASGI scope; routers may add ``route`` while the request
            is being handled.
        method: Upper-case HTTP method.
        path: Raw request path.
        start_ns: ``time.perf_counter_ns()`` captured on arrival.
        status_code: Final status, set before completion callbacks run.
        exception: Exception raised by the application, if any.
    """

    scope: Scope
    method: str
    path: str
    start_ns: int
    identity_resolver: IdentityResolver = default_identity
    max_body_bytes: int = DEFAULT_MAX_BODY_BYTES
    status_code: int | None = None
    exception: BaseException | None = None
    end_ns: int | None = None
    completed: bool = False
    _header_names: frozenset[str] = frozenset()
    _request_body: bytearray | None = field(default_factory=bytearray)
    _response_body: bytearray | None = field(default_factory=bytearray)
    _callbacks: list[CompletionCallback] = field(default_factory=list)

    def on_complete(self, callback: CompletionCallback) -> None:
        """Subscribe to the response-completion event of this request."""
        self._callbacks.append(callback)

    def has_header(self, name: str) -> bool:
        """Whether the request carried ``name``. Values are never exposed."""
        return name.lower() in self._header_names

    @property
    def target(self) -> str:
        """Raw request target: path plus query string, if any."""
        query = self.scope.get("query_string", b"").decode("latin-1")
        return f"{self.path}?{query}" if query else self.path

    @property
    def route_template(self) -> str | None:
        """Template of the matched route, if the framework recorded one."""
        route = self.scope.get("route")
        template = getattr(route, "path", None) if route is not None else None
        return template or self.scope.get("route_template")

    @property
    def root_path(self) -> str:
        return self.scope.get("root_path", "")

    @property
    def identity(self) -> str | None:
        return self.identity_resolver(self.scope)

    @property
    def client_ip(self) -> str | None:
        client = self.scope.get("client")
        return client[0] if client else None

    @property
    def request_body(self) -> Any:
        """Request payload, or None when it exceeded the capture limit."""
        if self._request_body is None:
            return None
        return _decode_body(bytes(self._request_body))

    @property
    def response_body(self) -> Any:
        """Final response payload, or None when it exceeded the capture limit."""
        if self._response_body is None:
            return None
        return _decode_body(bytes(self._response_body))

    def elapsed_ms(self) -> float:
        end = self.end_ns if self.end_ns is not None else time.perf_counter_ns()
        return (end - self.start_ns) / 1_000_000

    def _capture_request(self, chunk: bytes) -> None:
        self._request_body = _append_capped(
            self._request_body, chunk, self.max_body_bytes
        )

    def _capture_response(self, chunk: bytes) -> None:
        self._response_body = _append_capped(
            self._response_body, chunk, self.max_body_bytes
        )

    def _complete(self) -> None:
        """Fire completion callbacks exactly once, absorbing their failures."""
        if self.completed:
            return
        self.completed = True
        self.end_ns = time.perf_counter_ns()
        for callback in self._callbacks:
            try:
                callback(self)
            except Exception:
                logger.exception(
                    "Telemetry completion callback failed",
                    method=self.method,
                    path=self.path,
                )


class Interceptor(Protocol):
    """A single request telemetry concern installed on the middleware."""

    def on_request(self, ctx: RequestContext) -> None:
        """Called once on arrival, before the application runs."""
        ...


class TelemetryMiddleware:
    """ASGI middleware that runs request telemetry interceptors.

    The completion event fires just before the final response body chunk is
    forwarded to the server, or after the application raised without
    finishing a response (status 500). Interceptor failures are logged and
    never change the response.
    """

    def __init__(
        self,
        app: ASGIApp,
        interceptors: Iterable[Interceptor],
        exclude_paths: list[str] | None = None,
        identity_resolver: IdentityResolver = default_identity,
        max_body_bytes: int = DEFAULT_MAX_BODY_BYTES,
    ) -> None:
        """Initialize the middleware.

        Args:
            app: The ASGI application to wrap.
            interceptors: Interceptors to run, in installation order.
            exclude_paths: Paths that bypass telemetry entirely. Supports
                exact matches and wildcard patterns (e.g. "/internal/*").
            identity_resolver: Reads the authenticated identity from scope.
            max_body_bytes: Capture limit for request and response bodies.
        """
        self.app = app
        self.interceptors = list(interceptors)
        self.exclude_paths = exclude_paths or []
        self.identity_resolver = identity_resolver
        self.max_body_bytes = max_body_bytes

    def _path_excluded(self, path: str) -> bool:
        """Check if path matches any pattern in exclude_paths."""
        return any(fnmatch.fnmatch(path, pattern) for pattern in self.exclude_paths)

    def _start(self, scope: Scope) -> RequestContext:
        ctx = RequestContext(
            scope=scope,
            method=scope["method"].upper(),
            path=scope["path"],
            start_ns=time.perf_counter_ns(),
            identity_resolver=self.identity_resolver,
            max_body_bytes=self.max_body_bytes,
            _header_names=_header_names(scope),
        )
        for interceptor in self.interceptors:
            try:
                interceptor.on_request(ctx)
            except Exception:
                logger.exception(
                    "Telemetry interceptor failed",
                    interceptor=type(interceptor).__name__,
                    path=ctx.path,
                )
        return ctx

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        """ASGI callable interface that processes requests through the wrapped app."""
        if scope["type"] != "http" or self._path_excluded(scope["path"]):
            await self.app(scope, receive, send)
            return

        ctx = self._start(scope)

        async def wrapped_receive() -> dict[str, Any]:
            message = await receive()
            if message["type"] == "http.request":
                ctx._capture_request(message.get("body", b""))
            return message

        async def wrapped_send(message: dict[str, Any]) -> None:
            if message["type"] == "http.response.start":
                ctx.status_code = message["status"]
            elif message["type"] == "http.response.body":
                ctx._capture_response(message.get("body", b""))
                if not message.get("more_body", False):
                    ctx._complete()
            await send(message)

        try:
            await self.app(scope, wrapped_receive, wrapped_send)
        except Exception as e:
            ctx.exception = e
            if ctx.status_code is None:
                ctx.status_code = 500
            raise
        finally:
            ctx._complete()
