"""Sink transports implementing core ports."""

from telemetripy.adapters.transport.httpx_transport import HttpxSinkTransport

__all__ = ["HttpxSinkTransport"]
