"""Runtime wiring: schedulers and the Telemetry owner object."""

from telemetripy.runtime.embedded import Telemetry
from telemetripy.runtime.scheduler import FlushScheduler

__all__ = ["FlushScheduler", "Telemetry"]
