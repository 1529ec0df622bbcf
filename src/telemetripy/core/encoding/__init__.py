"""Wire encoders for the log and metric sinks."""

from telemetripy.core.encoding.loki import encode_log_batch
from telemetripy.core.encoding.otlp import encode_metrics

__all__ = ["encode_log_batch", "encode_metrics"]
