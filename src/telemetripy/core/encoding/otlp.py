"""OTLP/HTTP JSON encoder for metric samples."""

from collections.abc import Iterable
from typing import Any

from telemetripy.core.encoding.loki import to_unix_nano
from telemetripy.core.models import MetricKind, MetricSample

AGGREGATION_TEMPORALITY_CUMULATIVE = "AGGREGATION_TEMPORALITY_CUMULATIVE"


def _typed_value(value: int | float) -> dict[str, int | float]:
    # bool is an int subclass; ship it as an integer
    if isinstance(value, int):
        return {"asInt": int(value)}
    return {"asDouble": float(value)}


def encode_metric(sample: MetricSample, source: str) -> dict[str, Any]:
    """Encode one sample as an OTLP metric with a single data point.

    Args:
        sample: Sample to encode.
        source: Service tag added as the ``source`` attribute.
    """
    attributes = {**sample.attributes, "source": source}
    data_point = {
        **_typed_value(sample.value),
        "timeUnixNano": to_unix_nano(sample.timestamp),
        "attributes": [
            {"key": key, "value": {"stringValue": str(value)}}
            for key, value in attributes.items()
        ],
    }

    if sample.kind is MetricKind.COUNTER:
        block: dict[str, Any] = {
            "dataPoints": [data_point],
            "aggregationTemporality": AGGREGATION_TEMPORALITY_CUMULATIVE,
            "isMonotonic": True,
        }
        return {"name": sample.name, "unit": sample.unit, "sum": block}

    return {
        "name": sample.name,
        "unit": sample.unit,
        "gauge": {"dataPoints": [data_point]},
    }


def encode_metrics(samples: Iterable[MetricSample], source: str) -> dict[str, Any]:
    """Encode samples as one resourceMetrics -> scopeMetrics -> metrics payload."""
    metrics = [encode_metric(sample, source) for sample in samples]
    return {"resourceMetrics": [{"scopeMetrics": [{"metrics": metrics}]}]}
