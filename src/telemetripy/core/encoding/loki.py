"""Loki push-API encoder for log entries."""

from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any

from telemetripy.core.models import LogEntry
from telemetripy.core.sanitizer import to_json


def to_unix_nano(timestamp: float) -> int:
    """Convert a unix timestamp in seconds to integer nanoseconds."""
    return int(timestamp * 1_000_000_000)


def entry_document(entry: LogEntry) -> dict[str, Any]:
    """Flatten an entry into the JSON document shipped as the log line.

    Envelope keys win over same-named fields.
    """
    return {
        **entry.fields,
        "level": entry.level.value,
        "message": entry.message,
        "source": entry.source,
        "hostname": entry.hostname,
        "ts": datetime.fromtimestamp(entry.timestamp, tz=UTC).isoformat(),
    }


def entry_labels(entry: LogEntry, user_id: str | None = None) -> dict[str, str]:
    """Structured metadata attached to one log line."""
    labels = {"level": entry.level.value, "type": entry.message}
    if user_id:
        labels["userId"] = str(user_id)
    return labels


def encode_log_batch(
    entries: Iterable[LogEntry],
    component: str,
    user_id: str | None = None,
) -> dict[str, Any]:
    """Encode a batch as a single Loki stream.

    Args:
        entries: Entries swapped out of the batcher, already sanitized.
        component: Value of the stream's ``component`` label.
        user_id: Optional tenant/user scope added to each line's labels.

    Returns:
        ``{"streams": [{"stream": {...}, "values": [[ns, text, labels], ...]}]}``
    """
    values = [
        [
            str(to_unix_nano(entry.timestamp)),
            to_json(entry_document(entry)),
            entry_labels(entry, user_id),
        ]
        for entry in entries
    ]
    return {"streams": [{"stream": {"component": component}, "values": values}]}
