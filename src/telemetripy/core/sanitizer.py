"""Redaction of sensitive values before anything is serialized.

Recursively walks dicts, lists, tuples and sets. Keys in the sensitive set
have their values replaced wholesale; strings that look like credentials are
replaced individually.
"""

import json
import re
from dataclasses import dataclass
from typing import Any

REDACTED_VALUE = "**redacted**"
CIRCULAR_VALUE = "[Circular]"
UNSERIALIZABLE_JSON = '"<unserializable>"'

SENSITIVE_KEYS = frozenset(
    {
        "password",
        "pwd",
        "pass",
        "token",
        "authorization",
        "auth",
        "apikey",
        "api_key",
        "secret",
        "jwt",
    }
)

_BEARER_PATTERN = re.compile(r"bearer\s+.+", re.IGNORECASE)


@dataclass(frozen=True)
class SanitizerPolicy:
    """Tunable redaction rules.

    Attributes:
        sensitive_keys: Lowercase key names whose values are always redacted.
        max_string_length: Strings longer than this are treated as opaque
            tokens and redacted. None disables the length heuristic.
    """

    sensitive_keys: frozenset[str] = SENSITIVE_KEYS
    max_string_length: int | None = 32


DEFAULT_POLICY = SanitizerPolicy()


def _is_sensitive_key(key: Any, policy: SanitizerPolicy) -> bool:
    return isinstance(key, str) and key.lower() in policy.sensitive_keys


def _sanitize_string(value: str, policy: SanitizerPolicy) -> str:
    if _BEARER_PATTERN.search(value):
        return REDACTED_VALUE
    if policy.max_string_length is not None and len(value) > policy.max_string_length:
        return REDACTED_VALUE
    return value


def _sanitize(value: Any, policy: SanitizerPolicy, active: set[int]) -> Any:
    if isinstance(value, str):
        return _sanitize_string(value, policy)

    if not isinstance(value, (dict, list, tuple, set, frozenset)):
        # None, numbers, booleans and anything opaque pass through
        return value

    marker = id(value)
    if marker in active:
        return CIRCULAR_VALUE
    active.add(marker)
    try:
        if isinstance(value, dict):
            return {
                k: REDACTED_VALUE
                if _is_sensitive_key(k, policy)
                else _sanitize(v, policy, active)
                for k, v in value.items()
            }
        if isinstance(value, list):
            return [_sanitize(item, policy, active) for item in value]
        if isinstance(value, tuple):
            return tuple(_sanitize(item, policy, active) for item in value)
        return type(value)(_sanitize(item, policy, active) for item in value)
    finally:
        active.discard(marker)


def sanitize(value: Any, policy: SanitizerPolicy = DEFAULT_POLICY) -> Any:
    """Return a redacted copy of ``value``.

    Args:
        value: Arbitrary nested data (dict, list, tuple, set or scalar).
        policy: Redaction rules to apply.

    Returns:
        A structural mirror of ``value`` with sensitive values replaced by
        ``REDACTED_VALUE``. Containers that reference themselves are replaced
        with ``CIRCULAR_VALUE`` at the point of recursion.
    """
    try:
        return _sanitize(value, policy, set())
    except RecursionError:
        return CIRCULAR_VALUE


def to_json(value: Any) -> str:
    """Serialize already-sanitized data, never raising.

    Returns:
        JSON text, or ``UNSERIALIZABLE_JSON`` if encoding fails.
    """
    try:
        return json.dumps(value, default=str)
    except (TypeError, ValueError, RecursionError):
        return UNSERIALIZABLE_JSON


def safe_json(value: Any, policy: SanitizerPolicy = DEFAULT_POLICY) -> str:
    """Sanitize then serialize ``value``; always returns a string."""
    try:
        return to_json(sanitize(value, policy))
    except Exception:
        return UNSERIALIZABLE_JSON
