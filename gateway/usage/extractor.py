"""Agent usage accounting to OpenAI usage translation.

Cache-read and cache-write tokens are folded into ``prompt_tokens`` because the
OpenAI usage object has no cache fields.  An explicit ``total`` reported by the
agent wins over the derived sum.
"""

from collections.abc import Mapping
from dataclasses import dataclass

from gateway.models.openai import Usage


@dataclass(frozen=True)
class UsageRecord:
    input: int | None = None
    output: int | None = None
    cache_read: int | None = None
    cache_write: int | None = None
    total: int | None = None


_WIRE_FIELDS = {
    "input": "input",
    "output": "output",
    "cacheRead": "cache_read",
    "cacheWrite": "cache_write",
    "total": "total",
}


def usage_record_from_mapping(raw: Mapping[str, object] | None) -> UsageRecord | None:
    """Parse the camelCase usage mapping emitted by agent runs.

    Non-integer and negative values are dropped rather than trusted.
    """
    if not raw:
        return None
    values: dict[str, int] = {}
    for wire_name, field_name in _WIRE_FIELDS.items():
        value = raw.get(wire_name)
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            continue
        values[field_name] = value
    return UsageRecord(**values)


def extract_usage(record: UsageRecord | None) -> Usage:
    if record is None:
        return Usage(prompt_tokens=0, completion_tokens=0, total_tokens=0)
    prompt_tokens = (record.input or 0) + (record.cache_read or 0) + (record.cache_write or 0)
    completion_tokens = record.output or 0
    total_tokens = (
        record.total if record.total is not None else prompt_tokens + completion_tokens
    )
    return Usage(
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
        total_tokens=total_tokens,
    )
