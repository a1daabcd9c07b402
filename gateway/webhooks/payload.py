from dataclasses import dataclass
from time import time
from typing import Any

from gateway.agents.base import AgentResult
from gateway.models.openai import Usage

USAGE_EVENT = "model.usage"


@dataclass(frozen=True)
class CostRates:
    """USD per million tokens."""

    input_per_mtok: float = 3.0
    output_per_mtok: float = 15.0


def build_usage_webhook_payload(
    *,
    run_id: str,
    model: str,
    result: AgentResult | None,
    usage: Usage,
    rates: CostRates | None = None,
    timestamp_ms: int | None = None,
) -> dict[str, Any]:
    rates = rates or CostRates()
    payload: dict[str, Any] = {
        "event": USAGE_EVENT,
        "runId": run_id,
        "model": model,
        "usage": usage.model_dump(),
        "timestamp": timestamp_ms if timestamp_ms is not None else int(time() * 1000),
    }
    if result is None:
        return payload

    if result.provider:
        payload["provider"] = result.provider
    if result.duration_ms is not None:
        payload["durationMs"] = result.duration_ms

    record = result.usage
    if record is not None and (record.input or record.output):
        input_cost = (record.input or 0) / 1_000_000 * rates.input_per_mtok
        output_cost = (record.output or 0) / 1_000_000 * rates.output_per_mtok
        payload["cost"] = {
            "input": input_cost,
            "output": output_cost,
            "total": input_cost + output_cost,
        }
    return payload
