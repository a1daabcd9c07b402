"""Prometheus metrics for the agent completions gateway.

Exposes completion, token, and usage-webhook metrics as a /metrics endpoint.
Counters and histograms live in-process behind one lock and are rendered in
the Prometheus text exposition format.
"""

import threading
from collections import defaultdict

from fastapi import APIRouter, Response

_lock = threading.Lock()

# Label key type: tuple of (key, value) pairs
LabelKey = tuple[tuple[str, str], ...]

_counters: dict[str, dict[LabelKey, float]] = defaultdict(
    lambda: defaultdict(float),
)

_histogram_sums: dict[str, dict[LabelKey, float]] = defaultdict(
    lambda: defaultdict(float),
)
_histogram_counts: dict[str, dict[LabelKey, int]] = defaultdict(
    lambda: defaultdict(int),
)

LATENCY_BUCKETS = [0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0]
_histogram_buckets: dict[str, dict[LabelKey, list[int]]] = defaultdict(
    lambda: defaultdict(lambda: [0] * len(LATENCY_BUCKETS)),
)


def inc_counter(name: str, labels: dict[str, str], value: float = 1.0) -> None:
    key: LabelKey = tuple(sorted(labels.items()))
    with _lock:
        _counters[name][key] += value


def observe_histogram(name: str, labels: dict[str, str], value: float) -> None:
    key: LabelKey = tuple(sorted(labels.items()))
    with _lock:
        _histogram_sums[name][key] += value
        _histogram_counts[name][key] += 1
        buckets = _histogram_buckets[name][key]
        for i, bound in enumerate(LATENCY_BUCKETS):
            if value <= bound:
                buckets[i] += 1


def counter_value(name: str, labels: dict[str, str]) -> float:
    key: LabelKey = tuple(sorted(labels.items()))
    with _lock:
        return _counters.get(name, {}).get(key, 0.0)


def _format_labels(label_pairs: LabelKey) -> str:
    if not label_pairs:
        return ""
    parts = [f'{k}="{v}"' for k, v in label_pairs]
    return "{" + ",".join(parts) + "}"


def render_metrics() -> str:
    lines: list[str] = []
    with _lock:
        for name, label_map in sorted(_counters.items()):
            lines.append(f"# TYPE {name} counter")
            for label_pairs, value in sorted(label_map.items()):
                lines.append(f"{name}{_format_labels(label_pairs)} {value}")

        for name in sorted(_histogram_sums.keys()):
            lines.append(f"# TYPE {name} histogram")
            for label_pairs in sorted(_histogram_sums[name].keys()):
                base_lbl = _format_labels(label_pairs)
                buckets = _histogram_buckets[name][label_pairs]
                # bucket counts are already cumulative per observation
                for i, bound in enumerate(LATENCY_BUCKETS):
                    bucket_labels = dict(label_pairs)
                    bucket_labels["le"] = str(bound)
                    bl: LabelKey = tuple(sorted(bucket_labels.items()))
                    lines.append(f"{name}_bucket{_format_labels(bl)} {buckets[i]}")

                inf_labels = dict(label_pairs)
                inf_labels["le"] = "+Inf"
                il: LabelKey = tuple(sorted(inf_labels.items()))
                count = _histogram_counts[name][label_pairs]
                lines.append(f"{name}_bucket{_format_labels(il)} {count}")
                lines.append(f"{name}_sum{base_lbl} {_histogram_sums[name][label_pairs]}")
                lines.append(f"{name}_count{base_lbl} {count}")

    lines.append("")
    return "\n".join(lines)


def record_completion(
    model: str,
    provider: str,
    streaming: bool,
    outcome: str,
    latency_s: float,
    prompt_tokens: int = 0,
    completion_tokens: int = 0,
) -> None:
    """Record metrics for one finished chat completion run."""
    base_labels = {
        "model": model,
        "provider": provider,
        "stream": "true" if streaming else "false",
    }
    inc_counter("agw_completions_total", {**base_labels, "outcome": outcome})
    observe_histogram("agw_completion_duration_seconds", base_labels, latency_s)
    if prompt_tokens > 0:
        inc_counter(
            "agw_tokens_total",
            {**base_labels, "direction": "prompt"},
            float(prompt_tokens),
        )
    if completion_tokens > 0:
        inc_counter(
            "agw_tokens_total",
            {**base_labels, "direction": "completion"},
            float(completion_tokens),
        )


metrics_router = APIRouter()


@metrics_router.get("/metrics")
def prometheus_metrics() -> Response:
    return Response(
        content=render_metrics(),
        media_type="text/plain; charset=utf-8",
    )
