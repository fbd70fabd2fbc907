"""Prometheus-style metrics for the chat gateway.

Counts provider attempts, fallbacks and tokens, and observes attempt
latency.  Metrics are stored as thread-safe counters and histograms in-process
and rendered in the Prometheus text format by ``render_metrics``.
"""

import threading
from collections import defaultdict

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

LATENCY_BUCKETS = [0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0]
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


def reset_metrics() -> None:
    with _lock:
        _counters.clear()
        _histogram_sums.clear()
        _histogram_counts.clear()
        _histogram_buckets.clear()


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
                cumulative = 0
                for i, bound in enumerate(LATENCY_BUCKETS):
                    cumulative += buckets[i]
                    bucket_labels = dict(label_pairs)
                    bucket_labels["le"] = str(bound)
                    bl: LabelKey = tuple(sorted(bucket_labels.items()))
                    lines.append(f"{name}_bucket{_format_labels(bl)} {cumulative}")

                inf_labels = dict(label_pairs)
                inf_labels["le"] = "+Inf"
                il: LabelKey = tuple(sorted(inf_labels.items()))
                lines.append(
                    f"{name}_bucket{_format_labels(il)} "
                    f"{_histogram_counts[name][label_pairs]}"
                )
                lines.append(f"{name}_sum{base_lbl} {_histogram_sums[name][label_pairs]}")
                lines.append(f"{name}_count{base_lbl} {_histogram_counts[name][label_pairs]}")

    lines.append("")
    return "\n".join(lines)


def record_attempt(
    provider: str,
    model: str,
    ok: bool,
    latency_s: float,
    tokens_in: int = 0,
    tokens_out: int = 0,
    error_code: str | None = None,
) -> None:
    """Record all metrics for one provider attempt."""
    base_labels = {"provider": provider, "model": model}

    inc_counter(
        "cgw_chat_attempts_total",
        {
            **base_labels,
            "outcome": "ok" if ok else (error_code or "error"),
        },
    )
    observe_histogram("cgw_provider_latency_seconds", base_labels, latency_s)

    if tokens_in > 0:
        inc_counter("cgw_tokens_total", {**base_labels, "direction": "input"}, float(tokens_in))
    if tokens_out > 0:
        inc_counter(
            "cgw_tokens_total", {**base_labels, "direction": "output"}, float(tokens_out)
        )


def record_fallback(from_provider: str, to_provider: str, reason: str) -> None:
    inc_counter(
        "cgw_chat_fallbacks_total",
        {"from_provider": from_provider, "to_provider": to_provider, "reason": reason},
    )
