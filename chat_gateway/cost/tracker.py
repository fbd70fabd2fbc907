"""Daily cost and usage aggregation per usage key, provider and model.

Every provider attempt produces exactly one ``record()`` call.  Records are
folded into a daily bucket keyed by ``day:usage_key:provider:model`` and a
per-day index of bucket keys is maintained so reports never need to enumerate
the backing store.

Two backends are provided:

* ``InMemoryCostTracker`` for single-process deployments and tests; all state
  is guarded by a ``threading.Lock``.
* ``RedisCostTracker`` for multi-replica deployments; buckets are Redis hashes
  updated with atomic increments and expire after the retention window.
"""

import threading
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta
from typing import Any, Protocol

from chat_gateway.cost.calculator import CostCalculator
from chat_gateway.usage.extractor import UsageStats

try:  # pragma: no cover - optional dependency at runtime
    import redis  # type: ignore[import-not-found,import-untyped]
except Exception:  # pragma: no cover - optional dependency at runtime
    redis = None

_COUNTER_FIELDS = (
    "requests",
    "input_tokens",
    "output_tokens",
    "total_tokens",
    "errors",
    "latency_ms_sum",
    "cache_hits",
)


class CostBackendError(Exception):
    """Raised when the cost backend is unavailable or misconfigured."""


@dataclass(frozen=True)
class CostRecord:
    usage_key: str
    provider: str
    model: str
    usage: UsageStats
    latency_ms: int
    ok: bool
    error_code: str | None = None
    cache_hit: bool = False

    def normalized(self) -> "CostRecord":
        return CostRecord(
            usage_key=self.usage_key.strip() or "unknown",
            provider=self.provider.strip().lower() or "unknown",
            model=self.model.strip() or "unknown",
            usage=self.usage.with_fallback_total(),
            latency_ms=max(0, int(self.latency_ms)),
            ok=self.ok,
            error_code=self.error_code,
            cache_hit=self.cache_hit,
        )


class CostTracker(Protocol):
    def record(
        self,
        usage_key: str,
        provider: str,
        model: str,
        usage: UsageStats,
        latency_ms: int,
        ok: bool,
        error_code: str | None = None,
        cache_hit: bool = False,
    ) -> None:
        """Fold one provider attempt into the aggregates."""


def _day_of(ts: datetime | None) -> str:
    return (ts or datetime.now(tz=UTC)).strftime("%Y-%m-%d")


def _bucket_key(prefix: str, day: str, record: CostRecord) -> str:
    return f"{prefix}:daily:{day}:{record.usage_key}:{record.provider}:{record.model}"


def _empty_bucket(day: str, record: CostRecord) -> dict[str, Any]:
    return {
        "day": day,
        "usage_key": record.usage_key,
        "provider": record.provider,
        "model": record.model,
        "requests": 0,
        "input_tokens": 0,
        "output_tokens": 0,
        "total_tokens": 0,
        "cost_eur": 0.0,
        "errors": 0,
        "latency_ms_sum": 0,
        "cache_hits": 0,
        "error_codes": {},
    }


def _as_day(value: date | str) -> date:
    return value if isinstance(value, date) else datetime.strptime(value, "%Y-%m-%d").date()


def _empty_totals() -> dict[str, Any]:
    totals: dict[str, Any] = {field: 0 for field in _COUNTER_FIELDS}
    totals["cost_eur"] = 0.0
    return totals


def _add_bucket(totals: dict[str, Any], bucket: Mapping[str, Any]) -> None:
    for field in _COUNTER_FIELDS:
        totals[field] += int(bucket.get(field, 0) or 0)
    totals["cost_eur"] += float(bucket.get("cost_eur", 0.0) or 0.0)


def _avg_latency_ms(totals: Mapping[str, Any]) -> int:
    if totals["requests"] <= 0:
        return 0
    return round(totals["latency_ms_sum"] / totals["requests"])


def _delta(current: float, previous: float) -> dict[str, float | None]:
    absolute = current - previous
    return {
        "abs": absolute,
        "pct": (absolute / previous) * 100.0 if previous > 0 else None,
    }


class _WindowReports:
    """Rolling-window readers built on a backend's ``daily_report``."""

    def daily_report(self, day: date | str) -> list[dict[str, Any]]:
        raise NotImplementedError

    def load_window(self, end_day: date | str, days: int) -> dict[str, Any]:
        """Sum the *days* days ending at *end_day* (inclusive).

        Returns ``totals`` across all usage keys and ``by_usage_key`` totals.
        """
        days = max(1, days)
        end = _as_day(end_day)
        totals = _empty_totals()
        by_usage_key: dict[str, dict[str, Any]] = {}
        for offset in range(days - 1, -1, -1):
            for bucket in self.daily_report(end - timedelta(days=offset)):
                usage_key = str(bucket.get("usage_key") or "unknown")
                _add_bucket(totals, bucket)
                _add_bucket(by_usage_key.setdefault(usage_key, _empty_totals()), bucket)
        return {"totals": totals, "by_usage_key": by_usage_key}

    def load_with_previous_and_delta(self, end_day: date | str, days: int) -> dict[str, Any]:
        """Compare the window ending at *end_day* with the window just before it."""
        days = max(1, days)
        end = _as_day(end_day)
        current = self.load_window(end, days)
        previous = self.load_window(end - timedelta(days=days), days)
        cur, prev = current["totals"], previous["totals"]
        return {
            "current": current,
            "previous": previous,
            "delta_totals": {
                "requests": _delta(cur["requests"], prev["requests"]),
                "total_tokens": _delta(cur["total_tokens"], prev["total_tokens"]),
                "cost_eur": _delta(cur["cost_eur"], prev["cost_eur"]),
                "errors": _delta(cur["errors"], prev["errors"]),
                "avg_latency_ms": _delta(_avg_latency_ms(cur), _avg_latency_ms(prev)),
            },
        }


class InMemoryCostTracker(_WindowReports):
    """In-process daily cost aggregator.

    Parameters
    ----------
    calculator : CostCalculator
        Pricing component; buckets without pricing accumulate no EUR cost.
    enabled : bool
        When false ``record`` is a no-op.
    retention_days : int
        Days of aggregates kept; older days are dropped on every write.
    """

    def __init__(
        self,
        calculator: CostCalculator | None = None,
        enabled: bool = True,
        retention_days: int = 90,
        key_prefix: str = "ai_cost",
    ) -> None:
        self._calculator = calculator or CostCalculator()
        self._enabled = enabled
        self._retention_days = retention_days
        self._key_prefix = key_prefix
        self._buckets: dict[str, dict[str, Any]] = {}
        self._index: dict[str, list[str]] = {}
        self._lock = threading.Lock()

    def record(
        self,
        usage_key: str,
        provider: str,
        model: str,
        usage: UsageStats,
        latency_ms: int,
        ok: bool,
        error_code: str | None = None,
        cache_hit: bool = False,
        ts: datetime | None = None,
    ) -> None:
        if not self._enabled:
            return
        entry = CostRecord(
            usage_key=usage_key,
            provider=provider,
            model=model,
            usage=usage,
            latency_ms=latency_ms,
            ok=ok,
            error_code=error_code,
            cache_hit=cache_hit,
        ).normalized()
        day = _day_of(ts)
        key = _bucket_key(self._key_prefix, day, entry)
        cost = self._calculator.calculate_eur(entry.provider, entry.model, entry.usage)

        with self._lock:
            index = self._index.setdefault(day, [])
            if key not in index:
                index.append(key)
            bucket = self._buckets.get(key)
            if bucket is None:
                bucket = _empty_bucket(day, entry)
                self._buckets[key] = bucket

            bucket["requests"] += 1
            bucket["latency_ms_sum"] += entry.latency_ms
            if entry.cache_hit:
                bucket["cache_hits"] += 1
            if not entry.ok:
                bucket["errors"] += 1
                code = entry.error_code or "unknown"
                bucket["error_codes"][code] = bucket["error_codes"].get(code, 0) + 1
            if entry.usage.input_tokens is not None:
                bucket["input_tokens"] += entry.usage.input_tokens
            if entry.usage.output_tokens is not None:
                bucket["output_tokens"] += entry.usage.output_tokens
            if entry.usage.total_tokens is not None:
                bucket["total_tokens"] += entry.usage.total_tokens
            if cost is not None:
                bucket["cost_eur"] += cost
            self._prune(day)

    def daily_report(self, day: date | str) -> list[dict[str, Any]]:
        """Return copies of every bucket recorded on *day*."""
        day_key = day if isinstance(day, str) else day.isoformat()
        with self._lock:
            return [
                {**self._buckets[key], "error_codes": dict(self._buckets[key]["error_codes"])}
                for key in self._index.get(day_key, [])
                if key in self._buckets
            ]

    def _prune(self, current_day: str) -> None:
        cutoff = (
            datetime.strptime(current_day, "%Y-%m-%d") - timedelta(days=self._retention_days)
        ).strftime("%Y-%m-%d")
        for day in [d for d in self._index if d < cutoff]:
            for key in self._index.pop(day):
                self._buckets.pop(key, None)


class RedisCostTracker(_WindowReports):
    """Redis-backed daily cost aggregator for multi-replica deployments."""

    def __init__(
        self,
        redis_url: str,
        calculator: CostCalculator | None = None,
        enabled: bool = True,
        retention_days: int = 90,
        key_prefix: str = "cgw:ai_cost",
    ) -> None:
        if redis is None:  # pragma: no cover - runtime dependency gate
            raise CostBackendError(
                "Redis cost backend selected but redis package is not installed"
            )
        self._calculator = calculator or CostCalculator()
        self._enabled = enabled
        self._ttl_seconds = max(retention_days, 1) * 86_400
        self._key_prefix = key_prefix
        try:
            self._client: Any = redis.Redis.from_url(redis_url, decode_responses=True)
            self._client.ping()
        except Exception as exc:  # pragma: no cover - runtime guard
            raise CostBackendError(f"Failed to initialize Redis cost backend: {exc}") from exc

    def _index_key(self, day: str) -> str:
        return f"{self._key_prefix}:index:daily:{day}"

    def record(
        self,
        usage_key: str,
        provider: str,
        model: str,
        usage: UsageStats,
        latency_ms: int,
        ok: bool,
        error_code: str | None = None,
        cache_hit: bool = False,
        ts: datetime | None = None,
    ) -> None:
        if not self._enabled:
            return
        entry = CostRecord(
            usage_key=usage_key,
            provider=provider,
            model=model,
            usage=usage,
            latency_ms=latency_ms,
            ok=ok,
            error_code=error_code,
            cache_hit=cache_hit,
        ).normalized()
        day = _day_of(ts)
        key = _bucket_key(self._key_prefix, day, entry)
        index_key = self._index_key(day)
        cost = self._calculator.calculate_eur(entry.provider, entry.model, entry.usage)

        try:
            pipe = self._client.pipeline()
            pipe.sadd(index_key, key)
            pipe.expire(index_key, self._ttl_seconds)
            pipe.hsetnx(key, "day", day)
            pipe.hsetnx(key, "usage_key", entry.usage_key)
            pipe.hsetnx(key, "provider", entry.provider)
            pipe.hsetnx(key, "model", entry.model)
            pipe.hincrby(key, "requests", 1)
            pipe.hincrby(key, "latency_ms_sum", entry.latency_ms)
            if entry.cache_hit:
                pipe.hincrby(key, "cache_hits", 1)
            if not entry.ok:
                pipe.hincrby(key, "errors", 1)
                pipe.hincrby(key, f"error:{entry.error_code or 'unknown'}", 1)
            if entry.usage.input_tokens is not None:
                pipe.hincrby(key, "input_tokens", entry.usage.input_tokens)
            if entry.usage.output_tokens is not None:
                pipe.hincrby(key, "output_tokens", entry.usage.output_tokens)
            if entry.usage.total_tokens is not None:
                pipe.hincrby(key, "total_tokens", entry.usage.total_tokens)
            if cost is not None:
                pipe.hincrbyfloat(key, "cost_eur", cost)
            pipe.expire(key, self._ttl_seconds)
            pipe.execute()
        except Exception as exc:
            raise CostBackendError(f"Redis write failed: {exc}") from exc

    def daily_report(self, day: date | str) -> list[dict[str, Any]]:
        day_key = day if isinstance(day, str) else day.isoformat()
        try:
            keys = sorted(self._client.smembers(self._index_key(day_key)))
            raw_buckets = [self._client.hgetall(key) for key in keys]
        except Exception as exc:
            raise CostBackendError(f"Redis read failed: {exc}") from exc
        return [self._parse_bucket(raw) for raw in raw_buckets if raw]

    @staticmethod
    def _parse_bucket(raw: Mapping[str, str]) -> dict[str, Any]:
        bucket: dict[str, Any] = {
            "day": raw.get("day", ""),
            "usage_key": raw.get("usage_key", "unknown"),
            "provider": raw.get("provider", "unknown"),
            "model": raw.get("model", "unknown"),
            "cost_eur": float(raw.get("cost_eur", 0.0)),
            "error_codes": {
                field.removeprefix("error:"): int(value)
                for field, value in raw.items()
                if field.startswith("error:")
            },
        }
        for field in _COUNTER_FIELDS:
            bucket[field] = int(raw.get(field, 0))
        return bucket
