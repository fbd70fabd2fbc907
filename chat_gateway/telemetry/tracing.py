"""In-process span collector for gateway calls.

A ``ChatGateway.chat`` call produces one ``gateway.chat`` root span, one
``gateway.attempt`` span per provider attempt, and below every attempt a
``provider.call`` and, on success, a ``response.sanitize`` span.  Parents are
passed explicitly by ``span_id``; there is no process-wide "current span".

Finished spans are buffered per trace id; the least recently touched trace is
dropped once ``max_traces`` is exceeded.
"""

import logging
import threading
from collections import OrderedDict
from dataclasses import asdict, dataclass, field
from time import perf_counter, time_ns
from typing import Any
from uuid import uuid4

logger = logging.getLogger("cgw.tracing")

SERVICE_NAME = "chat-gateway"
_MAX_EXCEPTION_MESSAGE = 500


@dataclass
class FinishedSpan:
    trace_id: str
    span_id: str
    parent_span_id: str | None
    operation: str
    service: str = SERVICE_NAME
    start_time_ms: float = 0.0
    end_time_ms: float = 0.0
    duration_ms: float = 0.0
    status: str = "ok"
    attributes: dict[str, Any] = field(default_factory=dict)
    events: list[dict[str, Any]] = field(default_factory=list)


def _exception_event(error: BaseException) -> dict[str, Any]:
    return {
        "name": "exception",
        "attributes": {
            "exception.type": type(error).__name__,
            "exception.message": str(error)[:_MAX_EXCEPTION_MESSAGE],
        },
    }


class ActiveSpan:
    """A span that is open; it is handed to the collector when the block exits."""

    def __init__(
        self,
        collector: "SpanCollector",
        trace_id: str,
        operation: str,
        parent_span_id: str | None = None,
        attributes: dict[str, Any] | None = None,
    ) -> None:
        self.span_id = uuid4().hex[:16]
        self._collector = collector
        self._record = FinishedSpan(
            trace_id=trace_id,
            span_id=self.span_id,
            parent_span_id=parent_span_id,
            operation=operation,
            attributes=dict(attributes or {}),
        )
        self._started = 0.0

    def __enter__(self) -> "ActiveSpan":
        self._started = perf_counter()
        self._record.start_time_ms = round(time_ns() / 1_000_000, 3)
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        record = self._record
        record.duration_ms = round((perf_counter() - self._started) * 1000, 3)
        record.end_time_ms = round(time_ns() / 1_000_000, 3)
        if exc_val is not None:
            record.status = "error"
            record.attributes["error.type"] = type(exc_val).__name__
            record.events.append(_exception_event(exc_val))
        self._collector.record_span(record.trace_id, record)

    def set_attribute(self, key: str, value: Any) -> None:
        self._record.attributes[key] = value

    def add_event(self, name: str, attributes: dict[str, Any] | None = None) -> None:
        self._record.events.append({"name": name, "attributes": dict(attributes or {})})


class NoopSpan:
    """Stand-in used when tracing is disabled."""

    span_id: str | None = None

    def __enter__(self) -> "NoopSpan":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        _ = exc_type, exc_val, exc_tb

    def set_attribute(self, key: str, value: Any) -> None:
        _ = key, value

    def add_event(self, name: str, attributes: dict[str, Any] | None = None) -> None:
        _ = name, attributes


class SpanCollector:
    """Bounded in-memory store of finished spans, grouped by trace id."""

    def __init__(self, max_traces: int = 1000) -> None:
        self._max_traces = max(1, max_traces)
        self._traces: OrderedDict[str, list[FinishedSpan]] = OrderedDict()
        self._lock = threading.Lock()

    def span(
        self,
        trace_id: str,
        operation: str,
        parent_span_id: str | None = None,
        attributes: dict[str, Any] | None = None,
    ) -> ActiveSpan:
        return ActiveSpan(self, trace_id, operation, parent_span_id, attributes)

    def record_span(self, trace_id: str, span: FinishedSpan) -> None:
        with self._lock:
            self._traces.setdefault(trace_id, []).append(span)
            self._traces.move_to_end(trace_id)
            while len(self._traces) > self._max_traces:
                evicted, _ = self._traces.popitem(last=False)
                logger.debug("trace_evicted", extra={"trace_id": evicted})

    def get_trace(self, trace_id: str) -> list[dict[str, Any]]:
        """Spans of *trace_id* as dicts, in the order they finished."""
        with self._lock:
            return [asdict(span) for span in self._traces.get(trace_id, [])]

    def list_traces(self, limit: int = 20) -> list[str]:
        """Most recently updated trace ids first."""
        with self._lock:
            return list(reversed(self._traces))[:limit]

    def trace_count(self) -> int:
        with self._lock:
            return len(self._traces)

    def clear(self) -> None:
        with self._lock:
            self._traces.clear()
