from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any

_RECOGNIZED_KEYS = frozenset(
    {"usage_key", "cache_hit", "model_used", "fallback_done", "mode", "kb_matches", "trace_id"}
)


@dataclass(frozen=True)
class CallContext:
    """Caller-supplied hints for one ``chat`` call.

    ``fallback_done`` is the reentry guard set by the gateway on its single
    retry; callers are not expected to set it.  Unrecognized keys are carried
    in ``extra`` and forwarded to the adapter factory untouched.
    """

    usage_key: str = "unknown"
    cache_hit: bool = False
    model_used: str | None = None
    fallback_done: bool = False
    mode: str = ""
    kb_matches: tuple[Mapping[str, Any], ...] = ()
    trace_id: str | None = None
    extra: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any] | None) -> "CallContext":
        raw = raw or {}
        usage_key = str(raw.get("usage_key") or "").strip() or "unknown"
        model_used_raw = raw.get("model_used")
        model_used = str(model_used_raw).strip() if model_used_raw else None
        kb_matches_raw = raw.get("kb_matches") or ()
        kb_matches = tuple(
            match for match in kb_matches_raw if isinstance(match, Mapping)
        ) if isinstance(kb_matches_raw, list | tuple) else ()
        trace_id_raw = raw.get("trace_id")
        return cls(
            usage_key=usage_key,
            cache_hit=bool(raw.get("cache_hit", False)),
            model_used=model_used or None,
            fallback_done=bool(raw.get("fallback_done", False)),
            mode=str(raw.get("mode") or "").strip(),
            kb_matches=kb_matches,
            trace_id=str(trace_id_raw) if trace_id_raw else None,
            extra=MappingProxyType(
                {key: value for key, value in raw.items() if key not in _RECOGNIZED_KEYS}
            ),
        )

    def with_fallback_done(self) -> "CallContext":
        return replace(self, fallback_done=True)

    def as_adapter_context(self) -> dict[str, Any]:
        payload: dict[str, Any] = dict(self.extra)
        payload.update(
            {
                "usage_key": self.usage_key,
                "cache_hit": self.cache_hit,
                "fallback_done": self.fallback_done,
            }
        )
        if self.model_used:
            payload["model_used"] = self.model_used
        if self.mode:
            payload["mode"] = self.mode
        return payload


@dataclass(frozen=True)
class Attempt:
    """One pass through build/dispatch; ``number`` is 0 or 1."""

    number: int
    provider: str | None
    model: str | None
    kb_context: str
    context: CallContext

    def fallback(self, provider: str, keep_kb_context: bool = False) -> "Attempt":
        return Attempt(
            number=self.number + 1,
            provider=provider,
            model=None,
            kb_context=self.kb_context if keep_kb_context else "",
            context=self.context.with_fallback_done(),
        )
