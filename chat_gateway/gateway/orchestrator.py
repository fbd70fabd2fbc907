"""Single entry point for knowledge-base chat calls.

``ChatGateway.chat`` turns caller history plus an optional knowledge-base
context into one provider request, picks the provider, dispatches through the
adapter registry, records usage and cost per attempt, and returns a sanitized
answer.  An auto-routed call that fails on the creative provider with a safety
block or a transient fault is retried exactly once on the precise provider.
"""

import asyncio
import logging
from collections.abc import Awaitable, Iterable, Mapping
from dataclasses import dataclass
from time import perf_counter
from typing import Any
from uuid import uuid4

from chat_gateway import metrics
from chat_gateway.config.settings import Settings
from chat_gateway.core.errors import ProviderTransientError
from chat_gateway.cost.tracker import CostBackendError, CostTracker
from chat_gateway.gateway.assembler import assemble_request
from chat_gateway.gateway.context import Attempt, CallContext
from chat_gateway.gateway.fallback import classify_failure, error_code_for
from chat_gateway.gateway.history import HistoryBuild, build_history, last_user_message
from chat_gateway.gateway.router import ProviderRouter, RoutingContext
from chat_gateway.gateway.sanitizer import extract_text, is_placeholder, strip_leaks
from chat_gateway.models.chat import Message
from chat_gateway.providers.base import ProviderResponse
from chat_gateway.providers.registry import AdapterRegistry
from chat_gateway.telemetry.tracing import NoopSpan, SpanCollector
from chat_gateway.usage.extractor import EMPTY_USAGE, UsageExtractor, UsageStats

logger = logging.getLogger("cgw.gateway")

_AUTO_PROVIDER_VALUES = frozenset({"", "auto"})


@dataclass(frozen=True)
class _Outcome:
    text: str | None = None
    next_attempt: Attempt | None = None


class ChatGateway:
    def __init__(
        self,
        settings: Settings,
        adapter_registry: AdapterRegistry,
        router: ProviderRouter | None = None,
        cost_tracker: CostTracker | None = None,
        usage_extractor: UsageExtractor | None = None,
        span_collector: SpanCollector | None = None,
    ):
        self._settings = settings
        self._registry = adapter_registry
        self._router = router or ProviderRouter(
            precise_provider=settings.precise_provider_normalized,
            creative_provider=settings.creative_provider_normalized,
        )
        self._cost_tracker = cost_tracker
        self._usage_extractor = usage_extractor or UsageExtractor()
        self._span_collector = span_collector

    @property
    def router(self) -> ProviderRouter:
        return self._router

    async def chat(
        self,
        history: Iterable[object],
        kb_context: str = "",
        provider: str | None = None,
        model: str | None = None,
        context: Mapping[str, Any] | None = None,
        *,
        timeout_s: float | None = None,
    ) -> str:
        """Answer the conversation in *history* and return the sanitized text.

        *provider* pins the adapter; ``None``, ``""`` or ``"auto"`` lets the
        router decide.  *timeout_s* bounds the whole call including a fallback
        attempt and defaults to ``settings.request_timeout_s``.  Provider
        failures that do not qualify for the fallback propagate unchanged.
        """
        call_context = CallContext.from_mapping(context)
        trace_id = call_context.trace_id or uuid4().hex
        raw_history = list(history)
        deadline = self._deadline(timeout_s)
        attempt = Attempt(
            number=0,
            provider=self._pinned_provider(provider),
            model=(model or "").strip() or None,
            kb_context=kb_context or "",
            context=call_context,
        )

        with self._span(
            trace_id=trace_id,
            operation="gateway.chat",
            attributes={
                "usage_key": call_context.usage_key,
                "provider.requested": attempt.provider or "auto",
            },
        ) as root:
            while True:
                outcome = await self._run_attempt(
                    attempt, raw_history, trace_id, root.span_id, deadline
                )
                if outcome.next_attempt is None:
                    root.set_attribute("attempts", attempt.number + 1)
                    return outcome.text or ""
                attempt = outcome.next_attempt

    async def _run_attempt(
        self,
        attempt: Attempt,
        raw_history: list[object],
        trace_id: str,
        parent_span_id: str | None,
        deadline: float | None,
    ) -> _Outcome:
        with self._span(
            trace_id=trace_id,
            operation="gateway.attempt",
            parent_span_id=parent_span_id,
            attributes={
                "attempt": attempt.number,
                "fallback_done": attempt.context.fallback_done,
            },
        ) as span:
            build = build_history(raw_history, attempt.kb_context, self._settings.max_messages)
            self._log_build(build, attempt, trace_id)

            provider_name, auto_routed = self._resolve_provider(attempt, build.messages, trace_id)
            span.set_attribute("provider", provider_name)
            span.set_attribute("auto_routed", auto_routed)

            started = perf_counter()
            try:
                response = await self._dispatch(
                    attempt, provider_name, build.messages, trace_id, span.span_id, deadline
                )
            except asyncio.CancelledError:
                self._record(
                    attempt,
                    provider=provider_name,
                    model=attempt.context.model_used or attempt.model or "unknown",
                    usage=EMPTY_USAGE,
                    latency_s=perf_counter() - started,
                    ok=False,
                    error_code="cancelled",
                )
                logger.warning(
                    "chat_cancelled",
                    extra={
                        "trace_id": trace_id,
                        "usage_key": attempt.context.usage_key,
                        "provider": provider_name,
                        "attempt": attempt.number,
                    },
                )
                raise
            except Exception as exc:
                latency_s = perf_counter() - started
                error_code = error_code_for(exc)
                self._record(
                    attempt,
                    provider=provider_name,
                    model=attempt.context.model_used or attempt.model or "unknown",
                    usage=EMPTY_USAGE,
                    latency_s=latency_s,
                    ok=False,
                    error_code=error_code,
                )
                decision = classify_failure(
                    exc,
                    provider_used=provider_name,
                    creative_provider=self._router.creative_provider,
                    auto_routed=auto_routed,
                    already_fell_back=attempt.context.fallback_done,
                )
                if decision.retry:
                    fallback_provider = self._router.precise_provider
                    logger.warning(
                        "chat_provider_fallback",
                        extra={
                            "trace_id": trace_id,
                            "usage_key": attempt.context.usage_key,
                            "provider": provider_name,
                            "fallback_provider": fallback_provider,
                            "attempt": attempt.number,
                            "reason": decision.reason,
                            "error_code": error_code,
                            "error_class": type(exc).__name__,
                        },
                    )
                    span.add_event("fallback", {"reason": decision.reason or ""})
                    if self._settings.metrics_enabled:
                        metrics.record_fallback(
                            provider_name, fallback_provider, decision.reason or "unknown"
                        )
                    return _Outcome(
                        next_attempt=attempt.fallback(
                            fallback_provider,
                            keep_kb_context=self._settings.fallback_keep_kb_context,
                        )
                    )
                logger.error(
                    "chat_failed",
                    extra={
                        "trace_id": trace_id,
                        "usage_key": attempt.context.usage_key,
                        "provider": provider_name,
                        "attempt": attempt.number,
                        "error_code": error_code,
                        "error_class": type(exc).__name__,
                    },
                )
                raise

            latency_s = perf_counter() - started
            text = self._complete(
                response, attempt, provider_name, latency_s, trace_id, span.span_id
            )
            return _Outcome(text=text)

    async def _dispatch(
        self,
        attempt: Attempt,
        provider_name: str,
        messages: tuple[Message, ...],
        trace_id: str,
        parent_span_id: str | None,
        deadline: float | None,
    ) -> ProviderResponse:
        adapter = self._registry.create(
            provider_name,
            model=attempt.model,
            context=attempt.context.as_adapter_context(),
        )
        request = assemble_request(messages, provider=provider_name, model=attempt.model)
        with self._span(
            trace_id=trace_id,
            operation="provider.call",
            parent_span_id=parent_span_id,
            attributes={
                "provider": provider_name,
                "model": attempt.model or "default",
                "messages": len(request.messages),
            },
        ):
            return await self._with_deadline(adapter.handle_request(request), deadline)

    def _complete(
        self,
        response: ProviderResponse,
        attempt: Attempt,
        provider_name: str,
        latency_s: float,
        trace_id: str,
        parent_span_id: str | None,
    ) -> str:
        usage = self._usage_extractor.extract(response)
        model_name = (
            attempt.context.model_used
            or getattr(response, "model", None)
            or attempt.model
            or "unknown"
        )
        self._record(
            attempt,
            provider=provider_name,
            model=model_name,
            usage=usage,
            latency_s=latency_s,
            ok=True,
        )

        with self._span(
            trace_id=trace_id,
            operation="response.sanitize",
            parent_span_id=parent_span_id,
        ) as span:
            raw_text = extract_text(response)
            text = strip_leaks(raw_text)
            span.set_attribute("leak_stripped", text != raw_text.strip())

        if is_placeholder(text):
            logger.warning(
                "chat_empty_answer",
                extra={
                    "trace_id": trace_id,
                    "usage_key": attempt.context.usage_key,
                    "provider": provider_name,
                    "model": model_name,
                    "attempt": attempt.number,
                },
            )
        logger.info(
            "chat_completed",
            extra={
                "trace_id": trace_id,
                "usage_key": attempt.context.usage_key,
                "provider": provider_name,
                "model": model_name,
                "attempt": attempt.number,
                "latency_ms": int(latency_s * 1000),
                "token_in": usage.input_tokens,
                "token_out": usage.output_tokens,
                "answer_chars": len(text),
            },
        )
        return text

    def _resolve_provider(
        self,
        attempt: Attempt,
        messages: tuple[Message, ...],
        trace_id: str,
    ) -> tuple[str, bool]:
        if attempt.provider is not None:
            return attempt.provider, False
        if not self._settings.auto_routing_enabled:
            return self._settings.default_provider_normalized, False

        decision = self._router.decide(
            RoutingContext(
                mode_hint=attempt.context.mode,
                kb_matches=attempt.context.kb_matches,
                user_message=last_user_message(messages),
            )
        )
        logger.info(
            "chat_provider_routed",
            extra={
                "trace_id": trace_id,
                "usage_key": attempt.context.usage_key,
                "provider": decision.provider,
                "rule": decision.rule,
                "auto_routed": True,
            },
        )
        return decision.provider, True

    def _log_build(self, build: HistoryBuild, attempt: Attempt, trace_id: str) -> None:
        kb_chars = len(attempt.kb_context)
        logger.info(
            "chat_request_built",
            extra={
                "trace_id": trace_id,
                "usage_key": attempt.context.usage_key,
                "attempt": attempt.number,
                "history_count": len(build.messages),
                "history_count_before_limit": build.count_before_limit,
                "roles": [message.role.value for message in build.messages],
                "content_lens": [len(message.content) for message in build.messages],
                "kb_context_chars": kb_chars,
            },
        )
        if build.truncated:
            logger.warning(
                "chat_history_truncated",
                extra={
                    "trace_id": trace_id,
                    "usage_key": attempt.context.usage_key,
                    "history_count": len(build.messages),
                    "history_count_before_limit": build.count_before_limit,
                    "max_messages": build.max_messages,
                },
            )
        warn_chars = self._settings.kb_context_warn_chars
        if warn_chars and kb_chars > warn_chars:
            logger.warning(
                "chat_kb_context_large",
                extra={
                    "trace_id": trace_id,
                    "usage_key": attempt.context.usage_key,
                    "kb_context_chars": kb_chars,
                    "kb_context_warn_chars": warn_chars,
                },
            )

    def _record(
        self,
        attempt: Attempt,
        provider: str,
        model: str,
        usage: UsageStats,
        latency_s: float,
        ok: bool,
        error_code: str | None = None,
    ) -> None:
        latency_ms = int(latency_s * 1000)
        if self._cost_tracker is not None:
            try:
                self._cost_tracker.record(
                    usage_key=attempt.context.usage_key,
                    provider=provider,
                    model=model,
                    usage=usage,
                    latency_ms=latency_ms,
                    ok=ok,
                    error_code=error_code,
                    cache_hit=attempt.context.cache_hit,
                )
            except CostBackendError as exc:
                logger.warning(
                    "cost_record_failed",
                    extra={
                        "usage_key": attempt.context.usage_key,
                        "provider": provider,
                        "model": model,
                        "error_class": type(exc).__name__,
                    },
                )
        if self._settings.metrics_enabled:
            metrics.record_attempt(
                provider=provider,
                model=model,
                ok=ok,
                latency_s=latency_s,
                tokens_in=usage.input_tokens or 0,
                tokens_out=usage.output_tokens or 0,
                error_code=error_code,
            )

    def _deadline(self, timeout_s: float | None) -> float | None:
        budget = timeout_s if timeout_s is not None else self._settings.request_timeout_s
        if budget is None or budget <= 0:
            return None
        return asyncio.get_running_loop().time() + budget

    @staticmethod
    async def _with_deadline(
        call: Awaitable[ProviderResponse], deadline: float | None
    ) -> ProviderResponse:
        if deadline is None:
            return await call
        remaining = deadline - asyncio.get_running_loop().time()
        if remaining <= 0:
            if asyncio.iscoroutine(call):
                call.close()
            raise ProviderTransientError(
                status_code=504,
                code="provider_timeout",
                message="Gateway deadline exceeded before the provider call",
            )
        try:
            return await asyncio.wait_for(call, timeout=remaining)
        except TimeoutError as exc:
            raise ProviderTransientError(
                status_code=504,
                code="provider_timeout",
                message=f"Provider call timed out after {remaining:.1f}s",
            ) from exc

    @staticmethod
    def _pinned_provider(provider: str | None) -> str | None:
        normalized = (provider or "").strip().lower()
        if normalized in _AUTO_PROVIDER_VALUES:
            return None
        return normalized

    def _span(
        self,
        trace_id: str,
        operation: str,
        parent_span_id: str | None = None,
        attributes: dict[str, Any] | None = None,
    ) -> Any:
        if self._span_collector is None:
            return NoopSpan()
        return self._span_collector.span(
            trace_id=trace_id,
            operation=operation,
            parent_span_id=parent_span_id,
            attributes=attributes,
        )
