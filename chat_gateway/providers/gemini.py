"""Gemini adapter for the Generative Language ``generateContent`` API."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import httpx

from chat_gateway.core.errors import (
    ProviderFatalError,
    ProviderSafetyBlocked,
    ProviderTransientError,
)
from chat_gateway.models.chat import ChatRequest, Role
from chat_gateway.providers.base import ProviderResponse

_SAFETY_FINISH_REASONS = frozenset({"SAFETY", "PROHIBITED_CONTENT", "BLOCKLIST", "SPII"})


class GeminiChatAdapter:
    """Adapter that calls Gemini and normalizes candidates into a text response."""

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str = "https://generativelanguage.googleapis.com",
        timeout_s: float = 30.0,
    ):
        self._api_key = api_key
        self._model = model if model.startswith("models/") else f"models/{model}"
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout_s

    async def handle_request(self, request: ChatRequest) -> ProviderResponse:
        system_prompt, contents = self._normalize_messages(request)
        body: dict[str, object] = {"contents": contents}
        if system_prompt:
            body["systemInstruction"] = {"parts": [{"text": system_prompt}]}
        if request.options:
            body["generationConfig"] = dict(request.options)

        result = await self._post(f"/v1beta/{self._model}:generateContent", body)
        return self._to_response(result)

    @staticmethod
    def _normalize_messages(request: ChatRequest) -> tuple[str, list[dict[str, object]]]:
        system_parts: list[str] = []
        contents: list[dict[str, object]] = []
        for message in request.messages:
            if message.role is Role.SYSTEM:
                system_parts.append(message.content)
                continue
            role = "model" if message.role is Role.ASSISTANT else "user"
            contents.append({"role": role, "parts": [{"text": message.content}]})
        return "\n\n".join(system_parts), contents

    def _to_response(self, result: dict[str, Any]) -> ProviderResponse:
        feedback_raw = result.get("promptFeedback")
        feedback = feedback_raw if isinstance(feedback_raw, dict) else {}
        block_reason = feedback.get("blockReason")
        if block_reason:
            raise ProviderSafetyBlocked(
                f"Request blocked by safety settings (promptFeedback: {block_reason})"
            )

        candidates_raw = result.get("candidates")
        candidates = candidates_raw if isinstance(candidates_raw, list) else []
        first = candidates[0] if candidates and isinstance(candidates[0], dict) else {}
        finish_reason = first.get("finishReason")
        content_raw = first.get("content")
        content = content_raw if isinstance(content_raw, dict) else {}
        parts_raw = content.get("parts")
        parts = parts_raw if isinstance(parts_raw, list) else []
        text = "".join(
            str(part.get("text", ""))
            for part in parts
            if isinstance(part, dict) and not part.get("thought")
        )
        if not text and finish_reason in _SAFETY_FINISH_REASONS:
            raise ProviderSafetyBlocked(
                f"Response blocked by safety settings (finishReason: {finish_reason})"
            )

        usage_raw = result.get("usageMetadata")
        return ProviderResponse(
            message=text,
            model=self._model,
            usage=usage_raw if isinstance(usage_raw, dict) else None,
            raw=result,
            finish_reason=str(finish_reason) if finish_reason is not None else None,
        )

    async def _post(self, path: str, body: dict[str, object]) -> dict[str, Any]:
        url = f"{self._base_url}{path}"
        headers = {
            "x-goog-api-key": self._api_key,
            "Content-Type": "application/json",
        }
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(url, json=body, headers=headers)
        except httpx.TimeoutException as exc:
            raise ProviderTransientError(
                status_code=503,
                code="provider_timeout",
                message=f"Provider request timed out: {exc}",
            ) from exc
        except httpx.ConnectError as exc:
            raise ProviderTransientError(
                status_code=502,
                code="provider_connection_error",
                message=f"Cannot connect to provider: {exc}",
            ) from exc
        except httpx.TransportError as exc:
            raise ProviderTransientError(
                status_code=502,
                code="provider_transport_error",
                message=f"Provider transport error: {exc}",
            ) from exc

        if resp.status_code == 429:
            raise ProviderTransientError(
                status_code=429,
                code="provider_rate_limited",
                message="Provider rate limit exceeded (429)",
                error_type="rate_limit",
            )
        if resp.status_code in {500, 502, 503, 504}:
            raise ProviderTransientError(
                status_code=resp.status_code,
                code="provider_upstream_error",
                message=f"Provider returned {resp.status_code}",
            )
        if resp.status_code >= 400:
            raise ProviderFatalError(
                status_code=resp.status_code,
                code="provider_error",
                message=f"Provider returned {resp.status_code}",
            )

        try:
            parsed = resp.json()
        except ValueError as exc:
            raise ProviderFatalError(
                status_code=502,
                code="provider_invalid_payload",
                message="Provider returned a non-JSON payload",
            ) from exc
        if not isinstance(parsed, dict):
            raise ProviderFatalError(
                status_code=502,
                code="provider_invalid_payload",
                message="Provider returned an unexpected payload shape",
            )
        return parsed


class GeminiAdapterFactory:
    def __init__(
        self,
        api_key: str,
        default_model: str,
        base_url: str = "https://generativelanguage.googleapis.com",
        timeout_s: float = 30.0,
    ):
        self._api_key = api_key
        self._default_model = default_model
        self._base_url = base_url
        self._timeout_s = timeout_s

    def create(self, model: str | None, context: Mapping[str, Any]) -> GeminiChatAdapter:
        _ = context
        return GeminiChatAdapter(
            api_key=self._api_key,
            model=model or self._default_model,
            base_url=self._base_url,
            timeout_s=self._timeout_s,
        )
