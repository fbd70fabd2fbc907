"""Chat adapter for OpenAI-compatible chat completion endpoints."""

from collections.abc import Mapping
from typing import Any

import httpx

from chat_gateway.core.errors import ProviderFatalError, ProviderTransientError
from chat_gateway.models.chat import ChatRequest
from chat_gateway.providers.base import ProviderResponse


class HTTPOpenAIChatAdapter:
    """Adapter that calls any OpenAI-compatible ``/v1/chat/completions`` endpoint."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        model: str,
        timeout_s: float = 30.0,
    ):
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._model = model
        self._timeout = timeout_s

    async def handle_request(self, request: ChatRequest) -> ProviderResponse:
        body: dict[str, object] = {
            "model": self._model,
            "messages": request.provider_messages(),
        }
        body.update(request.options)

        result = await self._post("/v1/chat/completions", body)
        return self._to_response(result)

    def _to_response(self, result: dict[str, Any]) -> ProviderResponse:
        content = ""
        finish_reason: str | None = None
        choices_raw = result.get("choices")
        if isinstance(choices_raw, list) and choices_raw:
            first_choice = choices_raw[0]
            if isinstance(first_choice, dict):
                message_raw = first_choice.get("message")
                if isinstance(message_raw, dict):
                    content_raw = message_raw.get("content")
                    if isinstance(content_raw, str):
                        content = content_raw
                finish_raw = first_choice.get("finish_reason")
                finish_reason = str(finish_raw) if finish_raw is not None else None
        usage_raw = result.get("usage")
        return ProviderResponse(
            message=content,
            model=str(result.get("model") or self._model),
            usage=usage_raw if isinstance(usage_raw, dict) else None,
            raw=result,
            finish_reason=finish_reason,
        )

    async def _post(self, path: str, body: dict[str, object]) -> dict[str, Any]:
        url = f"{self._base_url}{path}"
        headers = {
            "Authorization": f"Bearer {self._api_key}",
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

        self._raise_for_status(resp)

        try:
            result = resp.json()
        except ValueError as exc:
            raise ProviderFatalError(
                status_code=502,
                code="provider_invalid_payload",
                message="Provider returned a non-JSON payload",
            ) from exc
        if not isinstance(result, dict):
            raise ProviderFatalError(
                status_code=502,
                code="provider_invalid_payload",
                message="Provider returned an unexpected payload shape",
            )
        return result

    @staticmethod
    def _raise_for_status(resp: httpx.Response) -> None:
        if resp.status_code == 429:
            raise ProviderTransientError(
                status_code=429,
                code="provider_rate_limited",
                message="Provider rate limit exceeded (429)",
                error_type="rate_limit",
            )
        if resp.status_code in {502, 503, 504}:
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


class HTTPOpenAIAdapterFactory:
    def __init__(
        self,
        base_url: str,
        api_key: str,
        default_model: str,
        timeout_s: float = 30.0,
    ):
        self._base_url = base_url
        self._api_key = api_key
        self._default_model = default_model
        self._timeout_s = timeout_s

    def create(self, model: str | None, context: Mapping[str, Any]) -> HTTPOpenAIChatAdapter:
        _ = context
        return HTTPOpenAIChatAdapter(
            base_url=self._base_url,
            api_key=self._api_key,
            model=model or self._default_model,
            timeout_s=self._timeout_s,
        )
