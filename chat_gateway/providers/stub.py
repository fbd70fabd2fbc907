from collections.abc import Mapping
from typing import Any
from uuid import uuid4

from chat_gateway.core.errors import (
    ProviderFatalError,
    ProviderSafetyBlocked,
    ProviderTransientError,
)
from chat_gateway.models.chat import ChatRequest, Role
from chat_gateway.providers.base import ProviderResponse


class StubChatAdapter:
    def __init__(self, model: str):
        self._model = model

    async def handle_request(self, request: ChatRequest) -> ProviderResponse:
        self._maybe_raise_provider_error(self._model)
        last_user_message = next(
            (m.content for m in reversed(request.messages) if m.role is Role.USER), ""
        )
        answer = f"Stub response: {last_user_message[:120]}"
        prompt_tokens = max(sum(len(m.content.split()) for m in request.messages), 1)
        completion_tokens = max(len(answer.split()), 1)
        usage = {
            "prompt_tokens": prompt_tokens,
            "completion_tokens": completion_tokens,
            "total_tokens": prompt_tokens + completion_tokens,
        }
        return ProviderResponse(
            message=answer,
            model=self._model,
            usage=usage,
            raw={"id": f"stub-{uuid4().hex}", "model": self._model, "usage": usage},
            finish_reason="stop",
        )

    @staticmethod
    def _maybe_raise_provider_error(model: str) -> None:
        if model.startswith("error-safety"):
            raise ProviderSafetyBlocked("Request blocked by safety settings")
        if model.startswith("error-429"):
            raise ProviderTransientError(
                status_code=429,
                code="provider_rate_limited",
                message="Provider rate limit exceeded",
                error_type="rate_limit",
            )
        if model.startswith("error-503"):
            raise ProviderTransientError(
                status_code=503,
                code="provider_upstream_error",
                message="Provider returned 503",
            )
        if model.startswith("error-fatal"):
            raise ProviderFatalError(
                status_code=500,
                code="provider_error",
                message="Provider returned 500",
            )


class StubAdapterFactory:
    def __init__(self, default_model: str = "stub-1"):
        self._default_model = default_model

    def create(self, model: str | None, context: Mapping[str, Any]) -> StubChatAdapter:
        _ = context
        return StubChatAdapter(model or self._default_model)
