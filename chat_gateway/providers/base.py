from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol

from chat_gateway.models.chat import ChatRequest


@dataclass
class ProviderResponse:
    """Normalized result of a single provider call.

    ``message`` is usually the answer text but may be any object exposing a
    ``content``/``text`` attribute or accessor; the gateway never assumes more.
    """

    message: object
    model: str | None = None
    usage: Mapping[str, Any] | None = None
    raw: dict[str, Any] = field(default_factory=dict)
    finish_reason: str | None = None


class ChatAdapter(Protocol):
    async def handle_request(self, request: ChatRequest) -> ProviderResponse:
        """Execute the request against the provider backend."""


class AdapterFactory(Protocol):
    def create(self, model: str | None, context: Mapping[str, Any]) -> ChatAdapter:
        """Return a configured adapter for one call."""
