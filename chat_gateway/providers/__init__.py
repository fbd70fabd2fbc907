"""Chat adapter implementations for provider backends."""

from chat_gateway.providers.gemini import GeminiAdapterFactory, GeminiChatAdapter
from chat_gateway.providers.http_openai import HTTPOpenAIAdapterFactory, HTTPOpenAIChatAdapter
from chat_gateway.providers.stub import StubAdapterFactory, StubChatAdapter

__all__ = [
    "GeminiAdapterFactory",
    "GeminiChatAdapter",
    "HTTPOpenAIAdapterFactory",
    "HTTPOpenAIChatAdapter",
    "StubAdapterFactory",
    "StubChatAdapter",
]
