import asyncio

import httpx
import pytest

from chat_gateway.core.errors import (
    ProviderFatalError,
    ProviderSafetyBlocked,
    ProviderTransientError,
)
from chat_gateway.models.chat import ChatRequest, Message, Role
from chat_gateway.providers.gemini import GeminiAdapterFactory, GeminiChatAdapter


def _request() -> ChatRequest:
    return ChatRequest(
        messages=(
            Message(role=Role.SYSTEM, content="Antworte knapp."),
            Message(role=Role.USER, content="Was stand im Newsletter?"),
            Message(role=Role.ASSISTANT, content="Welche KW?"),
            Message(role=Role.USER, content="KW 12"),
            Message(role=Role.SYSTEM, content="Newsletter KW 12: Kassenupdate"),
        ),
        provider="gemini",
    )


def _adapter_returning(payload: dict[str, object]) -> tuple[GeminiChatAdapter, dict[str, object]]:
    adapter = GeminiChatAdapter(api_key="secret", model="gemini-2.5-flash")
    captured: dict[str, object] = {}

    async def fake_post(path: str, body: dict[str, object]) -> dict[str, object]:
        captured["path"] = path
        captured["body"] = body
        return payload

    adapter._post = fake_post  # type: ignore[method-assign]
    return adapter, captured


def test_handle_request_maps_roles_and_system_instruction() -> None:
    adapter, captured = _adapter_returning(
        {
            "candidates": [
                {
                    "content": {
                        "parts": [
                            {"text": "interne Überlegung", "thought": True},
                            {"text": "Kassenupdate "},
                            {"text": "am Montag."},
                        ]
                    },
                    "finishReason": "STOP",
                }
            ],
            "usageMetadata": {
                "promptTokenCount": 40,
                "candidatesTokenCount": 6,
                "totalTokenCount": 46,
            },
        }
    )

    response = asyncio.run(adapter.handle_request(_request()))

    assert captured["path"] == "/v1beta/models/gemini-2.5-flash:generateContent"
    assert captured["body"] == {
        "contents": [
            {"role": "user", "parts": [{"text": "Was stand im Newsletter?"}]},
            {"role": "model", "parts": [{"text": "Welche KW?"}]},
            {"role": "user", "parts": [{"text": "KW 12"}]},
        ],
        "systemInstruction": {
            "parts": [{"text": "Antworte knapp.\n\nNewsletter KW 12: Kassenupdate"}]
        },
    }
    assert response.message == "Kassenupdate am Montag."
    assert response.model == "models/gemini-2.5-flash"
    assert response.finish_reason == "STOP"
    assert response.usage == {
        "promptTokenCount": 40,
        "candidatesTokenCount": 6,
        "totalTokenCount": 46,
    }


def test_prompt_feedback_block_raises_safety_error() -> None:
    adapter, _ = _adapter_returning({"promptFeedback": {"blockReason": "SAFETY"}})

    with pytest.raises(ProviderSafetyBlocked, match="Request blocked by safety settings"):
        asyncio.run(adapter.handle_request(_request()))


def test_empty_candidate_with_safety_finish_reason_raises() -> None:
    adapter, _ = _adapter_returning(
        {"candidates": [{"content": {"parts": []}, "finishReason": "SAFETY"}]}
    )

    with pytest.raises(ProviderSafetyBlocked):
        asyncio.run(adapter.handle_request(_request()))


def test_empty_candidate_without_safety_reason_returns_empty_text() -> None:
    adapter, _ = _adapter_returning({"candidates": [{"finishReason": "MAX_TOKENS"}]})

    response = asyncio.run(adapter.handle_request(_request()))

    assert response.message == ""
    assert response.usage is None


@pytest.mark.parametrize(
    ("status_code", "error_type"),
    [
        (429, ProviderTransientError),
        (500, ProviderTransientError),
        (503, ProviderTransientError),
        (400, ProviderFatalError),
        (403, ProviderFatalError),
    ],
)
def test_http_status_mapping(
    monkeypatch: pytest.MonkeyPatch, status_code: int, error_type: type[Exception]
) -> None:
    captured: dict[str, object] = {}

    class _Client:
        def __init__(self, timeout: float) -> None:
            captured["timeout"] = timeout

        async def __aenter__(self) -> "_Client":
            return self

        async def __aexit__(self, *exc: object) -> None:
            return None

        async def post(self, url: str, json: object, headers: dict[str, str]) -> httpx.Response:
            captured["url"] = url
            captured["headers"] = headers
            return httpx.Response(status_code=status_code, json={"error": {}})

    monkeypatch.setattr("chat_gateway.providers.gemini.httpx.AsyncClient", _Client)
    adapter = GeminiChatAdapter(api_key="secret", model="models/gemini-2.5-flash", timeout_s=7.0)

    with pytest.raises(error_type):
        asyncio.run(adapter.handle_request(_request()))

    assert captured["url"] == (
        "https://generativelanguage.googleapis.com/v1beta/models/gemini-2.5-flash:generateContent"
    )
    assert captured["headers"]["x-goog-api-key"] == "secret"  # type: ignore[index]
    assert captured["timeout"] == 7.0


def test_factory_prefers_requested_model() -> None:
    factory = GeminiAdapterFactory(api_key="k", default_model="models/gemini-2.5-flash")

    assert factory.create(None, {})._model == "models/gemini-2.5-flash"
    assert factory.create("gemini-2.5-pro", {})._model == "models/gemini-2.5-pro"
