import httpx
import pytest

from chat_gateway.core.errors import (
    AdapterResolutionError,
    ProviderFatalError,
    ProviderSafetyBlocked,
    ProviderTransientError,
)
from chat_gateway.gateway.fallback import (
    NO_RETRY,
    FallbackDecision,
    classify_failure,
    error_code_for,
    is_safety_block,
    is_transient,
)

# Literal messages observed from vendor SDKs and transports; keep in sync with
# the signal lists when upstream wording changes.
SAFETY_MESSAGES = [
    "Request blocked by safety settings",
    "Gemini: response was blocked by safety filters",
    'Invalid response: {"promptFeedback": {"blockReason": "OTHER"}}',
]
TRANSIENT_MESSAGES = [
    "cURL error 28: Operation timed out after 30001 milliseconds",
    "Read timeout on endpoint URL",
    "Connection reset by peer",
    "Connection aborted.",
    "Rate limit reached for requests",
    "HTTP/2 429 Too Many Requests",
    "Server error: 503 Service Unavailable",
    "Transport error while sending request",
    "Error reading response body",
    "Stream read failed",
    "Failed to read from socket",
]
NON_RETRYABLE_MESSAGES = [
    "Invalid API key provided",
    "The model `gpt-9` does not exist",
    "Bad request: messages must not be empty",
]


@pytest.mark.parametrize("message", SAFETY_MESSAGES)
def test_safety_messages_are_detected(message: str) -> None:
    assert is_safety_block(RuntimeError(message))


@pytest.mark.parametrize("message", TRANSIENT_MESSAGES)
def test_transient_messages_are_detected(message: str) -> None:
    assert is_transient(RuntimeError(message))


@pytest.mark.parametrize("message", NON_RETRYABLE_MESSAGES)
def test_other_messages_are_neither(message: str) -> None:
    error = RuntimeError(message)
    assert not is_safety_block(error)
    assert not is_transient(error)


def test_typed_errors_are_classified_without_message_matching() -> None:
    assert is_safety_block(ProviderSafetyBlocked("nope"))
    assert is_transient(
        ProviderTransientError(status_code=502, code="provider_connection_error", message="x")
    )
    assert is_transient(TimeoutError())
    assert is_transient(ConnectionResetError())
    assert is_transient(httpx.ReadTimeout("read timeout"))


def test_creative_safety_block_earns_retry() -> None:
    decision = classify_failure(
        ProviderSafetyBlocked("Request blocked by safety settings"),
        provider_used="gemini",
        creative_provider="gemini",
        auto_routed=True,
        already_fell_back=False,
    )

    assert decision == FallbackDecision(retry=True, reason="safety")


def test_safety_wins_when_message_looks_transient_too() -> None:
    decision = classify_failure(
        RuntimeError("Request blocked by safety settings after timeout"),
        provider_used="Gemini",
        creative_provider="gemini",
        auto_routed=True,
        already_fell_back=False,
    )

    assert decision.reason == "safety"


def test_creative_transient_error_earns_retry() -> None:
    decision = classify_failure(
        RuntimeError("Connection reset by peer"),
        provider_used="gemini",
        creative_provider="gemini",
        auto_routed=True,
        already_fell_back=False,
    )

    assert decision == FallbackDecision(retry=True, reason="transient")


@pytest.mark.parametrize(
    ("provider_used", "auto_routed", "already_fell_back"),
    [
        ("openai", True, False),
        ("gemini", False, False),
        ("gemini", True, True),
    ],
)
def test_retry_requires_auto_routed_first_creative_attempt(
    provider_used: str, auto_routed: bool, already_fell_back: bool
) -> None:
    decision = classify_failure(
        ProviderSafetyBlocked("Request blocked by safety settings"),
        provider_used=provider_used,
        creative_provider="gemini",
        auto_routed=auto_routed,
        already_fell_back=already_fell_back,
    )

    assert decision == NO_RETRY


def test_fatal_creative_error_is_not_retried() -> None:
    decision = classify_failure(
        ProviderFatalError(status_code=401, code="provider_error", message="Provider returned 401"),
        provider_used="gemini",
        creative_provider="gemini",
        auto_routed=True,
        already_fell_back=False,
    )

    assert decision == NO_RETRY


def test_error_code_for_prefers_typed_code() -> None:
    assert error_code_for(AdapterResolutionError("mistral")) == "adapter_unresolved"
    assert error_code_for(RuntimeError("Request blocked by safety settings")) == (
        "provider_safety_blocked"
    )
    assert error_code_for(RuntimeError("Connection reset by peer")) == "provider_transient"
    assert error_code_for(ValueError("bad")) == "ValueError"


@pytest.mark.parametrize(
    "error",
    [
        ProviderFatalError(
            status_code=400,
            code="provider_error",
            message="Invalid argument: generation timeout must be positive",
        ),
        ProviderFatalError(
            status_code=400, code="provider_error", message="Provider returned 400: quota 4290 tokens"
        ),
        AdapterResolutionError("gemini", 'AI provider "gemini" timed out during setup (503)'),
    ],
)
def test_fatal_typed_errors_are_never_retried_whatever_their_message(error: Exception) -> None:
    decision = classify_failure(
        error,
        provider_used="gemini",
        creative_provider="gemini",
        auto_routed=True,
        already_fell_back=False,
    )

    assert decision == NO_RETRY
    assert not is_transient(error)
    assert not is_safety_block(error)


def test_typed_transient_error_mentioning_safety_stays_transient() -> None:
    error = ProviderTransientError(
        status_code=503,
        code="provider_upstream_error",
        message="upstream blocked by safety proxy",
    )

    assert not is_safety_block(error)
    assert classify_failure(
        error,
        provider_used="gemini",
        creative_provider="gemini",
        auto_routed=True,
        already_fell_back=False,
    ) == FallbackDecision(retry=True, reason="transient")
