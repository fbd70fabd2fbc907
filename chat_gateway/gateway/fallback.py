"""Decide whether a failed provider attempt may be retried once elsewhere.

Adapters surface most failures as typed ``ProviderError`` subclasses, but
vendor SDKs and transports also leak opaque exceptions whose only signal is the
message text.  The substring lists below are therefore a heuristic: they are
pinned by characterization tests against literal vendor messages and must be
updated together with those tests when upstream wording changes.
"""

from dataclasses import dataclass
from typing import Literal

from chat_gateway.core.errors import (
    AdapterResolutionError,
    GatewayError,
    ProviderFatalError,
    ProviderSafetyBlocked,
    ProviderTransientError,
)

FallbackReason = Literal["safety", "transient"]

SAFETY_SIGNALS: tuple[str, ...] = (
    "request blocked by safety settings",
    "blocked by safety",
    "promptfeedback",
)
TRANSIENT_SIGNALS: tuple[str, ...] = (
    "timed out",
    "timeout",
    "connection reset",
    "connection aborted",
    "rate limit",
    "too many requests",
    "429",
    "503",
    "service unavailable",
    "transport error",
    "error reading",
    "stream read",
    "failed to read",
)


@dataclass(frozen=True)
class FallbackDecision:
    retry: bool
    reason: FallbackReason | None = None


NO_RETRY = FallbackDecision(retry=False)


def is_safety_block(error: BaseException) -> bool:
    # Typed gateway errors are classified by type only; their messages may
    # quote arbitrary upstream text.
    if isinstance(error, GatewayError):
        return isinstance(error, ProviderSafetyBlocked)
    message = str(error).lower()
    return any(signal in message for signal in SAFETY_SIGNALS)


def is_transient(error: BaseException) -> bool:
    if isinstance(error, GatewayError):
        return isinstance(error, ProviderTransientError)
    if isinstance(error, TimeoutError | ConnectionError):
        return True
    message = str(error).lower()
    return any(signal in message for signal in TRANSIENT_SIGNALS)


def classify_failure(
    error: BaseException,
    provider_used: str,
    creative_provider: str,
    auto_routed: bool,
    already_fell_back: bool,
) -> FallbackDecision:
    """Return whether *error* earns a one-shot reroute to the precise provider.

    Only auto-routed calls that landed on the creative provider and have not
    fallen back yet qualify; within those, safety blocks win over transient
    faults.
    """
    if already_fell_back or not auto_routed:
        return NO_RETRY
    if isinstance(error, ProviderFatalError | AdapterResolutionError):
        return NO_RETRY
    if provider_used.strip().lower() != creative_provider.strip().lower():
        return NO_RETRY
    if is_safety_block(error):
        return FallbackDecision(retry=True, reason="safety")
    if is_transient(error):
        return FallbackDecision(retry=True, reason="transient")
    return NO_RETRY


def error_code_for(error: BaseException) -> str:
    """Map any exception to a non-empty telemetry error code."""
    if isinstance(error, GatewayError) and error.code:
        return error.code
    if is_safety_block(error):
        return "provider_safety_blocked"
    if is_transient(error):
        return "provider_transient"
    return type(error).__name__ or "unknown_error"
