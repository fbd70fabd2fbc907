class GatewayError(Exception):
    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        error_type: str = "gateway",
    ):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message
        self.error_type = error_type


class AdapterResolutionError(GatewayError):
    """No adapter is registered (or enabled) for the requested provider."""

    def __init__(self, provider: str, message: str | None = None):
        super().__init__(
            status_code=400,
            code="adapter_unresolved",
            message=message or f'Unsupported AI provider "{provider}"',
            error_type="configuration",
        )
        self.provider = provider


class ProviderError(GatewayError):
    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        error_type: str = "provider",
    ):
        super().__init__(
            status_code=status_code,
            code=code,
            message=message,
            error_type=error_type,
        )


class ProviderSafetyBlocked(ProviderError):
    """The provider refused to answer because of its content policy."""

    def __init__(self, message: str, code: str = "provider_safety_blocked"):
        super().__init__(status_code=422, code=code, message=message, error_type="safety")


class ProviderTransientError(ProviderError):
    """Timeouts, rate limits, connection and stream faults."""


class ProviderFatalError(ProviderError):
    """Any provider failure that must never be retried."""
