from collections.abc import Iterator

import pytest

from chat_gateway import metrics
from chat_gateway.config.settings import Settings, clear_settings_cache


@pytest.fixture(autouse=True)
def _isolate_process_state() -> Iterator[None]:
    clear_settings_cache()
    metrics.reset_metrics()
    yield
    clear_settings_cache()
    metrics.reset_metrics()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        precise_provider="openai",
        creative_provider="gemini",
        default_provider="openai",
        auto_routing_enabled=True,
        max_messages=60,
        kb_context_warn_chars=12_000,
        request_timeout_s=5.0,
        fallback_keep_kb_context=False,
        stub_enabled=True,
        openai_api_key=None,
        gemini_api_key=None,
        cost_backend="memory",
        tracing_enabled=False,
        metrics_enabled=True,
    )
