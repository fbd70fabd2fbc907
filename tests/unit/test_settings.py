import pytest

from chat_gateway.config.settings import Settings, clear_settings_cache, get_settings


def test_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("CGW_MAX_MESSAGES", "CGW_PRECISE_PROVIDER", "CGW_CREATIVE_PROVIDER"):
        monkeypatch.delenv(name, raising=False)

    settings = Settings()

    assert settings.max_messages == 60
    assert settings.precise_provider_normalized == "openai"
    assert settings.creative_provider_normalized == "gemini"
    assert settings.auto_routing_enabled is True
    assert settings.fallback_keep_kb_context is False


def test_env_prefix_is_applied(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CGW_MAX_MESSAGES", "12")
    monkeypatch.setenv("CGW_CREATIVE_PROVIDER", " Gemini ")
    clear_settings_cache()

    settings = get_settings()

    assert settings.max_messages == 12
    assert settings.creative_provider_normalized == "gemini"


def test_get_settings_is_cached_until_cleared(monkeypatch: pytest.MonkeyPatch) -> None:
    first = get_settings()
    assert get_settings() is first

    monkeypatch.setenv("CGW_LOG_LEVEL", "DEBUG")
    clear_settings_cache()

    assert get_settings() is not first
    assert get_settings().log_level == "DEBUG"


def test_cost_pricing_map_parses_json() -> None:
    settings = Settings(
        cost_pricing=(
            '{"OpenAI": {"gpt-4o-mini": {"input_per_1k": 0.15, "output_per_1k": "0.6"},'
            ' "bad": {"input_per_1k": "x"}, "skip": 3}, "gemini": []}'
        )
    )

    assert settings.cost_pricing_map == {
        "openai": {"gpt-4o-mini": {"input_per_1k": 0.15, "output_per_1k": 0.6}}
    }


@pytest.mark.parametrize("raw", ["", "not json", "[1, 2]"])
def test_cost_pricing_map_tolerates_invalid_input(raw: str) -> None:
    assert Settings(cost_pricing=raw).cost_pricing_map == {}


def test_cost_backend_is_normalized() -> None:
    assert Settings(cost_backend=" Redis ").cost_backend_normalized == "redis"
