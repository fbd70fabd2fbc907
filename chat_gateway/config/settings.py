import json as json_mod
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="CGW_", case_sensitive=False)

    env: str = "dev"
    log_level: str = "INFO"

    # Provider selection
    precise_provider: str = Field(
        default="openai",
        description="Provider used for technical/support answers and as fallback target",
    )
    creative_provider: str = Field(
        default="gemini",
        description="Provider used for newsletter and long-form document queries",
    )
    auto_routing_enabled: bool = True
    default_provider: str = "openai"

    # Request building
    max_messages: int = Field(default=60, ge=1)
    kb_context_warn_chars: int = Field(default=12_000, ge=0)
    request_timeout_s: float | None = 60.0
    fallback_keep_kb_context: bool = False

    # Provider adapters
    stub_enabled: bool = True
    openai_base_url: str = "https://api.openai.com"
    openai_api_key: str | None = None
    openai_model: str = "gpt-4o-mini"
    openai_timeout_s: float = 30.0
    gemini_base_url: str = "https://generativelanguage.googleapis.com"
    gemini_api_key: str | None = None
    gemini_model: str = "models/gemini-2.5-flash"
    gemini_timeout_s: float = 30.0

    # Cost tracking
    cost_tracking_enabled: bool = True
    cost_backend: str = "memory"
    cost_redis_url: str | None = None
    cost_redis_prefix: str = "cgw:ai_cost"
    cost_retention_days: int = 90
    cost_pricing: str = Field(
        default="",
        description="JSON: {provider: {model|default: {input_per_1k, output_per_1k}}} in EUR",
    )

    # Telemetry
    tracing_enabled: bool = False
    tracing_max_traces: int = 1000
    metrics_enabled: bool = True

    @property
    def precise_provider_normalized(self) -> str:
        return self.precise_provider.strip().lower()

    @property
    def creative_provider_normalized(self) -> str:
        return self.creative_provider.strip().lower()

    @property
    def default_provider_normalized(self) -> str:
        return self.default_provider.strip().lower()

    @property
    def cost_backend_normalized(self) -> str:
        return self.cost_backend.strip().lower()

    @property
    def cost_pricing_map(self) -> dict[str, dict[str, dict[str, float]]]:
        """Parse ``cost_pricing`` into ``{provider: {model: prices}}``.

        Malformed JSON or entries without numeric prices are ignored so that a
        broken pricing table never blocks chat traffic.
        """
        raw = self.cost_pricing.strip()
        if not raw:
            return {}
        try:
            parsed = json_mod.loads(raw)
        except json_mod.JSONDecodeError:
            return {}
        if not isinstance(parsed, dict):
            return {}
        result: dict[str, dict[str, dict[str, float]]] = {}
        for provider, models in parsed.items():
            if not isinstance(models, dict):
                continue
            provider_key = str(provider).strip().lower()
            if not provider_key:
                continue
            for model, prices in models.items():
                if not isinstance(prices, dict):
                    continue
                try:
                    entry = {
                        "input_per_1k": float(prices.get("input_per_1k", 0.0)),
                        "output_per_1k": float(prices.get("output_per_1k", 0.0)),
                    }
                except (TypeError, ValueError):
                    continue
                result.setdefault(provider_key, {})[str(model).strip()] = entry
        return result


@lru_cache
def get_settings() -> Settings:
    return Settings()


def clear_settings_cache() -> None:
    get_settings.cache_clear()
