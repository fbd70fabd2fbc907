from chat_gateway.config.settings import Settings, get_settings
from chat_gateway.core.logging import configure_logging
from chat_gateway.cost.calculator import CostCalculator
from chat_gateway.cost.tracker import CostTracker, InMemoryCostTracker, RedisCostTracker
from chat_gateway.gateway.orchestrator import ChatGateway
from chat_gateway.gateway.router import ProviderRouter
from chat_gateway.providers.gemini import GeminiAdapterFactory
from chat_gateway.providers.http_openai import HTTPOpenAIAdapterFactory
from chat_gateway.providers.registry import AdapterRegistry, ProviderEntry
from chat_gateway.providers.stub import StubAdapterFactory
from chat_gateway.telemetry.tracing import SpanCollector
from chat_gateway.usage.extractor import UsageExtractor


def build_adapter_registry(settings: Settings) -> AdapterRegistry:
    registry = AdapterRegistry()
    if settings.stub_enabled:
        registry.register(ProviderEntry(name="stub", factory=StubAdapterFactory()))
    if settings.openai_api_key:
        registry.register(
            ProviderEntry(
                name="openai",
                factory=HTTPOpenAIAdapterFactory(
                    base_url=settings.openai_base_url,
                    api_key=settings.openai_api_key,
                    default_model=settings.openai_model,
                    timeout_s=settings.openai_timeout_s,
                ),
            )
        )
    if settings.gemini_api_key:
        registry.register(
            ProviderEntry(
                name="gemini",
                factory=GeminiAdapterFactory(
                    api_key=settings.gemini_api_key,
                    default_model=settings.gemini_model,
                    base_url=settings.gemini_base_url,
                    timeout_s=settings.gemini_timeout_s,
                ),
            )
        )
    return registry


def build_cost_tracker(settings: Settings) -> CostTracker:
    calculator = CostCalculator(settings.cost_pricing_map)
    backend = settings.cost_backend_normalized
    if backend == "memory":
        return InMemoryCostTracker(
            calculator=calculator,
            enabled=settings.cost_tracking_enabled,
            retention_days=settings.cost_retention_days,
        )
    if backend == "redis":
        if not settings.cost_redis_url:
            raise RuntimeError("CGW_COST_REDIS_URL is required when cost backend is redis")
        return RedisCostTracker(
            redis_url=settings.cost_redis_url,
            calculator=calculator,
            enabled=settings.cost_tracking_enabled,
            retention_days=settings.cost_retention_days,
            key_prefix=settings.cost_redis_prefix,
        )
    raise RuntimeError(f"Unsupported CGW_COST_BACKEND value: {backend}")


def create_gateway(settings: Settings | None = None) -> ChatGateway:
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    span_collector = (
        SpanCollector(max_traces=settings.tracing_max_traces)
        if settings.tracing_enabled
        else None
    )
    return ChatGateway(
        settings=settings,
        adapter_registry=build_adapter_registry(settings),
        router=ProviderRouter(
            precise_provider=settings.precise_provider_normalized,
            creative_provider=settings.creative_provider_normalized,
        ),
        cost_tracker=build_cost_tracker(settings),
        usage_extractor=UsageExtractor(),
        span_collector=span_collector,
    )
