from collections.abc import Mapping

from chat_gateway.usage.extractor import UsageStats


class CostCalculator:
    """EUR cost estimation from a per-1k-token pricing table.

    ``pricing`` maps ``provider -> model -> {input_per_1k, output_per_1k}``; a
    ``default`` model entry per provider covers models without exact pricing.
    ``None`` means the cost is unknown, which is kept distinct from ``0.0``.
    """

    def __init__(self, pricing: Mapping[str, Mapping[str, Mapping[str, float]]] | None = None):
        self._pricing = {
            str(provider).strip().lower(): dict(models)
            for provider, models in (pricing or {}).items()
        }

    def calculate_eur(self, provider: str, model: str, usage: UsageStats) -> float | None:
        by_provider = self._pricing.get(provider.strip().lower())
        if not by_provider:
            return None
        model_key = model.strip() or "unknown"
        prices = by_provider.get(model_key) or by_provider.get("default")
        if not prices:
            return None

        usage = usage.with_fallback_total()
        in_tokens = usage.input_tokens or 0
        out_tokens = usage.output_tokens or 0
        return (in_tokens / 1000) * float(prices.get("input_per_1k", 0.0)) + (
            out_tokens / 1000
        ) * float(prices.get("output_per_1k", 0.0))
