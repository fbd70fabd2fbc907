"""Typed registry mapping provider names to adapter factories."""

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from chat_gateway.core.errors import AdapterResolutionError
from chat_gateway.providers.base import AdapterFactory, ChatAdapter

logger = logging.getLogger("cgw.providers")


@dataclass
class ProviderEntry:
    """A registered provider and the factory that builds its adapters."""

    name: str
    factory: AdapterFactory
    enabled: bool = True


class AdapterRegistry:
    """Registry of chat adapter factories keyed by normalized provider name."""

    def __init__(self) -> None:
        self._providers: dict[str, ProviderEntry] = {}

    @staticmethod
    def normalize_name(name: str) -> str:
        return name.strip().lower()

    def register(self, entry: ProviderEntry) -> None:
        key = self.normalize_name(entry.name)
        entry.name = key
        self._providers[key] = entry
        logger.info("provider_registered", extra={"provider": key})

    def get(self, name: str) -> ProviderEntry | None:
        return self._providers.get(self.normalize_name(name))

    def names(self) -> list[str]:
        return sorted(name for name, entry in self._providers.items() if entry.enabled)

    def create(
        self,
        provider: str,
        model: str | None = None,
        context: Mapping[str, Any] | None = None,
    ) -> ChatAdapter:
        """Build an adapter for *provider*.

        Raises ``AdapterResolutionError`` when the provider is unknown or
        disabled; the factory's own configuration errors propagate unchanged.
        """
        key = self.normalize_name(provider)
        entry = self._providers.get(key)
        if entry is None:
            raise AdapterResolutionError(key)
        if not entry.enabled:
            raise AdapterResolutionError(key, f'AI provider "{key}" is disabled')
        return entry.factory.create(model, dict(context or {}))
