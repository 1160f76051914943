from dataclasses import dataclass
from typing import Any, Dict, Optional, Type

from docqueue.exceptions import ConfigurationError
from docqueue.providers.base import (
    BaseProvider,
    ExtractionProvider,
    SearchIndexProvider,
    StorageSyncProvider,
)
from docqueue.providers.http import (
    HTTPExtractionProvider,
    HTTPSearchIndexProvider,
    HTTPStorageSyncProvider,
)
from docqueue.providers.memory import (
    InMemoryExtractionProvider,
    InMemorySearchIndex,
    InMemoryStorageSyncProvider,
)


@dataclass
class Providers:
    """The three downstream providers used by the handlers"""
    extraction: ExtractionProvider
    storage_sync: StorageSyncProvider
    search: SearchIndexProvider

    async def close(self) -> None:
        for provider in (self.extraction, self.storage_sync, self.search):
            await provider.close()


class ProviderFactory:
    """Factory for creating provider instances"""

    _providers: Dict[str, Dict[str, Type[BaseProvider]]] = {
        'extraction': {
            'http': HTTPExtractionProvider,
            'memory': InMemoryExtractionProvider,
        },
        'storage_sync': {
            'http': HTTPStorageSyncProvider,
            'memory': InMemoryStorageSyncProvider,
        },
        'search': {
            'http': HTTPSearchIndexProvider,
            'memory': InMemorySearchIndex,
        },
    }

    @classmethod
    def register(cls, role: str, provider_type: str, provider_class: Type[BaseProvider]) -> None:
        """Register a provider implementation

        Args:
            role: 'extraction', 'storage_sync' or 'search'
            provider_type: Value of the `type` key selecting this class
            provider_class: Provider implementation class
        """
        cls._providers.setdefault(role, {})[provider_type] = provider_class

    @classmethod
    def create_provider(cls, role: str, config: Optional[Dict[str, Any]] = None) -> BaseProvider:
        """Create a provider instance

        Args:
            role: Provider role
            config: Provider section, its `type` selects the implementation

        Returns:
            Provider instance

        Raises:
            ConfigurationError: If the role or type is not registered
        """
        config = config or {}
        provider_type = config.get('type', 'http')
        if role not in cls._providers:
            raise ConfigurationError(f"Unknown provider role '{role}'")
        if provider_type not in cls._providers[role]:
            raise ConfigurationError(f"Provider type '{provider_type}' not registered for {role}")
        try:
            return cls._providers[role][provider_type](config)
        except ValueError as e:
            raise ConfigurationError(f"Invalid {role} provider configuration: {e}") from e

    @classmethod
    def build_providers(cls, providers_config: Optional[Dict[str, Any]] = None) -> Providers:
        """Build all providers from the `providers` configuration section"""
        providers_config = providers_config or {}
        return Providers(
            extraction=cls.create_provider('extraction', providers_config.get('extraction')),
            storage_sync=cls.create_provider('storage_sync', providers_config.get('storage_sync')),
            search=cls.create_provider('search', providers_config.get('search')),
        )
