from docqueue.providers.base import (
    BaseProvider,
    ExtractionProvider,
    ProviderResult,
    SearchIndexProvider,
    StorageSyncProvider,
)
from docqueue.providers.factory import ProviderFactory, Providers
from docqueue.providers.http import (
    HTTPExtractionProvider,
    HTTPProvider,
    HTTPSearchIndexProvider,
    HTTPStorageSyncProvider,
)
from docqueue.providers.memory import (
    InMemoryExtractionProvider,
    InMemorySearchIndex,
    InMemoryStorageSyncProvider,
)

__all__ = [
    'BaseProvider',
    'ExtractionProvider',
    'ProviderResult',
    'SearchIndexProvider',
    'StorageSyncProvider',
    'ProviderFactory',
    'Providers',
    'HTTPExtractionProvider',
    'HTTPProvider',
    'HTTPSearchIndexProvider',
    'HTTPStorageSyncProvider',
    'InMemoryExtractionProvider',
    'InMemorySearchIndex',
    'InMemoryStorageSyncProvider',
]
