"""
In-memory providers

Used for local runs (`type: memory`) and tests. Each keeps its effects in
plain dicts so callers can inspect them.
"""

import copy
from typing import Any, Dict, List, Optional, Tuple

from docqueue.providers.base import (
    ExtractionProvider,
    ProviderResult,
    SearchIndexProvider,
    StorageSyncProvider,
)


class InMemoryExtractionProvider(ExtractionProvider):
    """Returns preset texts keyed by file id"""

    def __init__(self, config: Optional[Dict[str, Any]] = None, texts: Optional[Dict[int, str]] = None):
        super().__init__(config)
        self.texts: Dict[int, str] = dict(texts or {})
        self.calls: List[Tuple[int, int, str]] = []

    async def extract(
        self,
        organization_id: int,
        file_id: int,
        method: str = "auto",
        file_info: Optional[Dict[str, Any]] = None
    ) -> ProviderResult:
        self.calls.append((organization_id, file_id, method))
        if file_id not in self.texts:
            return ProviderResult(
                success=False,
                message=f"No content for file {file_id}",
                error=KeyError(file_id)
            )
        return ProviderResult(
            success=True,
            message=f"Extracted file {file_id}",
            details={'text': self.texts[file_id], 'metadata': {'method': method}}
        )

    async def validate_connection(self) -> ProviderResult:
        return ProviderResult(success=True, message="In-memory extraction provider")


class InMemoryStorageSyncProvider(StorageSyncProvider):
    """Copies primary entries into a backup dict"""

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        super().__init__(config)
        self.primary: Dict[Tuple[int, int], Any] = {}
        self.backup: Dict[Tuple[int, int], Any] = {}

    async def sync(
        self,
        organization_id: int,
        file_id: Optional[int] = None,
        sync_type: str = "file",
        file_info: Optional[Dict[str, Any]] = None
    ) -> ProviderResult:
        if sync_type == 'file':
            key = (organization_id, file_id)
            if key not in self.primary:
                return ProviderResult(
                    success=False,
                    message=f"File {file_id} missing from primary storage",
                    error=KeyError(key)
                )
            keys = [key]
        else:
            keys = [key for key in self.primary if key[0] == organization_id]

        copied = 0
        for key in keys:
            if self.backup.get(key) != self.primary[key]:
                self.backup[key] = copy.deepcopy(self.primary[key])
                copied += 1

        return ProviderResult(
            success=True,
            message=f"Synced {copied} of {len(keys)} files",
            details={'checked': len(keys), 'copied': copied}
        )

    async def validate_connection(self) -> ProviderResult:
        return ProviderResult(success=True, message="In-memory storage sync provider")


class InMemorySearchIndex(SearchIndexProvider):
    """Search index keyed by document id"""

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        super().__init__(config)
        self.documents: Dict[str, Dict[str, Any]] = {}

    async def index(self, doc_id: str, document: Dict[str, Any]) -> ProviderResult:
        self.documents[doc_id] = copy.deepcopy(document)
        return ProviderResult(success=True, message=f"Indexed {doc_id}")

    async def delete(self, doc_id: str) -> ProviderResult:
        self.documents.pop(doc_id, None)
        return ProviderResult(success=True, message=f"Deleted {doc_id}")

    def search(self, term: str) -> List[str]:
        """Document ids whose title or content contains the term"""
        term = term.lower()
        return sorted(
            doc_id for doc_id, document in self.documents.items()
            if term in str(document.get('title', '')).lower()
            or term in str(document.get('content', '')).lower()
        )

    async def validate_connection(self) -> ProviderResult:
        return ProviderResult(success=True, message="In-memory search index")
