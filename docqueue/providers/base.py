from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass
class ProviderResult:
    """Result of a provider call"""
    success: bool
    message: str
    details: Optional[Dict[str, Any]] = None
    error: Optional[Exception] = None


class BaseProvider(ABC):
    """Base class for all downstream providers"""

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        """Initialize provider with its configuration section"""
        self.config = config or {}

    @abstractmethod
    async def validate_connection(self) -> ProviderResult:
        """Validate the provider connection

        Returns:
            ProviderResult indicating if connection is valid
        """
        pass

    async def close(self) -> None:
        """Release network resources"""
        return None


class ExtractionProvider(BaseProvider):
    """Turns a stored file into plain text"""

    @abstractmethod
    async def extract(
        self,
        organization_id: int,
        file_id: int,
        method: str = "auto",
        file_info: Optional[Dict[str, Any]] = None
    ) -> ProviderResult:
        """Extract text from a file

        Args:
            organization_id: Owning organization
            file_id: File to extract
            method: Extraction method hint
            file_info: File metadata from the system of record, if known

        Returns:
            ProviderResult whose details carry 'text' and optional 'metadata'
        """
        pass


class StorageSyncProvider(BaseProvider):
    """Reconciles primary and backup storage locations"""

    @abstractmethod
    async def sync(
        self,
        organization_id: int,
        file_id: Optional[int] = None,
        sync_type: str = "file",
        file_info: Optional[Dict[str, Any]] = None
    ) -> ProviderResult:
        """Bring backup storage in line with primary storage

        Args:
            organization_id: Owning organization
            file_id: Single file for sync_type 'file'
            sync_type: 'file', 'incremental' or 'full'
            file_info: File metadata from the system of record, if known

        Returns:
            ProviderResult indicating success/failure
        """
        pass


class SearchIndexProvider(BaseProvider):
    """Document search index"""

    @abstractmethod
    async def index(self, doc_id: str, document: Dict[str, Any]) -> ProviderResult:
        """Insert or replace a document under a stable id"""
        pass

    @abstractmethod
    async def delete(self, doc_id: str) -> ProviderResult:
        """Remove a document; deleting a missing id succeeds"""
        pass
