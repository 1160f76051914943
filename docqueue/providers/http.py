import asyncio
import logging
from typing import Any, Dict, Optional
from urllib.parse import quote

import aiohttp

from docqueue.providers.base import (
    BaseProvider,
    ExtractionProvider,
    ProviderResult,
    SearchIndexProvider,
    StorageSyncProvider,
)

logger = logging.getLogger(__name__)


class HTTPProvider(BaseProvider):
    """Base for providers reached over HTTP, one lazily created aiohttp session each"""

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        super().__init__(config)
        self.endpoint = str(self.config.get('endpoint', '')).rstrip('/')
        if not self.endpoint:
            raise ValueError(f"{type(self).__name__} requires an endpoint")
        self.timeout = float(self.config.get('timeout', 30))
        self.headers = dict(self.config.get('headers') or {})
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session

        Returns:
            Active HTTP session
        """
        if not self._session or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers=self.headers,
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
        return self._session

    async def close(self) -> None:
        """Close HTTP session"""
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def _request(self, method: str, url: str, **kwargs) -> ProviderResult:
        try:
            session = await self._get_session()
            async with session.request(method, url, **kwargs) as response:
                if response.status >= 400:
                    return ProviderResult(
                        success=False,
                        message=f"HTTP error {response.status}: {await response.text()}",
                        error=Exception(f"HTTP error {response.status}")
                    )
                if response.content_type == 'application/json':
                    body = await response.json()
                else:
                    body = {'text': await response.text()}
                return ProviderResult(
                    success=True,
                    message=f"{method} {url} -> {response.status}",
                    details=body if isinstance(body, dict) else {'data': body}
                )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            return ProviderResult(
                success=False,
                message=f"Request to {url} failed: {e}",
                error=e
            )

    async def validate_connection(self) -> ProviderResult:
        """Validate the endpoint answers at all"""
        try:
            session = await self._get_session()
            async with session.head(self.endpoint) as response:
                return ProviderResult(
                    success=response.status < 500,
                    message=f"Endpoint {self.endpoint} answered {response.status}",
                    details={'status': response.status}
                )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            return ProviderResult(
                success=False,
                message=f"Endpoint {self.endpoint} unreachable: {e}",
                error=e
            )


class HTTPExtractionProvider(HTTPProvider, ExtractionProvider):
    """Extraction service reached over HTTP

    POSTs {organization_id, file_id, method, file} to the endpoint and expects
    a JSON body with 'text' and optional 'metadata'.
    """

    async def extract(
        self,
        organization_id: int,
        file_id: int,
        method: str = "auto",
        file_info: Optional[Dict[str, Any]] = None
    ) -> ProviderResult:
        result = await self._request('POST', self.endpoint, json={
            'organization_id': organization_id,
            'file_id': file_id,
            'method': method,
            'file': file_info or {},
        })
        if result.success and 'text' not in (result.details or {}):
            return ProviderResult(
                success=False,
                message=f"Extraction response for file {file_id} has no text",
                details=result.details
            )
        return result


class HTTPStorageSyncProvider(HTTPProvider, StorageSyncProvider):
    """Storage replication service reached over HTTP"""

    async def sync(
        self,
        organization_id: int,
        file_id: Optional[int] = None,
        sync_type: str = "file",
        file_info: Optional[Dict[str, Any]] = None
    ) -> ProviderResult:
        return await self._request('POST', self.endpoint, json={
            'organization_id': organization_id,
            'file_id': file_id,
            'sync_type': sync_type,
            'file': file_info or {},
        })


class HTTPSearchIndexProvider(HTTPProvider, SearchIndexProvider):
    """Search index with a REST document API (PUT/DELETE <endpoint>/<id>)"""

    def _document_url(self, doc_id: str) -> str:
        return f"{self.endpoint}/{quote(doc_id, safe='')}"

    async def index(self, doc_id: str, document: Dict[str, Any]) -> ProviderResult:
        return await self._request('PUT', self._document_url(doc_id), json=document)

    async def delete(self, doc_id: str) -> ProviderResult:
        result = await self._request('DELETE', self._document_url(doc_id))
        if not result.success and 'HTTP error 404' in result.message:
            return ProviderResult(success=True, message=f"Document {doc_id} already absent")
        return result
