import logging
from typing import Optional

from docqueue.db.record import SystemOfRecord
from docqueue.exceptions import ProviderError
from docqueue.handlers.base import HandlerResult, JobHandler
from docqueue.jobs.envelope import JobEnvelope, JobKind
from docqueue.providers.base import StorageSyncProvider
from docqueue.utils import run_blocking

logger = logging.getLogger(__name__)


class StorageSyncHandler(JobHandler):
    """Reconcile primary and backup storage for a file or an organization"""

    kind = JobKind.STORAGE_SYNC

    def __init__(self, provider: StorageSyncProvider, record: Optional[SystemOfRecord] = None):
        self.provider = provider
        self.record = record

    async def handle(self, envelope: JobEnvelope) -> HandlerResult:
        payload = envelope.payload
        if payload.sync_type == 'file' and payload.file_id is None:
            raise ProviderError("File sync requested without a file_id")

        file_info = None
        if self.record is not None and payload.file_id is not None:
            file_info = await run_blocking(self.record.get_file, payload.file_id)

        result = await self.provider.sync(
            payload.organization_id,
            file_id=payload.file_id,
            sync_type=payload.sync_type,
            file_info=file_info
        )
        if not result.success:
            raise ProviderError(f"Storage sync ({payload.sync_type}) failed: {result.message}")

        logger.info(f"Storage sync ({payload.sync_type}) for organization {payload.organization_id}: {result.message}")
        return HandlerResult(details=result.details or {})
