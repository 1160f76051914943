import logging

from docqueue.db.record import SystemOfRecord
from docqueue.exceptions import ProviderError
from docqueue.handlers.base import FollowUpJob, HandlerResult, JobHandler
from docqueue.jobs.envelope import MIN_PRIORITY, JobEnvelope, JobKind
from docqueue.providers.base import ExtractionProvider
from docqueue.utils import run_blocking

logger = logging.getLogger(__name__)


class ExtractionHandler(JobHandler):
    """
    Extract the text of one file and store it.

    On success a search-indexing job for the same file is declared as a
    follow-up, a few priority points below the extraction job.
    """

    kind = JobKind.EXTRACTION

    def __init__(
        self,
        provider: ExtractionProvider,
        record: SystemOfRecord,
        indexing_priority_offset: int = 2
    ):
        self.provider = provider
        self.record = record
        self.indexing_priority_offset = indexing_priority_offset

    async def handle(self, envelope: JobEnvelope) -> HandlerResult:
        payload = envelope.payload
        degraded = []

        try:
            file_info = await run_blocking(self.record.get_file, payload.file_id)
        except Exception as e:
            logger.warning(f"File lookup for {payload.file_id} failed, extracting without metadata: {e}")
            file_info = None
            degraded.append(f"file lookup failed: {e}")

        result = await self.provider.extract(
            payload.organization_id,
            payload.file_id,
            method=payload.method,
            file_info=file_info
        )
        if not result.success:
            raise ProviderError(f"Extraction failed for file {payload.file_id}: {result.message}")

        details = result.details or {}
        text = details.get('text') or ''
        word_count = await run_blocking(
            self.record.save_extracted_text,
            payload.file_id,
            text,
            method=details.get('method', payload.method),
            metadata=details.get('metadata'),
            job_record_id=payload.record_id
        )
        logger.info(f"Extracted {word_count} words from file {payload.file_id}")

        follow_up = FollowUpJob(
            kind=JobKind.SEARCH_INDEXING,
            payload={
                'organization_id': payload.organization_id,
                'file_id': payload.file_id,
                'action': 'index',
            },
            priority=max(envelope.priority - self.indexing_priority_offset, MIN_PRIORITY)
        )

        return HandlerResult(
            details={
                'file_id': payload.file_id,
                'word_count': word_count,
                'character_count': len(text),
            },
            follow_ups=[follow_up],
            degraded=degraded
        )
