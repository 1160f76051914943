import logging

from docqueue.db.record import SystemOfRecord
from docqueue.exceptions import ProviderError
from docqueue.handlers.base import HandlerResult, JobHandler
from docqueue.jobs.envelope import JobEnvelope, JobKind
from docqueue.providers.base import SearchIndexProvider
from docqueue.utils import run_blocking

logger = logging.getLogger(__name__)


def document_id(organization_id: int, file_id: int) -> str:
    """Stable search document id for a file"""
    return f"{organization_id}:{file_id}"


class SearchIndexingHandler(JobHandler):
    """
    Keep the search index in line with the system of record.

    `index` upserts the file's projection under its stable document id, so
    repeating the job leaves the index unchanged. `delete` removes the id; a
    file that no longer exists is removed as well.
    """

    kind = JobKind.SEARCH_INDEXING

    def __init__(self, provider: SearchIndexProvider, record: SystemOfRecord):
        self.provider = provider
        self.record = record

    async def handle(self, envelope: JobEnvelope) -> HandlerResult:
        payload = envelope.payload
        doc_id = document_id(payload.organization_id, payload.file_id)

        projection = None
        if payload.action == 'index':
            projection = await run_blocking(self.record.get_document_projection, payload.file_id)
            if projection is None:
                logger.info(f"File {payload.file_id} no longer exists, removing {doc_id} from index")

        if projection is None:
            result = await self.provider.delete(doc_id)
            action = 'delete'
        else:
            result = await self.provider.index(doc_id, projection)
            action = 'index'

        if not result.success:
            raise ProviderError(f"Search {action} failed for {doc_id}: {result.message}")

        return HandlerResult(details={'document_id': doc_id, 'action': action})
