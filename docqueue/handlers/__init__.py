from typing import Dict

from docqueue.db.record import SystemOfRecord
from docqueue.handlers.base import FollowUpJob, HandlerResult, JobHandler
from docqueue.handlers.extraction import ExtractionHandler
from docqueue.handlers.search_indexing import SearchIndexingHandler, document_id
from docqueue.handlers.storage_sync import StorageSyncHandler
from docqueue.jobs.envelope import JobKind
from docqueue.providers.factory import Providers


def build_handler_table(
    providers: Providers,
    record: SystemOfRecord,
    indexing_priority_offset: int = 2
) -> Dict[JobKind, JobHandler]:
    """Handler for every job kind"""
    return {
        JobKind.EXTRACTION: ExtractionHandler(
            providers.extraction,
            record,
            indexing_priority_offset=indexing_priority_offset
        ),
        JobKind.STORAGE_SYNC: StorageSyncHandler(providers.storage_sync, record),
        JobKind.SEARCH_INDEXING: SearchIndexingHandler(providers.search, record),
    }


__all__ = [
    'FollowUpJob',
    'HandlerResult',
    'JobHandler',
    'ExtractionHandler',
    'SearchIndexingHandler',
    'StorageSyncHandler',
    'build_handler_table',
    'document_id',
]
