"""
Tests for the extraction, storage-sync and search-indexing handlers
"""

from unittest.mock import patch

import pytest

from docqueue.exceptions import ProviderError
from docqueue.handlers import (
    ExtractionHandler,
    SearchIndexingHandler,
    StorageSyncHandler,
    build_handler_table,
    document_id,
)
from docqueue.jobs.envelope import MIN_PRIORITY, JobEnvelope, JobKind


class TestExtractionHandler:
    """Tests for ExtractionHandler"""

    @pytest.mark.asyncio
    async def test_extracts_and_stores_text(self, record, providers):
        file_id = record.add_file(1, 'minutes.docx')
        providers.extraction.texts[file_id] = 'board meeting minutes'
        handler = ExtractionHandler(providers.extraction, record)
        envelope = JobEnvelope.create('extraction', {'organization_id': 1, 'file_id': file_id, 'method': 'ocr'}, 6)

        result = await handler.handle(envelope)

        assert result.details == {'file_id': file_id, 'word_count': 3, 'character_count': 21}
        assert record.get_extracted_text(file_id) == 'board meeting minutes'
        assert providers.extraction.calls == [(1, file_id, 'ocr')]
        assert result.degraded == []

        follow_up = result.follow_ups[0]
        assert follow_up.kind == JobKind.SEARCH_INDEXING
        assert follow_up.priority == 4
        assert follow_up.payload == {'organization_id': 1, 'file_id': file_id, 'action': 'index'}

    @pytest.mark.asyncio
    async def test_follow_up_priority_clamped(self, record, providers):
        file_id = record.add_file(1, 'a.txt')
        providers.extraction.texts[file_id] = 'x'
        handler = ExtractionHandler(providers.extraction, record, indexing_priority_offset=5)
        envelope = JobEnvelope.create('extraction', {'organization_id': 1, 'file_id': file_id}, MIN_PRIORITY + 1)

        result = await handler.handle(envelope)

        assert result.follow_ups[0].priority == MIN_PRIORITY

    @pytest.mark.asyncio
    async def test_provider_failure_raises(self, record, providers):
        handler = ExtractionHandler(providers.extraction, record)
        envelope = JobEnvelope.create('extraction', {'organization_id': 1, 'file_id': 99})

        with pytest.raises(ProviderError):
            await handler.handle(envelope)

    @pytest.mark.asyncio
    async def test_file_lookup_failure_is_degraded(self, record, providers):
        file_id = record.add_file(1, 'a.txt')
        providers.extraction.texts[file_id] = 'some words'
        handler = ExtractionHandler(providers.extraction, record)
        envelope = JobEnvelope.create('extraction', {'organization_id': 1, 'file_id': file_id})

        with patch.object(record, 'get_file', side_effect=RuntimeError('db busy')):
            result = await handler.handle(envelope)

        assert len(result.degraded) == 1
        assert 'db busy' in result.degraded[0]
        assert record.get_extracted_text(file_id) == 'some words'

    @pytest.mark.asyncio
    async def test_repeat_extraction_is_idempotent(self, record, providers):
        file_id = record.add_file(1, 'a.txt')
        providers.extraction.texts[file_id] = 'same text'
        handler = ExtractionHandler(providers.extraction, record)
        envelope = JobEnvelope.create('extraction', {'organization_id': 1, 'file_id': file_id})

        await handler.handle(envelope)
        await handler.handle(envelope)

        assert record.get_extracted_text(file_id) == 'same text'


class TestStorageSyncHandler:
    """Tests for StorageSyncHandler"""

    @pytest.mark.asyncio
    async def test_file_sync(self, record, providers):
        providers.storage_sync.primary[(1, 5)] = b'contents'
        handler = StorageSyncHandler(providers.storage_sync, record)
        envelope = JobEnvelope.create('storage-sync', {'organization_id': 1, 'file_id': 5})

        result = await handler.handle(envelope)

        assert result.details == {'checked': 1, 'copied': 1}
        assert providers.storage_sync.backup[(1, 5)] == b'contents'

    @pytest.mark.asyncio
    async def test_full_sync_is_idempotent(self, providers):
        providers.storage_sync.primary[(1, 5)] = b'a'
        providers.storage_sync.primary[(1, 6)] = b'b'
        providers.storage_sync.primary[(2, 7)] = b'other org'
        handler = StorageSyncHandler(providers.storage_sync)
        envelope = JobEnvelope.create('storage-sync', {'organization_id': 1, 'sync_type': 'full'})

        first = await handler.handle(envelope)
        second = await handler.handle(envelope)

        assert first.details == {'checked': 2, 'copied': 2}
        assert second.details == {'checked': 2, 'copied': 0}
        assert (2, 7) not in providers.storage_sync.backup

    @pytest.mark.asyncio
    async def test_file_sync_requires_file_id(self, providers):
        handler = StorageSyncHandler(providers.storage_sync)
        envelope = JobEnvelope.create('storage-sync', {'organization_id': 1, 'sync_type': 'file'})

        with pytest.raises(ProviderError):
            await handler.handle(envelope)

    @pytest.mark.asyncio
    async def test_missing_primary_fails(self, providers):
        handler = StorageSyncHandler(providers.storage_sync)
        envelope = JobEnvelope.create('storage-sync', {'organization_id': 1, 'file_id': 404})

        with pytest.raises(ProviderError):
            await handler.handle(envelope)


class TestSearchIndexingHandler:
    """Tests for SearchIndexingHandler"""

    @pytest.mark.asyncio
    async def test_index_projection(self, record, providers):
        file_id = record.add_file(4, 'handbook.pdf', department='HR')
        record.save_extracted_text(file_id, 'holiday policy')
        handler = SearchIndexingHandler(providers.search, record)
        envelope = JobEnvelope.create('search-indexing', {'organization_id': 4, 'file_id': file_id})

        result = await handler.handle(envelope)

        doc_id = document_id(4, file_id)
        assert result.details == {'document_id': doc_id, 'action': 'index'}
        assert providers.search.documents[doc_id]['content'] == 'holiday policy'
        assert providers.search.search('holiday') == [doc_id]

    @pytest.mark.asyncio
    async def test_reindex_overwrites(self, record, providers):
        file_id = record.add_file(4, 'handbook.pdf')
        handler = SearchIndexingHandler(providers.search, record)
        envelope = JobEnvelope.create('search-indexing', {'organization_id': 4, 'file_id': file_id})

        await handler.handle(envelope)
        record.save_extracted_text(file_id, 'updated text')
        await handler.handle(envelope)

        assert len(providers.search.documents) == 1
        assert providers.search.documents[document_id(4, file_id)]['content'] == 'updated text'

    @pytest.mark.asyncio
    async def test_delete_action(self, record, providers):
        providers.search.documents['4:1'] = {'title': 'old'}
        handler = SearchIndexingHandler(providers.search, record)
        envelope = JobEnvelope.create('search-indexing', {'organization_id': 4, 'file_id': 1, 'action': 'delete'})

        result = await handler.handle(envelope)

        assert result.details['action'] == 'delete'
        assert providers.search.documents == {}

    @pytest.mark.asyncio
    async def test_missing_file_is_removed(self, record, providers):
        providers.search.documents['4:55'] = {'title': 'gone'}
        handler = SearchIndexingHandler(providers.search, record)
        envelope = JobEnvelope.create('search-indexing', {'organization_id': 4, 'file_id': 55})

        result = await handler.handle(envelope)

        assert result.details['action'] == 'delete'
        assert '4:55' not in providers.search.documents


class TestHandlerTable:
    """Tests for build_handler_table"""

    def test_every_kind_has_a_handler(self, record, providers):
        table = build_handler_table(providers, record, indexing_priority_offset=3)

        assert set(table) == set(JobKind)
        assert table[JobKind.EXTRACTION].indexing_priority_offset == 3
        for kind, handler in table.items():
            assert handler.kind == kind
