"""
System of Record

Narrow interface the processing core uses against the relational database:
pending job discovery, status mirroring, extracted text and search
projections. All methods are blocking; the dispatcher calls them through
docqueue.utils.run_blocking.
"""

import hashlib
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select

from docqueue.db.connection import Database
from docqueue.db.models import BackgroundJob, ExtractedText, LibraryFile

logger = logging.getLogger(__name__)


@dataclass
class PendingJob:
    """A pending background_jobs row ready to be enqueued"""
    record_id: int
    kind: str
    organization_id: int
    priority: int
    file_id: Optional[int] = None
    payload: Dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> Dict[str, Any]:
        """Queue payload for this row"""
        data = dict(self.payload)
        data['organization_id'] = self.organization_id
        data['record_id'] = self.record_id
        if self.file_id is not None:
            data['file_id'] = self.file_id
        return data


class SystemOfRecord:
    """
    Durable job and document store

    Usage:
        record = SystemOfRecord(Database(config))
        record_id = record.create_job('extraction', organization_id=1, file_id=7)
        pending = record.get_pending_jobs('extraction', limit=100)
    """

    def __init__(self, db: Database):
        self.db = db

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    def create_job(
        self,
        kind: str,
        organization_id: int,
        file_id: Optional[int] = None,
        payload: Optional[Dict[str, Any]] = None,
        priority: int = 5
    ) -> int:
        """
        Insert a pending job row

        Returns:
            Row id
        """
        with self.db.transaction() as session:
            job = BackgroundJob(
                kind=kind,
                organization_id=organization_id,
                file_id=file_id,
                payload=payload or {},
                status='pending',
                priority=priority
            )
            session.add(job)
            session.flush()
            record_id = job.id
        logger.debug(f"Created {kind} job record {record_id}")
        return record_id

    def get_job(self, record_id: int) -> Optional[Dict[str, Any]]:
        with self.db.session() as session:
            job = session.get(BackgroundJob, record_id)
            if job is None:
                return None
            return {
                'id': job.id,
                'kind': job.kind,
                'organization_id': job.organization_id,
                'file_id': job.file_id,
                'payload': job.payload,
                'status': job.status,
                'priority': job.priority,
                'retry_count': job.retry_count,
                'error_message': job.error_message,
                'started_at': job.started_at,
                'completed_at': job.completed_at,
            }

    def get_pending_jobs(self, kind: str, limit: int = 100) -> List[PendingJob]:
        """
        Pending rows of a kind, highest priority and oldest first

        Args:
            kind: Job kind
            limit: Maximum rows returned

        Returns:
            List of pending jobs
        """
        with self.db.session() as session:
            query = select(BackgroundJob).where(
                BackgroundJob.kind == kind,
                BackgroundJob.status == 'pending'
            ).order_by(
                BackgroundJob.priority.desc(),
                BackgroundJob.created_at,
                BackgroundJob.id
            ).limit(limit)

            return [
                PendingJob(
                    record_id=job.id,
                    kind=job.kind,
                    organization_id=job.organization_id,
                    priority=job.priority,
                    file_id=job.file_id,
                    payload=dict(job.payload or {})
                )
                for job in session.execute(query).scalars().all()
            ]

    def mark_processing(self, record_id: int) -> bool:
        return self._update_job(record_id, status='processing', started_at=datetime.now(timezone.utc))

    def mark_pending(self, record_id: int) -> bool:
        """Return a row to pending so the next resync submits it again"""
        return self._update_job(record_id, status='pending', started_at=None)

    def mark_completed(self, record_id: int) -> bool:
        return self._update_job(
            record_id,
            status='completed',
            completed_at=datetime.now(timezone.utc),
            error_message=None
        )

    def mark_failed(self, record_id: int, reason: str, retry_count: Optional[int] = None) -> bool:
        changes: Dict[str, Any] = {
            'status': 'failed',
            'completed_at': datetime.now(timezone.utc),
            'error_message': reason,
        }
        if retry_count is not None:
            changes['retry_count'] = retry_count
        return self._update_job(record_id, **changes)

    def status_counts(self) -> Dict[str, Dict[str, int]]:
        """Job counts grouped by kind and status"""
        with self.db.session() as session:
            rows = session.execute(
                select(BackgroundJob.kind, BackgroundJob.status, func.count(BackgroundJob.id))
                .group_by(BackgroundJob.kind, BackgroundJob.status)
            ).all()

        counts: Dict[str, Dict[str, int]] = {}
        for kind, status, count in rows:
            counts.setdefault(kind, {})[status] = count
        return counts

    def _update_job(self, record_id: int, **changes) -> bool:
        with self.db.transaction() as session:
            job = session.get(BackgroundJob, record_id)
            if job is None:
                logger.warning(f"Job record {record_id} not found")
                return False
            for key, value in changes.items():
                setattr(job, key, value)
        return True

    # ------------------------------------------------------------------
    # Files and extracted text
    # ------------------------------------------------------------------

    def add_file(self, organization_id: int, name: str, **fields) -> int:
        """Insert a library file row; returns its id"""
        with self.db.transaction() as session:
            library_file = LibraryFile(organization_id=organization_id, name=name, **fields)
            session.add(library_file)
            session.flush()
            return library_file.id

    def get_file(self, file_id: int) -> Optional[Dict[str, Any]]:
        with self.db.session() as session:
            library_file = session.get(LibraryFile, file_id)
            if library_file is None:
                return None
            return {
                'id': library_file.id,
                'organization_id': library_file.organization_id,
                'name': library_file.name,
                'storage_path': library_file.storage_path,
                'backup_path': library_file.backup_path,
                'mime_type': library_file.mime_type,
                'file_type': library_file.file_type,
            }

    def save_extracted_text(
        self,
        file_id: int,
        text: str,
        method: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        job_record_id: Optional[int] = None
    ) -> int:
        """
        Insert or replace the extracted text of a file

        Returns:
            Word count of the stored text
        """
        word_count = len(text.split())
        text_hash = hashlib.sha256(text.encode('utf-8')).hexdigest()

        with self.db.transaction() as session:
            row = session.execute(
                select(ExtractedText).where(ExtractedText.file_id == file_id)
            ).scalar_one_or_none()
            if row is None:
                row = ExtractedText(file_id=file_id)
                session.add(row)
            row.text = text
            row.method = method
            row.word_count = word_count
            row.character_count = len(text)
            row.text_hash = text_hash
            row.extraction_metadata = metadata or {}
            row.job_record_id = job_record_id

        logger.debug(f"Stored extracted text for file {file_id} ({word_count} words)")
        return word_count

    def get_extracted_text(self, file_id: int) -> Optional[str]:
        with self.db.session() as session:
            return session.execute(
                select(ExtractedText.text).where(ExtractedText.file_id == file_id)
            ).scalar_one_or_none()

    def get_document_projection(self, file_id: int) -> Optional[Dict[str, Any]]:
        """
        Searchable projection of a file

        Returns:
            Projection dict, or None if the file does not exist
        """
        with self.db.session() as session:
            library_file = session.get(LibraryFile, file_id)
            if library_file is None:
                return None
            content = session.execute(
                select(ExtractedText.text).where(ExtractedText.file_id == file_id)
            ).scalar_one_or_none()

            return {
                'file_id': library_file.id,
                'organization_id': library_file.organization_id,
                'title': library_file.name,
                'content': content or '',
                'author': library_file.author,
                'department': library_file.department,
                'tags': list(library_file.tags or []),
                'file_type': library_file.file_type,
                'mime_type': library_file.mime_type,
                'size_bytes': library_file.size_bytes,
                'is_public': library_file.is_public,
                'folder_path': library_file.folder_path,
                'created_at': library_file.created_at.isoformat() if library_file.created_at else None,
                'updated_at': library_file.updated_at.isoformat() if library_file.updated_at else None,
            }
