from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)

from docqueue.db.connection import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BackgroundJob(Base):
    """
    Durable record of a background job

    Holds the authoritative terminal status; Redis only carries work in flight.
    """
    __tablename__ = 'background_jobs'

    id = Column(Integer, primary_key=True, autoincrement=True)
    kind = Column(String(50), nullable=False)
    organization_id = Column(Integer, nullable=False)
    file_id = Column(Integer, nullable=True)
    payload = Column(JSON, nullable=True)
    status = Column(String(20), nullable=False, default='pending')
    priority = Column(Integer, nullable=False, default=5)
    retry_count = Column(Integer, nullable=False, default=0)
    error_message = Column(Text, nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    __table_args__ = (
        Index('idx_background_jobs_status', 'kind', 'status'),
        Index('idx_background_jobs_priority', 'priority', 'created_at'),
    )

    def __repr__(self):
        return f"<BackgroundJob(id={self.id}, kind='{self.kind}', status='{self.status}')>"


class LibraryFile(Base):
    """File metadata used to build search projections"""
    __tablename__ = 'library_files'

    id = Column(Integer, primary_key=True, autoincrement=True)
    organization_id = Column(Integer, nullable=False)
    name = Column(String(500), nullable=False)
    folder_path = Column(String(1000), nullable=True)
    author = Column(String(255), nullable=True)
    department = Column(String(255), nullable=True)
    tags = Column(JSON, nullable=True)
    file_type = Column(String(50), nullable=True)
    mime_type = Column(String(255), nullable=True)
    size_bytes = Column(BigInteger, nullable=True)
    storage_path = Column(String(1000), nullable=True)
    backup_path = Column(String(1000), nullable=True)
    is_public = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    __table_args__ = (
        Index('idx_library_files_org', 'organization_id'),
    )

    def __repr__(self):
        return f"<LibraryFile(id={self.id}, name='{self.name}')>"


class ExtractedText(Base):
    """Extracted text, one row per file"""
    __tablename__ = 'extracted_text'

    id = Column(Integer, primary_key=True, autoincrement=True)
    file_id = Column(Integer, ForeignKey('library_files.id', ondelete='CASCADE'), nullable=False, unique=True)
    job_record_id = Column(Integer, ForeignKey('background_jobs.id', ondelete='SET NULL'), nullable=True)
    text = Column(Text, nullable=False)
    method = Column(String(50), nullable=True)
    word_count = Column(Integer, nullable=True)
    character_count = Column(Integer, nullable=True)
    text_hash = Column(String(64), nullable=True)
    extraction_metadata = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    def __repr__(self):
        return f"<ExtractedText(file_id={self.file_id}, words={self.word_count})>"
