from docqueue.db.connection import Base, Database
from docqueue.db.models import BackgroundJob, ExtractedText, LibraryFile
from docqueue.db.record import PendingJob, SystemOfRecord

__all__ = [
    'Base',
    'Database',
    'BackgroundJob',
    'ExtractedText',
    'LibraryFile',
    'PendingJob',
    'SystemOfRecord',
]
