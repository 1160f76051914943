"""
Job Envelope

Wire format for one unit of queued work and the per-kind payload schemas.
Payloads are a pydantic discriminated union keyed by `kind`.
"""

import json
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, Literal, Optional, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from docqueue.exceptions import EnvelopeDecodeError

MIN_PRIORITY = -1000
MAX_PRIORITY = 1000
DEFAULT_PRIORITY = 5


class JobKind(str, Enum):
    """Queue kinds, one ordering domain and one handler each"""
    EXTRACTION = "extraction"
    STORAGE_SYNC = "storage-sync"
    SEARCH_INDEXING = "search-indexing"


class JobStatus(str, Enum):
    """Envelope status"""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class PayloadBase(BaseModel):
    """Fields shared by every payload"""
    model_config = ConfigDict(frozen=True, extra='forbid')

    organization_id: int
    # Row id in the system of record for jobs that originated there
    record_id: Optional[int] = None
    last_error: Optional[str] = None


class ExtractionPayload(PayloadBase):
    """Extract text for one file"""
    kind: Literal["extraction"] = "extraction"
    file_id: int
    method: str = "auto"


class StorageSyncPayload(PayloadBase):
    """Reconcile primary and backup storage locations"""
    kind: Literal["storage-sync"] = "storage-sync"
    file_id: Optional[int] = None
    sync_type: Literal["file", "incremental", "full"] = "file"


class SearchIndexPayload(PayloadBase):
    """Upsert or delete one document in the search index"""
    kind: Literal["search-indexing"] = "search-indexing"
    file_id: int
    action: Literal["index", "delete"] = "index"


JobPayload = Annotated[
    Union[ExtractionPayload, StorageSyncPayload, SearchIndexPayload],
    Field(discriminator='kind')
]

_payload_adapter: TypeAdapter = TypeAdapter(JobPayload)


def parse_payload(kind: Union[JobKind, str], data: Dict[str, Any]) -> PayloadBase:
    """
    Build the payload model for a kind from plain data

    Args:
        kind: Job kind
        data: Payload fields (without or with a matching `kind`)

    Returns:
        Payload model for that kind

    Raises:
        ValueError: If the data does not match the kind's schema
    """
    kind_value = JobKind(kind).value
    if data.get('kind', kind_value) != kind_value:
        raise ValueError(f"Payload kind {data.get('kind')!r} does not match {kind_value!r}")
    try:
        return _payload_adapter.validate_python({**data, 'kind': kind_value})
    except ValidationError as e:
        raise ValueError(f"Invalid {kind_value} payload: {e}") from e


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _format_ts(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


@dataclass(frozen=True)
class JobEnvelope:
    """
    One unit of queued work

    Envelopes are immutable; status transitions and retries produce new
    envelopes. `priority` and `id` never change after creation.
    """
    id: str
    kind: JobKind
    payload: PayloadBase
    priority: int = DEFAULT_PRIORITY
    retry_count: int = 0
    status: JobStatus = JobStatus.PENDING
    created_at: datetime = field(default_factory=utc_now)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def __post_init__(self):
        if not MIN_PRIORITY <= self.priority <= MAX_PRIORITY:
            raise ValueError(
                f"Priority {self.priority} outside [{MIN_PRIORITY}, {MAX_PRIORITY}]"
            )
        if self.retry_count < 0:
            raise ValueError("retry_count cannot be negative")
        if getattr(self.payload, 'kind', None) != JobKind(self.kind).value:
            raise ValueError(f"Payload does not belong to kind {self.kind}")

    @classmethod
    def create(
        cls,
        kind: Union[JobKind, str],
        payload: Union[PayloadBase, Dict[str, Any]],
        priority: int = DEFAULT_PRIORITY
    ) -> 'JobEnvelope':
        """
        Create a new pending envelope with a fresh id

        Args:
            kind: Job kind
            payload: Payload model or plain dict for that kind
            priority: Higher is served first

        Returns:
            New envelope
        """
        kind = JobKind(kind)
        if isinstance(payload, dict):
            payload = parse_payload(kind, payload)
        return cls(
            id=f"job_{uuid4().hex}",
            kind=kind,
            payload=payload,
            priority=int(priority)
        )

    @property
    def record_id(self) -> Optional[int]:
        return self.payload.record_id

    @property
    def last_error(self) -> Optional[str]:
        return self.payload.last_error

    def mark_processing(self) -> 'JobEnvelope':
        return replace(self, status=JobStatus.PROCESSING, started_at=utc_now())

    def mark_completed(self) -> 'JobEnvelope':
        return replace(self, status=JobStatus.COMPLETED, completed_at=utc_now())

    def mark_failed(self, error: str) -> 'JobEnvelope':
        return replace(
            self,
            status=JobStatus.FAILED,
            completed_at=utc_now(),
            payload=self.payload.model_copy(update={'last_error': error})
        )

    def for_retry(self, error: str) -> 'JobEnvelope':
        """Envelope for the next attempt: retry_count + 1, last error recorded"""
        return replace(
            self,
            retry_count=self.retry_count + 1,
            status=JobStatus.PENDING,
            started_at=None,
            completed_at=None,
            payload=self.payload.model_copy(update={'last_error': error})
        )

    def reset_for_manual_retry(self) -> 'JobEnvelope':
        """Envelope for an explicit administrative retry of a terminal job"""
        return replace(
            self,
            retry_count=0,
            status=JobStatus.PENDING,
            started_at=None,
            completed_at=None
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'kind': self.kind.value,
            'payload': self.payload.model_dump(mode='json'),
            'priority': self.priority,
            'retry_count': self.retry_count,
            'status': self.status.value,
            'created_at': _format_ts(self.created_at),
            'started_at': _format_ts(self.started_at),
            'completed_at': _format_ts(self.completed_at),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'JobEnvelope':
        kind = JobKind(data['kind'])
        return cls(
            id=data['id'],
            kind=kind,
            payload=parse_payload(kind, data['payload']),
            priority=int(data['priority']),
            retry_count=int(data.get('retry_count', 0)),
            status=JobStatus(data.get('status', JobStatus.PENDING.value)),
            created_at=_parse_ts(data.get('created_at')) or utc_now(),
            started_at=_parse_ts(data.get('started_at')),
            completed_at=_parse_ts(data.get('completed_at')),
        )

    @classmethod
    def from_json(cls, raw: Union[str, bytes]) -> 'JobEnvelope':
        """
        Decode an envelope from its JSON form

        Raises:
            EnvelopeDecodeError: If the member is not a valid envelope
        """
        try:
            return cls.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError) as e:
            raise EnvelopeDecodeError(f"Invalid job envelope: {e}") from e
