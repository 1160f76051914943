from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List

from docqueue.jobs.envelope import DEFAULT_PRIORITY, JobEnvelope, JobKind


@dataclass
class FollowUpJob:
    """A job a handler asks the dispatcher to enqueue after success"""
    kind: JobKind
    payload: Dict[str, Any]
    priority: int = DEFAULT_PRIORITY


@dataclass
class HandlerResult:
    """Result of a successful handler run"""
    details: Dict[str, Any] = field(default_factory=dict)
    follow_ups: List[FollowUpJob] = field(default_factory=list)
    # Optional sub-operations that failed without failing the job
    degraded: List[str] = field(default_factory=list)


class JobHandler(ABC):
    """Base class for all job handlers

    A handler must be idempotent: the same envelope may be executed more than
    once when a timed-out attempt still lands its effects.
    """

    kind: JobKind

    @abstractmethod
    async def handle(self, envelope: JobEnvelope) -> HandlerResult:
        """Execute one job

        Args:
            envelope: Job to execute

        Returns:
            HandlerResult on success

        Raises:
            JobError: If the job failed and should go through retry routing
        """
        pass
