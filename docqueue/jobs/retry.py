"""
Retry Policy

Exponential backoff with a max-attempt cutoff. A failed job is either parked
in the delayed set of the queue store or marked permanently failed.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from docqueue.db.record import SystemOfRecord
from docqueue.jobs.envelope import JobEnvelope
from docqueue.jobs.queue_store import RedisQueueStore
from docqueue.utils import run_blocking

logger = logging.getLogger(__name__)


class RetryAction(str, Enum):
    RETRY = "retry"
    FAILED = "failed"


@dataclass
class RetryDecision:
    """Outcome of routing one failed execution"""
    action: RetryAction
    retry_count: int
    delay: Optional[float] = None
    reason: str = ""

    @property
    def is_terminal(self) -> bool:
        return self.action == RetryAction.FAILED


class RetryPolicy:
    """
    Route failed executions to a backoff re-enqueue or to permanent failure.

    The n-th retry waits retry_delay * 2 ** (n - 1) seconds, capped at
    retry_delay_max. A job whose next attempt would exceed max_retries is
    terminal.
    """

    def __init__(
        self,
        store: RedisQueueStore,
        record: Optional[SystemOfRecord] = None,
        max_retries: int = 3,
        retry_delay: float = 2.0,
        retry_delay_max: float = 300.0
    ):
        if max_retries < 0:
            raise ValueError("max_retries cannot be negative")
        if retry_delay < 0 or retry_delay_max < 0:
            raise ValueError("retry delays cannot be negative")

        self.store = store
        self.record = record
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.retry_delay_max = retry_delay_max

    def backoff_delay(self, retry_count: int) -> float:
        """Delay before the given retry attempt (1-based)"""
        return min(self.retry_delay * (2 ** max(retry_count - 1, 0)), self.retry_delay_max)

    async def handle_failure(self, envelope: JobEnvelope, error: str) -> RetryDecision:
        """
        Route a failed execution.

        Args:
            envelope: Envelope of the failed attempt
            error: Failure reason, stored on the envelope

        Returns:
            RetryDecision describing what was done

        Raises:
            QueueStoreError: If the retry or dead letter could not be written
        """
        next_retry_count = envelope.retry_count + 1

        if next_retry_count > self.max_retries:
            reason = f"Max retries ({self.max_retries}) exceeded. Last error: {error}"
            await self.store.record_dead_letter(envelope, reason)
            await self._mark_failed(envelope, reason)
            logger.warning(f"Job {envelope.id} ({envelope.kind.value}) permanently failed: {error}")
            return RetryDecision(
                action=RetryAction.FAILED,
                retry_count=envelope.retry_count,
                reason=reason
            )

        delay = self.backoff_delay(next_retry_count)
        await self.store.schedule_retry(envelope.for_retry(error), delay)
        logger.info(
            f"Job {envelope.id} scheduled for retry "
            f"({next_retry_count}/{self.max_retries}) in {delay}s"
        )
        return RetryDecision(
            action=RetryAction.RETRY,
            retry_count=next_retry_count,
            delay=delay,
            reason=error
        )

    async def _mark_failed(self, envelope: JobEnvelope, reason: str) -> None:
        if self.record is None or envelope.record_id is None:
            return
        try:
            await run_blocking(self.record.mark_failed, envelope.record_id, reason, envelope.retry_count)
        except Exception as e:
            logger.error(f"Failed to mark job record {envelope.record_id} failed: {e}")
