"""
Redis Queue Store

Priority job queue on Redis sorted sets.

Key layout (all under a configurable prefix):
- <prefix>:queue:<kind>     sorted set, member = envelope JSON, score = priority band + FIFO sequence
- <prefix>:delayed:<kind>   sorted set of retries, score = unix time the retry becomes due
- <prefix>:failed:<kind>    hash job id -> envelope JSON of permanently failed jobs
- <prefix>:stats:<kind>     hash of counters (enqueued, dequeued, completed, failed, retried)
- <prefix>:dedupe:<kind>:<record_id>  marker preventing duplicate enqueue of system-of-record jobs
- <prefix>:seq              global insertion sequence
"""

import logging
import time
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional, Union

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from docqueue.exceptions import EnvelopeDecodeError, QueueStoreError
from docqueue.jobs.envelope import (
    DEFAULT_PRIORITY,
    JobEnvelope,
    JobKind,
    JobStatus,
    PayloadBase,
)

logger = logging.getLogger(__name__)

# Scores are priority * PRIORITY_BAND - seq. Priorities are bounded to
# [-1000, 1000] so every score stays exactly representable as a double.
PRIORITY_BAND = 10 ** 12

DEFAULT_DEDUPE_TTL = 86400


@dataclass
class PingResult:
    """Result of a queue store liveness probe"""
    ok: bool
    latency_ms: float
    error: Optional[str] = None


@dataclass
class QueueStats:
    """Per-kind queue statistics"""
    kind: str
    length: int = 0
    delayed: int = 0
    failed: int = 0
    enqueued: int = 0
    dequeued: int = 0
    completed: int = 0
    failed_total: int = 0
    retried: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'kind': self.kind,
            'length': self.length,
            'delayed': self.delayed,
            'failed': self.failed,
            'enqueued': self.enqueued,
            'dequeued': self.dequeued,
            'completed': self.completed,
            'failed_total': self.failed_total,
            'retried': self.retried,
        }


def priority_score(priority: int, seq: int) -> float:
    """Sorted-set score: higher priority first, then lower sequence first"""
    return float(priority * PRIORITY_BAND - seq)


class RedisQueueStore:
    """
    Queue store adapter over Redis.

    All mutations go through single Redis primitives (ZADD, ZPOPMAX, ZREM,
    HDEL, SET NX), so several dispatchers can share one store without
    client-side locking. Every Redis failure surfaces as QueueStoreError.

    Usage:
        store = RedisQueueStore.from_url('redis://localhost:6379/0')

        job_id = await store.enqueue(JobKind.EXTRACTION, {'organization_id': 1, 'file_id': 7}, priority=8)
        envelope = await store.dequeue_next(JobKind.EXTRACTION)
    """

    def __init__(
        self,
        client: aioredis.Redis,
        key_prefix: str = 'docqueue',
        dedupe_ttl: int = DEFAULT_DEDUPE_TTL
    ):
        """
        Args:
            client: redis.asyncio client created with decode_responses=True
            key_prefix: Namespace for all keys
            dedupe_ttl: Lifetime in seconds of enqueue de-duplication markers
        """
        self.client = client
        self.key_prefix = key_prefix
        self.dedupe_ttl = dedupe_ttl

    @classmethod
    def from_url(
        cls,
        url: str,
        key_prefix: str = 'docqueue',
        dedupe_ttl: int = DEFAULT_DEDUPE_TTL,
        socket_timeout: Optional[float] = 5.0
    ) -> 'RedisQueueStore':
        client = aioredis.from_url(
            url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout
        )
        logger.info(f"Queue store using Redis at {url} (prefix={key_prefix})")
        return cls(client, key_prefix=key_prefix, dedupe_ttl=dedupe_ttl)

    # ------------------------------------------------------------------
    # Keys
    # ------------------------------------------------------------------

    def _key(self, name: str, kind: Union[JobKind, str]) -> str:
        return f"{self.key_prefix}:{name}:{JobKind(kind).value}"

    def _seq_key(self) -> str:
        return f"{self.key_prefix}:seq"

    def _dedupe_key(self, envelope: JobEnvelope) -> Optional[str]:
        if envelope.record_id is None:
            return None
        return f"{self.key_prefix}:dedupe:{envelope.kind.value}:{envelope.record_id}"

    # ------------------------------------------------------------------
    # Enqueue / dequeue
    # ------------------------------------------------------------------

    async def enqueue(
        self,
        kind: Union[JobKind, str],
        payload: Union[PayloadBase, Dict[str, Any]],
        priority: int = DEFAULT_PRIORITY
    ) -> str:
        """
        Create an envelope and insert it into the queue for its kind.

        Jobs carrying a system-of-record id are enqueued at most once while
        their de-duplication marker lives; a repeated call returns the id of
        the job already queued.

        Args:
            kind: Job kind
            payload: Payload model or dict for that kind
            priority: Higher is served first

        Returns:
            Job id

        Raises:
            QueueStoreError: If Redis is unreachable
            ValueError: If payload or priority are invalid
        """
        envelope = JobEnvelope.create(kind, payload, priority)

        dedupe_key = self._dedupe_key(envelope)
        if dedupe_key:
            acquired = await self._call('set', dedupe_key, envelope.id, nx=True, ex=self.dedupe_ttl)
            if not acquired:
                existing = await self._call('get', dedupe_key)
                logger.debug(f"Duplicate enqueue for {dedupe_key}, keeping {existing}")
                return existing or envelope.id

        await self.enqueue_envelope(envelope)
        logger.info(
            f"Enqueued {envelope.kind.value} job {envelope.id} (priority={envelope.priority})"
        )
        return envelope.id

    async def enqueue_envelope(self, envelope: JobEnvelope) -> None:
        """Insert an existing envelope at the tail of its priority band"""
        seq = await self._call('incr', self._seq_key())
        try:
            async with self.client.pipeline(transaction=True) as pipe:
                pipe.zadd(
                    self._key('queue', envelope.kind),
                    {envelope.to_json(): priority_score(envelope.priority, seq)}
                )
                pipe.hincrby(self._key('stats', envelope.kind), 'enqueued', 1)
                await pipe.execute()
        except RedisError as e:
            raise QueueStoreError(f"Failed to enqueue job {envelope.id}: {e}") from e

    async def dequeue_next(self, kind: Union[JobKind, str]) -> Optional[JobEnvelope]:
        """
        Atomically remove and return the highest-priority, earliest envelope.

        Returns:
            Envelope marked processing, or None when the queue is empty

        Raises:
            QueueStoreError: If Redis is unreachable
            EnvelopeDecodeError: If the popped member is not a valid envelope;
                the raw member is kept in the dead-letter registry
        """
        popped = await self._call('zpopmax', self._key('queue', kind), 1)
        if not popped:
            return None

        raw, _score = popped[0]
        await self._call('hincrby', self._key('stats', kind), 'dequeued', 1)

        try:
            envelope = JobEnvelope.from_json(raw)
        except EnvelopeDecodeError:
            await self._call('hset', self._key('failed', kind), f"invalid:{int(time.time() * 1000)}", raw)
            logger.error(f"Moved undecodable {JobKind(kind).value} queue member to dead-letter registry")
            raise

        return envelope.mark_processing()

    async def push_back(self, envelope: JobEnvelope) -> None:
        """Return an envelope that could not be dispatched right now"""
        await self.enqueue_envelope(replace(envelope, status=JobStatus.PENDING, started_at=None))

    # ------------------------------------------------------------------
    # Delayed retries
    # ------------------------------------------------------------------

    async def schedule_retry(self, envelope: JobEnvelope, delay: float) -> None:
        """
        Park an envelope in the delayed set until `delay` seconds from now.

        A single ZADD; the dispatcher tick never waits for the delay.
        """
        ready_at = time.time() + max(delay, 0.0)
        try:
            async with self.client.pipeline(transaction=True) as pipe:
                pipe.zadd(self._key('delayed', envelope.kind), {envelope.to_json(): ready_at})
                pipe.hincrby(self._key('stats', envelope.kind), 'retried', 1)
                await pipe.execute()
        except RedisError as e:
            raise QueueStoreError(f"Failed to schedule retry for job {envelope.id}: {e}") from e

    async def promote_due(self, kind: Union[JobKind, str], now: Optional[float] = None) -> int:
        """
        Move due retries from the delayed set into the main queue.

        Only the caller whose ZREM removed a member re-inserts it, so
        concurrent promoters never duplicate a job.

        Returns:
            Number of promoted envelopes
        """
        now = time.time() if now is None else now
        delayed_key = self._key('delayed', kind)
        due = await self._call('zrangebyscore', delayed_key, '-inf', now)

        promoted = 0
        for raw in due:
            removed = await self._call('zrem', delayed_key, raw)
            if not removed:
                continue
            try:
                envelope = JobEnvelope.from_json(raw)
            except EnvelopeDecodeError:
                await self._call('hset', self._key('failed', kind), f"invalid:{int(now * 1000)}", raw)
                logger.error("Dropped undecodable delayed member into dead-letter registry")
                continue
            try:
                await self.enqueue_envelope(envelope)
            except QueueStoreError:
                await self._restore_delayed(delayed_key, raw, now, envelope.id)
                raise
            promoted += 1

        if promoted:
            logger.debug(f"Promoted {promoted} delayed {JobKind(kind).value} jobs")
        return promoted

    async def _restore_delayed(self, delayed_key: str, raw: str, ready_at: float, job_id: str) -> None:
        """Put a member taken for promotion back into the delayed set"""
        try:
            await self._call('zadd', delayed_key, {raw: ready_at})
        except QueueStoreError as e:
            logger.error(f"Lost delayed job {job_id}, could not restore it after a failed promotion: {e}")

    # ------------------------------------------------------------------
    # Terminal states
    # ------------------------------------------------------------------

    async def record_completed(self, envelope: JobEnvelope) -> None:
        """Count a completion and release the de-duplication marker"""
        await self._call('hincrby', self._key('stats', envelope.kind), 'completed', 1)
        dedupe_key = self._dedupe_key(envelope)
        if dedupe_key:
            await self._call('delete', dedupe_key)

    async def record_dead_letter(self, envelope: JobEnvelope, reason: str) -> None:
        """Keep a permanently failed envelope for explicit administrative retry"""
        failed = envelope.mark_failed(reason)
        try:
            async with self.client.pipeline(transaction=True) as pipe:
                pipe.hset(self._key('failed', envelope.kind), envelope.id, failed.to_json())
                pipe.hincrby(self._key('stats', envelope.kind), 'failed', 1)
                dedupe_key = self._dedupe_key(envelope)
                if dedupe_key:
                    pipe.delete(dedupe_key)
                await pipe.execute()
        except RedisError as e:
            raise QueueStoreError(f"Failed to record dead letter for job {envelope.id}: {e}") from e

    async def list_failed(self, kind: Union[JobKind, str], limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """
        List permanently failed jobs of a kind

        Returns:
            Envelope dicts (undecodable members appear as {'id', 'raw'})
        """
        entries = await self._call('hgetall', self._key('failed', kind))
        failed = []
        for job_id, raw in entries.items():
            try:
                failed.append(JobEnvelope.from_json(raw).to_dict())
            except EnvelopeDecodeError:
                failed.append({'id': job_id, 'raw': raw})
        failed.sort(key=lambda item: item.get('completed_at') or '', reverse=True)
        return failed[:limit] if limit else failed

    async def retry_failed(self, kind: Union[JobKind, str]) -> int:
        """
        Re-enqueue every permanently failed job of a kind with retry_count reset.

        Returns:
            Number of jobs re-enqueued
        """
        failed_key = self._key('failed', kind)
        entries = await self._call('hgetall', failed_key)

        retried = 0
        for job_id, raw in entries.items():
            try:
                envelope = JobEnvelope.from_json(raw)
            except EnvelopeDecodeError:
                logger.warning(f"Skipping undecodable dead letter {job_id}")
                continue
            removed = await self._call('hdel', failed_key, job_id)
            if not removed:
                continue
            retry = envelope.reset_for_manual_retry()
            await self.enqueue_envelope(retry)
            dedupe_key = self._dedupe_key(retry)
            if dedupe_key:
                await self._call('set', dedupe_key, retry.id, ex=self.dedupe_ttl)
            retried += 1

        logger.info(f"Re-enqueued {retried} failed {JobKind(kind).value} jobs")
        return retried

    async def clear_queue(self, kind: Union[JobKind, str]) -> None:
        """Delete queued, delayed, failed, stats and de-duplication data for a kind"""
        keys = [self._key(name, kind) for name in ('queue', 'delayed', 'failed', 'stats')]
        try:
            async for key in self.client.scan_iter(match=f"{self._key('dedupe', kind)}:*", count=500):
                keys.append(key)
        except (RedisError, OSError) as e:
            raise QueueStoreError(f"Redis scan failed: {e}") from e
        await self._call('delete', *keys)
        logger.info(f"Cleared queue {JobKind(kind).value}")

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    async def queue_length(self, kind: Union[JobKind, str]) -> int:
        return int(await self._call('zcard', self._key('queue', kind)))

    async def delayed_length(self, kind: Union[JobKind, str]) -> int:
        return int(await self._call('zcard', self._key('delayed', kind)))

    async def failed_length(self, kind: Union[JobKind, str]) -> int:
        return int(await self._call('hlen', self._key('failed', kind)))

    async def queue_stats(self, kind: Union[JobKind, str]) -> QueueStats:
        counters = await self._call('hgetall', self._key('stats', kind))
        return QueueStats(
            kind=JobKind(kind).value,
            length=await self.queue_length(kind),
            delayed=await self.delayed_length(kind),
            failed=await self.failed_length(kind),
            enqueued=int(counters.get('enqueued', 0)),
            dequeued=int(counters.get('dequeued', 0)),
            completed=int(counters.get('completed', 0)),
            failed_total=int(counters.get('failed', 0)),
            retried=int(counters.get('retried', 0)),
        )

    async def peek(self, kind: Union[JobKind, str], count: int = 10) -> List[JobEnvelope]:
        """Envelopes at the head of a queue, without removing them"""
        members = await self._call('zrevrange', self._key('queue', kind), 0, count - 1)
        return [JobEnvelope.from_json(raw) for raw in members]

    async def ping(self) -> PingResult:
        """Liveness and latency probe; never raises"""
        start = time.monotonic()
        try:
            await self.client.ping()
            return PingResult(ok=True, latency_ms=(time.monotonic() - start) * 1000)
        except (RedisError, OSError) as e:
            return PingResult(ok=False, latency_ms=(time.monotonic() - start) * 1000, error=str(e))

    async def close(self) -> None:
        await self.client.aclose()

    async def _call(self, command: str, *args, **kwargs) -> Any:
        try:
            return await getattr(self.client, command)(*args, **kwargs)
        except (RedisError, OSError) as e:
            raise QueueStoreError(f"Redis {command} failed: {e}") from e
