"""
Batch Dispatcher

Fires a tick every processing_interval seconds. Each tick pulls a bounded
batch from every configured queue kind and executes it with:
- A global concurrency cap
- A per-job timeout
- Retry routing with exponential backoff
- Follow-up job enqueueing
- Status mirroring into the system of record
"""

import asyncio
import inspect
import logging
import signal
import time
from dataclasses import asdict, dataclass, field, fields, replace
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple, Union

from docqueue.db.record import SystemOfRecord
from docqueue.exceptions import (
    ConfigurationError,
    EnvelopeDecodeError,
    HandlerNotFoundError,
    JobTimeoutError,
    QueueStoreError,
)
from docqueue.handlers.base import HandlerResult, JobHandler
from docqueue.jobs.envelope import JobEnvelope, JobKind
from docqueue.jobs.metrics import HealthReport, HealthThresholds, ProcessorMetrics, evaluate_health
from docqueue.jobs.queue_store import RedisQueueStore
from docqueue.jobs.retry import RetryDecision, RetryPolicy
from docqueue.utils import run_blocking

logger = logging.getLogger(__name__)

Handler = Union[JobHandler, Callable[[JobEnvelope], Any]]


@dataclass
class ProcessorConfig:
    """Dispatcher configuration"""
    # Scheduling
    processing_interval: float = 1.0  # seconds
    batch_size: int = 5

    # Concurrency
    max_concurrent_jobs: int = 10

    # Timeouts
    job_timeout: float = 300.0  # seconds
    shutdown_timeout: float = 30.0  # seconds

    # Retries
    retry_delay: float = 2.0  # seconds
    retry_delay_max: float = 300.0  # seconds
    max_retries: int = 3

    # Queue kinds served, in tick order
    queue_kinds: List[str] = field(default_factory=lambda: [kind.value for kind in JobKind])

    # System of record resync
    sync_pending_on_start: bool = True
    sync_limit: int = 100

    indexing_priority_offset: int = 2

    def __post_init__(self):
        self.validate()

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]] = None) -> 'ProcessorConfig':
        """
        Build from the `processor` configuration section

        Raises:
            ConfigurationError: On unknown keys or invalid values
        """
        data = dict(data or {})
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigurationError(f"Unknown processor settings: {', '.join(unknown)}")
        return cls(**data)

    def validate(self) -> None:
        if self.processing_interval <= 0:
            raise ConfigurationError("processing_interval must be positive")
        if self.batch_size < 1:
            raise ConfigurationError("batch_size must be at least 1")
        if self.max_concurrent_jobs < 1:
            raise ConfigurationError("max_concurrent_jobs must be at least 1")
        if self.job_timeout <= 0:
            raise ConfigurationError("job_timeout must be positive")
        if self.shutdown_timeout < 0:
            raise ConfigurationError("shutdown_timeout cannot be negative")
        if self.retry_delay < 0 or self.retry_delay_max < 0:
            raise ConfigurationError("retry delays cannot be negative")
        if self.max_retries < 0:
            raise ConfigurationError("max_retries cannot be negative")
        if self.sync_limit < 1:
            raise ConfigurationError("sync_limit must be at least 1")
        for kind in self.queue_kinds:
            try:
                JobKind(kind)
            except ValueError:
                raise ConfigurationError(f"Unknown queue kind: {kind}") from None

    @property
    def kinds(self) -> List[JobKind]:
        return [JobKind(kind) for kind in self.queue_kinds]

    def with_changes(self, **changes) -> 'ProcessorConfig':
        """Validated copy with some settings changed"""
        unknown = sorted(set(changes) - {f.name for f in fields(self)})
        if unknown:
            raise ConfigurationError(f"Unknown processor settings: {', '.join(unknown)}")
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class JobOutcome:
    """Result of executing one envelope"""
    job_id: str
    kind: str
    priority: int
    success: bool
    duration_ms: float
    error: Optional[str] = None
    timed_out: bool = False
    retry: Optional[RetryDecision] = None
    result: Optional[HandlerResult] = None


@dataclass
class TickReport:
    """What one tick fetched and how each job ended"""
    fetched: Dict[str, int] = field(default_factory=dict)
    store_errors: Dict[str, str] = field(default_factory=dict)
    missing_handlers: List[str] = field(default_factory=list)
    outcomes: List[JobOutcome] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.success)

    @property
    def failed(self) -> int:
        return sum(1 for outcome in self.outcomes if not outcome.success)


class BatchDispatcher:
    """
    Async batch dispatcher for queued document jobs.

    Usage:
        dispatcher = BatchDispatcher(store, handlers, record, ProcessorConfig())

        # Run until SIGINT/SIGTERM
        await dispatcher.run()

        # Or drive it manually
        report = await dispatcher.tick()
    """

    def __init__(
        self,
        store: RedisQueueStore,
        handlers: Optional[Dict[Union[JobKind, str], Handler]] = None,
        record: Optional[SystemOfRecord] = None,
        config: Optional[ProcessorConfig] = None,
        thresholds: Optional[HealthThresholds] = None
    ):
        self.store = store
        self.record = record
        self.config = config or ProcessorConfig()
        self.thresholds = thresholds or HealthThresholds()
        self.retry_policy = self._build_retry_policy()

        # Handlers by kind
        self._handlers: Dict[JobKind, Handler] = {}
        for kind, handler in (handlers or {}).items():
            self.register_handler(kind, handler)

        # State
        self._running = False
        self._shutdown_event = asyncio.Event()
        self._loop_task: Optional[asyncio.Task] = None
        self._tick_task: Optional[asyncio.Task] = None
        self._active_jobs: Set[str] = set()
        self._abandoned: Set[asyncio.Task] = set()
        self._semaphore: Optional[asyncio.Semaphore] = None
        self._pending_config: Optional[ProcessorConfig] = None
        # Failed jobs the store refused to retry or dead-letter, by id
        self._unrouted: Dict[str, Tuple[JobEnvelope, str]] = {}

        self.metrics = ProcessorMetrics()

    @property
    def running(self) -> bool:
        return self._running

    def register_handler(self, kind: Union[JobKind, str], handler: Handler) -> None:
        """
        Register a handler for a queue kind.

        Args:
            kind: Job kind
            handler: JobHandler, or a callable taking the envelope (sync or async)
        """
        kind = JobKind(kind)
        self._handlers[kind] = handler
        logger.info(f"Registered handler for job kind: {kind.value}")

    def get_handler(self, kind: Union[JobKind, str]) -> Handler:
        """
        Raises:
            HandlerNotFoundError: If no handler is registered for the kind
        """
        try:
            return self._handlers[JobKind(kind)]
        except KeyError:
            raise HandlerNotFoundError(f"No handler registered for job kind: {JobKind(kind).value}") from None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """
        Start the scheduler loop.

        Applies configuration staged with update_config() and, when
        configured, resynchronizes pending system-of-record jobs first.
        """
        if self._running:
            logger.warning("Dispatcher already running")
            return

        self._apply_pending_config()
        self._semaphore = asyncio.Semaphore(self.config.max_concurrent_jobs)
        self._shutdown_event = asyncio.Event()
        self._running = True
        self.metrics.mark_started()

        if self.config.sync_pending_on_start and self.record is not None:
            try:
                await self.sync_pending_jobs()
            except QueueStoreError as e:
                logger.error(f"Failed to sync pending jobs on start: {e}")

        self._loop_task = asyncio.create_task(self._run_loop())
        logger.info(
            f"Dispatcher started (interval={self.config.processing_interval}s, "
            f"batch={self.config.batch_size}, concurrency={self.config.max_concurrent_jobs})"
        )

    async def stop(self) -> None:
        """Stop the scheduler and wait up to shutdown_timeout for the running tick"""
        if not self._running:
            return

        logger.info("Stopping dispatcher...")
        self._running = False
        self._shutdown_event.set()

        if self._loop_task is not None:
            await self._loop_task
            self._loop_task = None

        if self._tick_task is not None and not self._tick_task.done():
            logger.info(f"Waiting for {len(self._active_jobs)} active jobs to complete...")
            try:
                await asyncio.wait_for(asyncio.shield(self._tick_task), timeout=self.config.shutdown_timeout)
            except asyncio.TimeoutError:
                logger.warning("Shutdown timeout - cancelling unfinished jobs")
                self._tick_task.cancel()

        logger.info(
            f"Dispatcher stopped. Processed: {self.metrics.successful}, Failed: {self.metrics.failed}"
        )

    async def restart(self) -> None:
        await self.stop()
        await self.start()

    def request_stop(self) -> None:
        """Ask run() to stop; safe to call from a signal handler"""
        self._shutdown_event.set()

    async def run(self) -> None:
        """Run until request_stop() or SIGINT/SIGTERM"""
        await self.start()
        self._setup_signal_handlers()
        try:
            await self._shutdown_event.wait()
        finally:
            await self.stop()

    def update_config(self, **changes) -> ProcessorConfig:
        """
        Stage configuration changes; they take effect on the next start().

        Returns:
            The staged configuration

        Raises:
            ConfigurationError: If a setting is unknown or invalid
        """
        base = self._pending_config or self.config
        self._pending_config = base.with_changes(**changes)
        logger.info(f"Staged processor configuration changes: {changes}")
        return self._pending_config

    def _apply_pending_config(self) -> None:
        if self._pending_config is None:
            return
        self.config = self._pending_config
        self._pending_config = None
        self.retry_policy = self._build_retry_policy()
        logger.info("Applied staged processor configuration")

    def _build_retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            self.store,
            self.record,
            max_retries=self.config.max_retries,
            retry_delay=self.config.retry_delay,
            retry_delay_max=self.config.retry_delay_max
        )

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    async def _run_loop(self) -> None:
        while self._running and not self._shutdown_event.is_set():
            self.trigger_tick()
            try:
                await asyncio.wait_for(
                    self._shutdown_event.wait(),
                    timeout=self.config.processing_interval
                )
            except asyncio.TimeoutError:
                pass

    def trigger_tick(self) -> bool:
        """
        Start a tick in the background unless the previous one is still running.

        Returns:
            True if a tick was started, False if it was skipped
        """
        if self._tick_task is not None and not self._tick_task.done():
            self.metrics.skipped_ticks += 1
            logger.debug("Previous tick still running, skipping this one")
            return False
        self._tick_task = asyncio.ensure_future(self._guarded_tick())
        return True

    async def _guarded_tick(self) -> Optional[TickReport]:
        try:
            return await self.tick()
        except Exception as e:
            logger.exception(f"Dispatcher tick error: {e}")
            return None

    async def tick(self) -> TickReport:
        """
        Run one fetch-and-execute cycle over every configured kind.

        Returns:
            TickReport with per-kind fetch counts and job outcomes
        """
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self.config.max_concurrent_jobs)

        report = TickReport()
        batch: List[JobEnvelope] = []

        if self._unrouted:
            await self._reroute_held_failures()

        for kind in self.config.kinds:
            if kind not in self._handlers:
                logger.error(
                    f"Configuration error: no handler registered for {kind.value}, leaving its jobs queued"
                )
                report.missing_handlers.append(kind.value)
                continue
            try:
                await self.store.promote_due(kind)
                fetched = await self._fetch(kind)
            except QueueStoreError as e:
                logger.error(f"Skipping {kind.value} this tick: {e}")
                report.store_errors[kind.value] = str(e)
                continue
            report.fetched[kind.value] = len(fetched)
            batch.extend(fetched)

        if batch:
            logger.debug(f"Dispatching batch of {len(batch)} jobs")
            report.outcomes = list(await asyncio.gather(*(self._execute(envelope) for envelope in batch)))

        await self._refresh_queue_lengths()
        return report

    async def _fetch(self, kind: JobKind) -> List[JobEnvelope]:
        """Dequeue up to batch_size envelopes of one kind"""
        envelopes: List[JobEnvelope] = []
        seen: Set[str] = set()

        for _ in range(self.config.batch_size):
            try:
                envelope = await self.store.dequeue_next(kind)
            except EnvelopeDecodeError as e:
                logger.error(f"Skipping undecodable {kind.value} job: {e}")
                continue
            except QueueStoreError:
                if not envelopes:
                    raise
                logger.error(f"Queue store failed mid-fetch for {kind.value}, dispatching {len(envelopes)} jobs")
                break

            if envelope is None:
                break

            if envelope.id in self._active_jobs or envelope.id in seen:
                logger.warning(f"Job {envelope.id} already in flight, pushing it back")
                try:
                    await self.store.push_back(envelope)
                except QueueStoreError as e:
                    logger.error(f"Failed to push back in-flight job {envelope.id}: {e}")
                break

            seen.add(envelope.id)
            envelopes.append(envelope)

        return envelopes

    async def _refresh_queue_lengths(self) -> None:
        lengths = {}
        for kind in self.config.kinds:
            try:
                lengths[kind.value] = await self.store.queue_length(kind)
            except QueueStoreError:
                lengths[kind.value] = self.metrics.queue_lengths.get(kind.value, 0)
        self.metrics.queue_lengths = lengths

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def _execute(self, envelope: JobEnvelope) -> JobOutcome:
        """Execute one envelope under the concurrency cap and route its outcome"""
        async with self._semaphore:
            self._active_jobs.add(envelope.id)
            start = time.monotonic()
            try:
                await self._mirror('mark_processing', envelope)
                try:
                    result = await self._run_with_timeout(envelope)
                except JobTimeoutError as e:
                    return await self._on_failure(envelope, str(e), start, timed_out=True)
                except Exception as e:
                    return await self._on_failure(envelope, str(e) or type(e).__name__, start)
                return await self._on_success(envelope, result, start)
            finally:
                self._active_jobs.discard(envelope.id)

    async def _run_with_timeout(self, envelope: JobEnvelope) -> HandlerResult:
        """
        Run the kind's handler as its own task under job_timeout.

        On timeout the task is asked to cancel but not awaited; the caller
        moves on and the job counts as failed.
        """
        handler = self.get_handler(envelope.kind)
        task = asyncio.ensure_future(self._invoke(handler, envelope))
        try:
            done, _ = await asyncio.wait({task}, timeout=self.config.job_timeout)
        except asyncio.CancelledError:
            task.cancel()
            raise

        if not done:
            task.cancel()
            self._abandoned.add(task)
            task.add_done_callback(self._forget_abandoned)
            raise JobTimeoutError(envelope.id, self.config.job_timeout)

        result = task.result()
        if isinstance(result, HandlerResult):
            return result
        return HandlerResult(details={} if result is None else {'result': result})

    @staticmethod
    async def _invoke(handler: Handler, envelope: JobEnvelope) -> Any:
        """Await coroutine handlers; run plain callables on the executor"""
        call: Callable[[JobEnvelope], Union[Any, Awaitable[Any]]]
        call = handler.handle if isinstance(handler, JobHandler) else handler
        if inspect.iscoroutinefunction(call) or inspect.iscoroutinefunction(getattr(call, '__call__', None)):
            result = call(envelope)
        else:
            result = await run_blocking(call, envelope)
        if inspect.isawaitable(result):
            result = await result
        return result

    def _forget_abandoned(self, task: asyncio.Task) -> None:
        self._abandoned.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.debug(f"Timed-out job finished late with error: {task.exception()}")

    async def _on_success(self, envelope: JobEnvelope, result: HandlerResult, start: float) -> JobOutcome:
        duration_ms = (time.monotonic() - start) * 1000
        self.metrics.record_outcome(True, duration_ms)

        try:
            await self.store.record_completed(envelope)
        except QueueStoreError as e:
            result.degraded.append(f"completion bookkeeping failed: {e}")

        await self._mirror('mark_completed', envelope)

        for follow_up in result.follow_ups:
            try:
                await self.store.enqueue(follow_up.kind, follow_up.payload, follow_up.priority)
            except (QueueStoreError, ValueError) as e:
                logger.warning(f"Follow-up {JobKind(follow_up.kind).value} job for {envelope.id} not enqueued: {e}")
                result.degraded.append(f"follow-up {JobKind(follow_up.kind).value} enqueue failed: {e}")

        if result.degraded:
            self.metrics.degraded_operations += len(result.degraded)

        logger.info(f"Job {envelope.id} ({envelope.kind.value}) completed in {duration_ms:.0f}ms")
        return JobOutcome(
            job_id=envelope.id,
            kind=envelope.kind.value,
            priority=envelope.priority,
            success=True,
            duration_ms=duration_ms,
            result=result
        )

    async def _on_failure(
        self,
        envelope: JobEnvelope,
        error: str,
        start: float,
        timed_out: bool = False
    ) -> JobOutcome:
        duration_ms = (time.monotonic() - start) * 1000
        self.metrics.record_outcome(False, duration_ms, timed_out=timed_out)

        if timed_out:
            logger.warning(f"Job {envelope.id} ({envelope.kind.value}) timed out after {self.config.job_timeout}s")
        else:
            logger.error(f"Job {envelope.id} ({envelope.kind.value}) failed: {error}")

        decision = None
        try:
            decision = await self._route_failure(envelope, error)
        except QueueStoreError as e:
            logger.error(f"Failed to route failed job {envelope.id}, holding it for the next tick: {e}")
            self._unrouted[envelope.id] = (envelope, error)
            await self._mirror('mark_pending', envelope)

        return JobOutcome(
            job_id=envelope.id,
            kind=envelope.kind.value,
            priority=envelope.priority,
            success=False,
            duration_ms=duration_ms,
            error=error,
            timed_out=timed_out,
            retry=decision
        )

    async def _route_failure(self, envelope: JobEnvelope, error: str) -> RetryDecision:
        decision = await self.retry_policy.handle_failure(envelope, error)
        if decision.is_terminal:
            self.metrics.permanent_failures += 1
        else:
            self.metrics.retries_scheduled += 1
        return decision

    async def _reroute_held_failures(self) -> None:
        """
        Retry routing failed jobs whose retry or dead-letter write was
        rejected by the queue store. Stops at the first store error.
        """
        for job_id, (envelope, error) in list(self._unrouted.items()):
            try:
                await self._route_failure(envelope, error)
            except QueueStoreError as e:
                logger.warning(f"Queue store still rejecting failed job {job_id}: {e}")
                return
            del self._unrouted[job_id]
            logger.info(f"Routed held failed job {job_id}")

    async def _mirror(self, method: str, envelope: JobEnvelope) -> None:
        """Mirror a status change into the system of record for jobs that came from it"""
        if self.record is None or envelope.record_id is None:
            return
        try:
            await run_blocking(getattr(self.record, method), envelope.record_id)
        except Exception as e:
            logger.error(f"Failed to {method} job record {envelope.record_id}: {e}")

    # ------------------------------------------------------------------
    # System of record
    # ------------------------------------------------------------------

    async def sync_pending_jobs(self, limit: Optional[int] = None) -> Dict[str, int]:
        """
        Enqueue pending system-of-record jobs for every configured kind.

        Rows already queued are skipped by the store's de-duplication.

        Returns:
            Number of rows submitted per kind
        """
        if self.record is None:
            return {}

        limit = limit or self.config.sync_limit
        submitted: Dict[str, int] = {}
        for kind in self.config.kinds:
            pending = await run_blocking(self.record.get_pending_jobs, kind.value, limit)
            count = 0
            for job in pending:
                try:
                    await self.store.enqueue(kind, job.to_payload(), job.priority)
                except ValueError as e:
                    logger.error(f"Skipping invalid pending job record {job.record_id}: {e}")
                    continue
                count += 1
            submitted[kind.value] = count

        logger.info(f"Synced pending jobs to queue: {submitted}")
        return submitted

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    def get_stats(self) -> Dict[str, Any]:
        """Get dispatcher statistics"""
        return {
            'running': self._running,
            'active_jobs': len(self._active_jobs),
            'abandoned_jobs': len(self._abandoned),
            'held_failures': len(self._unrouted),
            'handlers_registered': [kind.value for kind in self._handlers],
            'config': self.config.to_dict(),
            'pending_config': self._pending_config.to_dict() if self._pending_config else None,
            'metrics': self.metrics.to_dict(),
        }

    async def health_check(self) -> HealthReport:
        """Probe the queue store and evaluate health"""
        ping = await self.store.ping()
        if ping.ok:
            await self._refresh_queue_lengths()
        return evaluate_health(
            self._running,
            ping,
            dict(self.metrics.queue_lengths),
            self.metrics,
            self.thresholds
        )

    def _setup_signal_handlers(self) -> None:
        """Set up signal handlers for graceful shutdown"""
        try:
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.add_signal_handler(sig, self.request_stop)
        except (NotImplementedError, RuntimeError):
            # Signal handling not available (e.g., Windows)
            pass
