"""
Administrative surface

Operations an operator performs on a running processor: lifecycle,
reconfiguration, status and health, queue maintenance.
"""

import logging
from typing import Any, Dict, List, Optional, Union

from docqueue.exceptions import ConfigurationError, QueueStoreError
from docqueue.jobs.envelope import DEFAULT_PRIORITY, JobKind
from docqueue.runtime import Runtime
from docqueue.utils import run_blocking

logger = logging.getLogger(__name__)


class ProcessorAdmin:
    """
    Facade over a runtime's dispatcher, queue store and system of record.

    Usage:
        admin = ProcessorAdmin(build_runtime(config))
        await admin.start()
        status = await admin.status()
        await admin.retry_failed('extraction')
    """

    ACTIONS = (
        'start',
        'stop',
        'restart',
        'configure',
        'clear-queue',
        'retry-failed',
        'process-pending',
    )

    def __init__(self, runtime: Runtime):
        self.runtime = runtime
        self.dispatcher = runtime.dispatcher
        self.store = runtime.store
        self.record = runtime.record

    async def start(self) -> Dict[str, Any]:
        await self.dispatcher.start()
        return {'running': self.dispatcher.running, 'message': 'Background processor started'}

    async def stop(self) -> Dict[str, Any]:
        await self.dispatcher.stop()
        return {'running': self.dispatcher.running, 'message': 'Background processor stopped'}

    async def restart(self) -> Dict[str, Any]:
        await self.dispatcher.restart()
        return {'running': self.dispatcher.running, 'message': 'Background processor restarted'}

    def configure(self, **changes) -> Dict[str, Any]:
        """
        Stage processor settings; they apply on the next start or restart

        Raises:
            ConfigurationError: If a setting is unknown or invalid
        """
        staged = self.dispatcher.update_config(**changes)
        return {
            'message': 'Configuration staged, restart the processor to apply it',
            'config': staged.to_dict(),
        }

    async def status(self) -> Dict[str, Any]:
        """
        Full processor status

        Returns:
            Dict with running flag, per-kind queue stats, metrics, health and
            system-of-record status counts
        """
        queues = {}
        for kind in self.dispatcher.config.kinds:
            try:
                queues[kind.value] = (await self.store.queue_stats(kind)).to_dict()
            except QueueStoreError as e:
                logger.error(f"Failed to read {kind.value} queue stats: {e}")
                queues[kind.value] = {'kind': kind.value, 'error': str(e)}

        health = await self.dispatcher.health_check()
        records = await run_blocking(self.record.status_counts)

        return {
            'running': self.dispatcher.running,
            'queues': queues,
            'metrics': self.dispatcher.metrics.to_dict(),
            'health': health.to_dict(),
            'records': records,
            'config': self.dispatcher.config.to_dict(),
            'pending_config': self.dispatcher.get_stats()['pending_config'],
        }

    async def health(self) -> Dict[str, Any]:
        return (await self.dispatcher.health_check()).to_dict()

    async def clear_queue(self, kind: Union[JobKind, str]) -> Dict[str, Any]:
        await self.store.clear_queue(kind)
        return {'kind': JobKind(kind).value, 'message': f"Queue {JobKind(kind).value} cleared"}

    async def retry_failed(self, kind: Union[JobKind, str]) -> Dict[str, Any]:
        retried = await self.store.retry_failed(kind)
        return {'kind': JobKind(kind).value, 'retried': retried}

    async def list_failed(self, kind: Union[JobKind, str], limit: Optional[int] = None) -> List[Dict[str, Any]]:
        return await self.store.list_failed(kind, limit=limit)

    async def sync_pending(self, limit: Optional[int] = None) -> Dict[str, Any]:
        submitted = await self.dispatcher.sync_pending_jobs(limit)
        return {'submitted': submitted, 'total': sum(submitted.values())}

    async def enqueue(
        self,
        kind: Union[JobKind, str],
        payload: Dict[str, Any],
        priority: int = DEFAULT_PRIORITY,
        persist: bool = False
    ) -> str:
        """
        Enqueue a single job

        Args:
            kind: Job kind
            payload: Payload fields for that kind
            priority: Higher is served first
            persist: Also create a system-of-record row so the terminal status
                is recorded durably

        Returns:
            Job id
        """
        kind = JobKind(kind)
        payload = dict(payload)
        if persist and payload.get('record_id') is None:
            extra = {
                k: v for k, v in payload.items()
                if k not in ('organization_id', 'file_id', 'record_id')
            }
            payload['record_id'] = await run_blocking(
                self.record.create_job,
                kind.value,
                payload['organization_id'],
                file_id=payload.get('file_id'),
                payload=extra,
                priority=priority
            )
        return await self.store.enqueue(kind, payload, priority)

    async def handle_action(self, action: str, **params) -> Dict[str, Any]:
        """
        Run an administrative action by name

        Args:
            action: One of ACTIONS
            params: 'kind' for queue actions, 'limit' for process-pending,
                settings for configure

        Raises:
            ConfigurationError: If the action is unknown or a kind is missing
        """
        logger.info(f"Admin action: {action}")
        if action == 'start':
            return await self.start()
        if action == 'stop':
            return await self.stop()
        if action == 'restart':
            return await self.restart()
        if action == 'configure':
            return self.configure(**params)
        if action == 'process-pending':
            return await self.sync_pending(params.get('limit'))
        if action in ('clear-queue', 'retry-failed'):
            kind = params.get('kind')
            if not kind:
                raise ConfigurationError(f"Action {action} requires a queue kind")
            if action == 'clear-queue':
                return await self.clear_queue(kind)
            return await self.retry_failed(kind)
        raise ConfigurationError(f"Unknown admin action: {action}")
