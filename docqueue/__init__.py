"""
docqueue - Background job processing for a document library

Redis-backed priority queues consumed by a batch dispatcher with a
concurrency cap, per-job timeouts and exponential-backoff retries.

Basic usage:
    from docqueue import QueueConfig, build_runtime

    runtime = build_runtime(QueueConfig.from_file('config.yaml'))

    # Enqueue work
    await runtime.store.enqueue('extraction', {'organization_id': 1, 'file_id': 42}, priority=8)

    # Process until SIGINT/SIGTERM
    await runtime.dispatcher.run()
"""

from docqueue.config import QueueConfig
from docqueue.jobs.dispatcher import BatchDispatcher, ProcessorConfig
from docqueue.jobs.envelope import JobEnvelope, JobKind
from docqueue.jobs.queue_store import RedisQueueStore
from docqueue.runtime import Runtime, build_runtime

__all__ = [
    'QueueConfig',
    'BatchDispatcher',
    'ProcessorConfig',
    'JobEnvelope',
    'JobKind',
    'RedisQueueStore',
    'Runtime',
    'build_runtime',
]

__version__ = '0.1.0'
