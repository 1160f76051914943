"""
Job queue primitives: envelopes, the Redis queue store, retry routing and
metrics. The dispatcher lives in docqueue.jobs.dispatcher.
"""

from docqueue.jobs.envelope import (
    DEFAULT_PRIORITY,
    MAX_PRIORITY,
    MIN_PRIORITY,
    ExtractionPayload,
    JobEnvelope,
    JobKind,
    JobStatus,
    SearchIndexPayload,
    StorageSyncPayload,
)
from docqueue.jobs.metrics import HealthReport, HealthStatus, HealthThresholds, ProcessorMetrics, evaluate_health
from docqueue.jobs.queue_store import PingResult, QueueStats, RedisQueueStore
from docqueue.jobs.retry import RetryAction, RetryDecision, RetryPolicy

__all__ = [
    'DEFAULT_PRIORITY',
    'MAX_PRIORITY',
    'MIN_PRIORITY',
    'ExtractionPayload',
    'JobEnvelope',
    'JobKind',
    'JobStatus',
    'SearchIndexPayload',
    'StorageSyncPayload',
    'HealthReport',
    'HealthStatus',
    'HealthThresholds',
    'ProcessorMetrics',
    'evaluate_health',
    'PingResult',
    'QueueStats',
    'RedisQueueStore',
    'RetryAction',
    'RetryDecision',
    'RetryPolicy',
]
