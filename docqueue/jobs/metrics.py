"""
Processor Metrics and Health

Rolling counters kept by the dispatcher and a pure health evaluation over
them.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from docqueue.jobs.envelope import utc_now
from docqueue.jobs.queue_store import PingResult


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


class QueueBand(str, Enum):
    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass
class HealthThresholds:
    """Health thresholds"""
    queue_warning: int = 100
    queue_critical: int = 500
    failure_ratio: float = 0.10

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]] = None) -> 'HealthThresholds':
        data = data or {}
        return cls(
            queue_warning=int(data.get('queue_warning', cls.queue_warning)),
            queue_critical=int(data.get('queue_critical', cls.queue_critical)),
            failure_ratio=float(data.get('failure_ratio', cls.failure_ratio)),
        )


@dataclass
class ProcessorMetrics:
    """Counters for one dispatcher instance"""
    total_processed: int = 0
    successful: int = 0
    failed: int = 0
    timed_out: int = 0
    retries_scheduled: int = 0
    permanent_failures: int = 0
    skipped_ticks: int = 0
    degraded_operations: int = 0
    average_processing_ms: float = 0.0
    started_at: Optional[float] = None
    last_processed_at: Optional[datetime] = None
    queue_lengths: Dict[str, int] = field(default_factory=dict)

    def record_outcome(self, success: bool, duration_ms: float, timed_out: bool = False) -> None:
        """Count one finished execution and update the cumulative average"""
        self.total_processed += 1
        if success:
            self.successful += 1
        else:
            self.failed += 1
            if timed_out:
                self.timed_out += 1
        self.average_processing_ms += (duration_ms - self.average_processing_ms) / self.total_processed
        self.last_processed_at = utc_now()

    def mark_started(self) -> None:
        self.started_at = time.monotonic()

    @property
    def uptime_seconds(self) -> float:
        if self.started_at is None:
            return 0.0
        return time.monotonic() - self.started_at

    @property
    def throughput_per_minute(self) -> float:
        uptime_minutes = self.uptime_seconds / 60
        if uptime_minutes <= 0:
            return 0.0
        return self.total_processed / uptime_minutes

    @property
    def failure_ratio(self) -> float:
        if not self.total_processed:
            return 0.0
        return self.failed / self.total_processed

    @property
    def total_queue_depth(self) -> int:
        return sum(self.queue_lengths.values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            'total_processed': self.total_processed,
            'successful': self.successful,
            'failed': self.failed,
            'timed_out': self.timed_out,
            'retries_scheduled': self.retries_scheduled,
            'permanent_failures': self.permanent_failures,
            'skipped_ticks': self.skipped_ticks,
            'degraded_operations': self.degraded_operations,
            'average_processing_ms': round(self.average_processing_ms, 2),
            'uptime_seconds': round(self.uptime_seconds, 3),
            'throughput_per_minute': round(self.throughput_per_minute, 2),
            'failure_ratio': round(self.failure_ratio, 4),
            'last_processed_at': self.last_processed_at.isoformat() if self.last_processed_at else None,
            'queue_lengths': dict(self.queue_lengths),
        }


@dataclass
class HealthReport:
    """Composite health verdict"""
    status: HealthStatus
    issues: List[str]
    queue_band: QueueBand
    total_depth: int
    metrics: Dict[str, Any]

    @property
    def healthy(self) -> bool:
        return self.status == HealthStatus.HEALTHY

    def to_dict(self) -> Dict[str, Any]:
        return {
            'status': self.status.value,
            'issues': list(self.issues),
            'queue_band': self.queue_band.value,
            'total_depth': self.total_depth,
            'metrics': self.metrics,
        }


def queue_band(total_depth: int, thresholds: HealthThresholds) -> QueueBand:
    if total_depth <= thresholds.queue_warning:
        return QueueBand.HEALTHY
    if total_depth <= thresholds.queue_critical:
        return QueueBand.WARNING
    return QueueBand.CRITICAL


def evaluate_health(
    running: bool,
    ping: PingResult,
    queue_lengths: Dict[str, int],
    metrics: ProcessorMetrics,
    thresholds: Optional[HealthThresholds] = None
) -> HealthReport:
    """
    Derive the health verdict from current observations

    Args:
        running: Whether the dispatcher loop is running
        ping: Latest queue store ping
        queue_lengths: Depth per kind
        metrics: Dispatcher metrics
        thresholds: Health thresholds, defaults when None

    Returns:
        HealthReport with status, issues and queue band
    """
    thresholds = thresholds or HealthThresholds()
    issues: List[str] = []
    status = HealthStatus.HEALTHY

    if not running:
        issues.append("Processor is not running")
        status = HealthStatus.UNHEALTHY

    if not ping.ok:
        issues.append(f"Queue store unreachable: {ping.error or 'ping failed'}")
        status = HealthStatus.UNHEALTHY

    total_depth = sum(queue_lengths.values())
    band = queue_band(total_depth, thresholds)
    if band == QueueBand.CRITICAL:
        issues.append(f"Critical queue backlog: {total_depth} jobs")
        if status == HealthStatus.HEALTHY:
            status = HealthStatus.DEGRADED

    if metrics.failure_ratio > thresholds.failure_ratio:
        issues.append(f"High failure rate: {metrics.failure_ratio * 100:.1f}%")
        if status == HealthStatus.HEALTHY:
            status = HealthStatus.DEGRADED

    return HealthReport(
        status=status,
        issues=issues,
        queue_band=band,
        total_depth=total_depth,
        metrics=metrics.to_dict()
    )
