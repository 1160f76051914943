"""
docqueue exceptions

All errors raised by the job processing core derive from DocQueueError.
"""


class DocQueueError(Exception):
    """Base exception for docqueue"""
    pass


class ConfigurationError(DocQueueError):
    """Invalid configuration or unknown queue kind"""
    pass


class QueueStoreError(DocQueueError):
    """Queue store unreachable or a store command failed"""
    pass


class EnvelopeDecodeError(QueueStoreError):
    """A queue member could not be decoded into a job envelope"""
    pass


class JobError(DocQueueError):
    """Failure while executing a single job"""
    pass


class JobTimeoutError(JobError):
    """Job did not finish within the configured timeout"""

    def __init__(self, job_id: str, timeout: float):
        super().__init__(f"Job timeout: {job_id} exceeded {timeout}s")
        self.job_id = job_id
        self.timeout = timeout


class ProviderError(JobError):
    """Downstream provider reported a failure"""
    pass


class HandlerNotFoundError(JobError, ConfigurationError):
    """No handler registered for a job kind"""
    pass
