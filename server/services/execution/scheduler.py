"""Continuation scheduler: the engine's only bridge to the job queue."""

from typing import Optional

from core.logging import get_logger
from .models import Job, JobOptions
from .protocols import JobQueue

logger = get_logger(__name__)


class ContinuationScheduler:
    """Enqueue the next ``advance`` of an execution, optionally after a delay.

    Jobs carry only the execution id; all mutable state lives in the
    persisted execution. Retries are the queue's business, not ours.
    """

    def __init__(self, queue: JobQueue, attempts: int = 3, backoff_delay_ms: int = 5000):
        self.queue = queue
        self.attempts = attempts
        self.backoff_delay_ms = backoff_delay_ms

    async def schedule(self, execution_id: str, delay_ms: Optional[int] = 0) -> Job:
        options = JobOptions(
            delay_ms=max(0, int(delay_ms or 0)),
            attempts=self.attempts,
            backoff_type="exponential",
            backoff_delay_ms=self.backoff_delay_ms,
        )
        job = await self.queue.enqueue({"executionId": execution_id}, options)
        logger.debug("Continuation scheduled",
                    execution_id=execution_id,
                    job_id=job.id,
                    delay_ms=options.delay_ms)
        return job
