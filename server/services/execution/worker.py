"""Flow worker - a fixed pool of asyncio tasks draining the flow job queue.

Each job advances one execution by one step. Failed jobs are retried with
exponential backoff until their attempts run out, then abandoned to the
dead letter queue.
"""

import asyncio
from typing import Any, List, Optional

from constants import QUEUE_EVENT_COMPLETED, QUEUE_EVENT_FAILED, QUEUE_EVENT_STALLED
from core.logging import get_logger
from .dlq import DLQHandlerProtocol
from .executor import FlowExecutor
from .models import Job
from .protocols import FlowStore, JobQueue

logger = get_logger(__name__)


class FlowWorker:
    """Manages the worker task pool lifecycle."""

    def __init__(
        self,
        queue: JobQueue,
        executor: FlowExecutor,
        dlq: DLQHandlerProtocol,
        store: FlowStore,
        concurrency: int = 5,
        poll_timeout: float = 1.0,
    ):
        """Initialize the worker.

        Args:
            queue: Job queue to pull from
            executor: Executor whose ``advance`` runs each job
            dlq: Receives jobs that exhausted their attempts
            store: Used to attach execution details to DLQ entries
            concurrency: Number of jobs processed at once
            poll_timeout: Seconds a task blocks waiting for a job
        """
        self.queue = queue
        self.executor = executor
        self.dlq = dlq
        self.store = store
        self.concurrency = concurrency
        self.poll_timeout = poll_timeout
        self._running = False
        self._tasks: List[asyncio.Task] = []

        queue.on(QUEUE_EVENT_COMPLETED, self._on_completed)
        queue.on(QUEUE_EVENT_FAILED, self._on_failed)
        queue.on(QUEUE_EVENT_STALLED, self._on_stalled)

    @property
    def is_running(self) -> bool:
        return self._running and any(not task.done() for task in self._tasks)

    async def start(self) -> None:
        """Start the worker tasks in the background."""
        if self.is_running:
            logger.warning("Flow worker already running")
            return

        self._running = True
        self._tasks = [
            asyncio.create_task(self._run(index), name=f"flow-worker-{index}")
            for index in range(self.concurrency)
        ]
        logger.info("Flow worker started", queue=self.queue.name, concurrency=self.concurrency)

    async def stop(self) -> None:
        """Stop the worker tasks. Jobs in flight are cancelled and redelivered later."""
        if not self._tasks:
            return

        logger.info("Stopping flow worker")
        self._running = False
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Flow worker stopped")

    async def _run(self, index: int) -> None:
        """Main loop of one worker task."""
        while self._running:
            try:
                job = await self.queue.next_job(timeout=self.poll_timeout)
                if job is None:
                    continue
                await self.process_job(job)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("Flow worker iteration failed", worker=index, error=str(e))
                await asyncio.sleep(self.poll_timeout)

    async def process_job(self, job: Job) -> None:
        """Run one job to completion and settle it with the queue."""
        execution_id = job.execution_id
        if not execution_id:
            logger.warning("Job without execution id dropped", job_id=job.id)
            await self.queue.ack(job)
            return

        try:
            execution = await self.executor.advance(execution_id, final_attempt=job.is_final_attempt)
        except Exception as e:
            await self._handle_failure(job, e)
            return

        await self.queue.ack(job, execution.status.value if execution else None)

    async def _handle_failure(self, job: Job, error: Exception) -> None:
        job.attempts_made += 1
        job.last_error = str(error) or type(error).__name__
        policy = job.options.retry_policy()

        if policy.should_retry(error, job.attempts_made):
            delay_ms = policy.calculate_delay(job.attempts_made - 1)
            logger.warning("Flow job failed, retrying",
                          job_id=job.id,
                          execution_id=job.execution_id,
                          attempt=job.attempts_made,
                          delay_ms=delay_ms,
                          error=job.last_error)
            await self.queue.retry(job, delay_ms)
            return

        await self.queue.fail(job, error)

        execution = None
        try:
            execution = await self.store.load_execution(job.execution_id)
        except Exception as e:
            logger.warning("Could not load execution for DLQ entry", job_id=job.id, error=str(e))
        await self.dlq.add_failed_job(job, job.last_error, execution)

    # =========================================================================
    # QUEUE EVENTS
    # =========================================================================

    def _on_completed(self, job: Job, result: Any = None) -> None:
        logger.debug("Flow job completed", job_id=job.id, execution_id=job.execution_id, status=result)

    def _on_failed(self, job: Job, error: Optional[BaseException] = None) -> None:
        logger.error("Flow job abandoned",
                    job_id=job.id,
                    execution_id=job.execution_id,
                    attempts=job.attempts_made,
                    error=str(error) if error else job.last_error)

    def _on_stalled(self, job: Job, payload: Any = None) -> None:
        logger.warning("Flow job stalled, requeued", job_id=job.id, execution_id=job.execution_id)
