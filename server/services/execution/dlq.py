"""Dead Letter Queue (DLQ) handler for abandoned flow jobs.

Optional, enabled with DLQ_ENABLED. When enabled, jobs that exhausted all
attempts are stored for later inspection through the API.

Usage:
    dlq = create_dlq_handler(step_cache, enabled=settings.dlq_enabled)
    await dlq.add_failed_job(job, error, execution)
"""

from typing import List, Optional, Protocol

from core.logging import get_logger
from .cache import StepResultCache
from .models import DLQEntry, Execution, Job

logger = get_logger(__name__)


class DLQHandlerProtocol(Protocol):
    """Protocol for DLQ handlers (enables duck typing)."""

    async def add_failed_job(self, job: Job, error: str,
                             execution: Optional[Execution] = None) -> bool:
        """Add an abandoned job to the DLQ."""
        ...

    async def list_entries(self, limit: int = 100) -> List[DLQEntry]:
        ...

    @property
    def enabled(self) -> bool:
        """Whether DLQ is enabled."""
        ...


class NullDLQHandler:
    """No-op DLQ handler when DLQ is disabled.

    Null Object pattern: all operations succeed silently.
    """

    @property
    def enabled(self) -> bool:
        return False

    async def add_failed_job(self, job: Job, error: str,
                             execution: Optional[Execution] = None) -> bool:
        logger.debug("DLQ disabled, skipping abandoned job storage",
                    job_id=job.id, error=error)
        return True

    async def list_entries(self, limit: int = 100) -> List[DLQEntry]:
        return []


class DLQHandler:
    """Active DLQ handler storing abandoned jobs through the cache service."""

    def __init__(self, cache: StepResultCache):
        self.cache = cache

    @property
    def enabled(self) -> bool:
        return True

    async def add_failed_job(self, job: Job, error: str,
                             execution: Optional[Execution] = None) -> bool:
        """Add an abandoned job to the Dead Letter Queue.

        Returns:
            True if successfully added, False otherwise
        """
        entry = DLQEntry.create(job, error, execution)
        if await self.cache.add_to_dlq(entry):
            logger.info("Job added to DLQ",
                       entry_id=entry.id,
                       job_id=job.id,
                       execution_id=entry.execution_id,
                       node_id=entry.node_id,
                       attempts=entry.attempts)
            return True

        logger.error("Failed to add job to DLQ", job_id=job.id, error=error)
        return False

    async def list_entries(self, limit: int = 100) -> List[DLQEntry]:
        return await self.cache.get_dlq_entries(limit)


def create_dlq_handler(cache: StepResultCache, enabled: bool = False) -> DLQHandlerProtocol:
    """DLQHandler if enabled, NullDLQHandler otherwise."""
    if enabled:
        logger.info("DLQ enabled")
        return DLQHandler(cache)

    logger.debug("DLQ disabled")
    return NullDLQHandler()
