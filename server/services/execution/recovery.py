"""Recovery sweeper for crash recovery.

The in-memory job queue loses its pending jobs when the process exits.
On startup the sweeper re-schedules every execution still marked running:
waiting executions keep their remaining delay, all others resume at once.
"""

from typing import List

from core.logging import get_logger
from .models import utcnow
from .protocols import FlowStore
from .scheduler import ContinuationScheduler

logger = get_logger(__name__)


class RecoverySweeper:
    """Resumes running executions that have no job left in the queue."""

    def __init__(self, store: FlowStore, scheduler: ContinuationScheduler):
        self.store = store
        self.scheduler = scheduler

    async def scan_on_startup(self) -> List[str]:
        """Re-schedule interrupted executions.

        Returns:
            List of execution IDs that were re-scheduled
        """
        running = await self.store.list_running_executions()
        logger.info("Startup scan for incomplete executions", running_count=len(running))

        recovered = []
        now = utcnow()
        for execution in running:
            delay_ms = 0
            if execution.resume_at and execution.resume_at > now:
                delay_ms = int((execution.resume_at - now).total_seconds() * 1000)

            try:
                await self.scheduler.schedule(execution.id, delay_ms)
            except Exception as e:
                logger.error("Failed to reschedule execution",
                           execution_id=execution.id, error=str(e))
                continue

            logger.info("Recovered interrupted execution",
                       execution_id=execution.id,
                       flow_id=execution.flow_id,
                       delay_ms=delay_ms)
            recovered.append(execution.id)

        return recovered
