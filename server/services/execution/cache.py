"""Step result cache for side-effect idempotency.

A side-effecting node (send_message, tag and field updates, http_request)
records its result under the step key ``{execution_id}:{step}:{node_id}``
as soon as the handler returns. A redelivered job that re-enters the same
step reads the recorded result instead of repeating the side effect.

Key schema:
    flowstep:{execution_id}:{step}:{node_id} -> JSON (handler result)
    flowdlq:{queue}                          -> LIST (DLQ entries)
"""

from typing import Any, Dict, List, Optional

from core.cache import CacheService
from core.logging import get_logger
from .models import DLQEntry

logger = get_logger(__name__)


class StepResultCache:
    """Cache-service backed store of step results and dead letters."""

    def __init__(self, cache: CacheService, ttl: int = 604800, dlq_name: str = "flow-execution"):
        self.cache = cache
        self.ttl = ttl
        self.dlq_key = f"flowdlq:{dlq_name}"

    @staticmethod
    def _step_key(step_key: str) -> str:
        return f"flowstep:{step_key}"

    async def get(self, step_key: str) -> Optional[Dict[str, Any]]:
        """Recorded result of a step, or None if the step never completed."""
        return await self.cache.get(self._step_key(step_key))

    async def record(self, step_key: str, result: Dict[str, Any]) -> bool:
        stored = await self.cache.set(self._step_key(step_key), result, ttl=self.ttl)
        if not stored:
            logger.warning("Step result not recorded; a redelivery may repeat it", step_key=step_key)
        return stored

    # =========================================================================
    # DEAD LETTERS
    # =========================================================================

    async def add_to_dlq(self, entry: DLQEntry) -> bool:
        return await self.cache.list_push(self.dlq_key, entry.to_dict())

    async def get_dlq_entries(self, limit: int = 100) -> List[DLQEntry]:
        raw = await self.cache.list_range(self.dlq_key, 0, limit - 1)
        return [DLQEntry.from_dict(item) for item in raw]
