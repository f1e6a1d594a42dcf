"""Flow job queues.

Two backends share one contract (see ``protocols.JobQueue``):

- ``MemoryJobQueue``: asyncio queue plus loop timers for delayed jobs.
  Single process; pending jobs are lost on restart, which the recovery
  sweeper compensates for.
- ``RedisJobQueue``: Redis lists and a sorted set. Survives restarts;
  jobs a crashed worker left in the active list are moved back to the
  wait list on startup and reported as ``stalled``.

Both emit ``completed``, ``failed`` and ``stalled`` events to listeners
registered with ``on``.

Redis key schema (prefix ``flowq:{name}``):
    :wait      -> LIST  job ids ready for delivery
    :active    -> LIST  job ids handed to a worker
    :delayed   -> ZSET  job id scored by due time (ms)
    :job:{id}  -> STRING job JSON
"""

import asyncio
import inspect
import json
import time
from collections import defaultdict
from typing import Any, Dict, List, Optional, TYPE_CHECKING

from constants import QUEUE_EVENTS, QUEUE_EVENT_COMPLETED, QUEUE_EVENT_FAILED, QUEUE_EVENT_STALLED
from core.logging import get_logger
from .models import Job, JobOptions
from .protocols import QueueListener

if TYPE_CHECKING:
    from core.cache import CacheService

logger = get_logger(__name__)


class BaseJobQueue:
    """Listener bookkeeping shared by the queue backends."""

    backend = "base"

    def __init__(self, name: str):
        self.name = name
        self._listeners: Dict[str, List[QueueListener]] = defaultdict(list)

    def on(self, event: str, listener: QueueListener) -> None:
        """Register ``listener(job, payload)`` for a queue event."""
        if event not in QUEUE_EVENTS:
            raise ValueError(f"Unknown queue event: {event}")
        self._listeners[event].append(listener)

    async def emit(self, event: str, job: Job, payload: Any = None) -> None:
        for listener in list(self._listeners.get(event, [])):
            try:
                result = listener(job, payload)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error("Queue listener failed", queue=self.name, event=event, error=str(e))

    async def start(self) -> None:
        """Prepare the backend before workers pull jobs."""

    async def close(self) -> None:
        """Release backend resources."""


class MemoryJobQueue(BaseJobQueue):
    """In-process queue with timer-based delayed delivery."""

    backend = "memory"

    def __init__(self, name: str):
        super().__init__(name)
        self._ready: "asyncio.Queue[str]" = asyncio.Queue()
        self._jobs: Dict[str, Job] = {}
        self._timers: Dict[str, asyncio.TimerHandle] = {}

    def _push(self, job: Job, delay_ms: int) -> None:
        self._jobs[job.id] = job
        if delay_ms > 0:
            loop = asyncio.get_running_loop()
            self._timers[job.id] = loop.call_later(delay_ms / 1000, self._release, job.id)
        else:
            self._ready.put_nowait(job.id)

    def _release(self, job_id: str) -> None:
        self._timers.pop(job_id, None)
        if job_id in self._jobs:
            self._ready.put_nowait(job_id)

    async def enqueue(self, data: Dict[str, Any], options: JobOptions) -> Job:
        job = Job.create(self.name, data, options)
        self._push(job, options.delay_ms)
        logger.debug("Job enqueued", queue=self.name, job_id=job.id, delay_ms=options.delay_ms)
        return job

    async def next_job(self, timeout: float = 1.0) -> Optional[Job]:
        try:
            job_id = await asyncio.wait_for(self._ready.get(), timeout)
        except asyncio.TimeoutError:
            return None
        return self._jobs.get(job_id)

    async def ack(self, job: Job, result: Any = None) -> None:
        self._jobs.pop(job.id, None)
        await self.emit(QUEUE_EVENT_COMPLETED, job, result)

    async def retry(self, job: Job, delay_ms: int) -> None:
        self._push(job, delay_ms)

    async def fail(self, job: Job, error: BaseException) -> None:
        self._jobs.pop(job.id, None)
        await self.emit(QUEUE_EVENT_FAILED, job, error)

    def pending_count(self) -> int:
        """Jobs enqueued and not yet acknowledged or failed."""
        return len(self._jobs)

    def delayed_count(self) -> int:
        return len(self._timers)

    async def close(self) -> None:
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()
        self._jobs.clear()


class RedisJobQueue(BaseJobQueue):
    """Durable queue on Redis lists and a delayed sorted set."""

    backend = "redis"

    # Jobs abandoned after exhausting attempts are kept this long for inspection
    FAILED_JOB_TTL = 7 * 24 * 3600

    def __init__(self, name: str, cache: "CacheService"):
        super().__init__(name)
        self.cache = cache
        self.prefix = f"flowq:{name}"

    @property
    def redis(self):
        return self.cache.redis

    def _key(self, suffix: str) -> str:
        return f"{self.prefix}:{suffix}"

    def _job_key(self, job_id: str) -> str:
        return self._key(f"job:{job_id}")

    async def start(self) -> None:
        """Move jobs left active by a crashed worker back to the wait list."""
        stalled = 0
        while True:
            job_id = await self.redis.rpoplpush(self._key("active"), self._key("wait"))
            if job_id is None:
                break
            stalled += 1
            job = await self._load(job_id)
            if job:
                await self.emit(QUEUE_EVENT_STALLED, job)

        if stalled:
            logger.warning("Requeued stalled jobs", queue=self.name, count=stalled)

    async def _load(self, job_id: str) -> Optional[Job]:
        raw = await self.redis.get(self._job_key(job_id))
        return Job.from_dict(json.loads(raw)) if raw else None

    async def _store(self, job: Job, ttl: Optional[int] = None) -> None:
        serialized = json.dumps(job.to_dict(), default=str)
        if ttl:
            await self.redis.set(self._job_key(job.id), serialized, ex=ttl)
        else:
            await self.redis.set(self._job_key(job.id), serialized)

    async def _schedule(self, job: Job, delay_ms: int) -> None:
        if delay_ms > 0:
            due = int(time.time() * 1000) + delay_ms
            await self.redis.zadd(self._key("delayed"), {job.id: due})
        else:
            await self.redis.lpush(self._key("wait"), job.id)

    async def _promote_due(self) -> int:
        """Move delayed jobs whose due time has passed onto the wait list."""
        now = int(time.time() * 1000)
        due_ids = await self.redis.zrangebyscore(self._key("delayed"), 0, now)
        promoted = 0
        for job_id in due_ids:
            # Only the worker that removes the entry promotes it
            if await self.redis.zrem(self._key("delayed"), job_id):
                await self.redis.lpush(self._key("wait"), job_id)
                promoted += 1
        return promoted

    async def enqueue(self, data: Dict[str, Any], options: JobOptions) -> Job:
        job = Job.create(self.name, data, options)
        await self._store(job)
        await self._schedule(job, options.delay_ms)
        logger.debug("Job enqueued", queue=self.name, job_id=job.id, delay_ms=options.delay_ms)
        return job

    async def next_job(self, timeout: float = 1.0) -> Optional[Job]:
        await self._promote_due()
        job_id = await self.redis.brpoplpush(
            self._key("wait"), self._key("active"), timeout=max(1, int(timeout))
        )
        if job_id is None:
            return None

        job = await self._load(job_id)
        if job is None:
            logger.warning("Dropping job without payload", queue=self.name, job_id=job_id)
            await self.redis.lrem(self._key("active"), 0, job_id)
        return job

    async def ack(self, job: Job, result: Any = None) -> None:
        await self.redis.lrem(self._key("active"), 0, job.id)
        await self.redis.delete(self._job_key(job.id))
        await self.emit(QUEUE_EVENT_COMPLETED, job, result)

    async def retry(self, job: Job, delay_ms: int) -> None:
        await self._store(job)
        await self.redis.lrem(self._key("active"), 0, job.id)
        await self._schedule(job, delay_ms)

    async def fail(self, job: Job, error: BaseException) -> None:
        await self._store(job, ttl=self.FAILED_JOB_TTL)
        await self.redis.lrem(self._key("active"), 0, job.id)
        await self.emit(QUEUE_EVENT_FAILED, job, error)

    async def counts(self) -> Dict[str, int]:
        return {
            "wait": await self.redis.llen(self._key("wait")),
            "active": await self.redis.llen(self._key("active")),
            "delayed": await self.redis.zcard(self._key("delayed")),
        }


def create_job_queue(name: str, cache: "CacheService") -> BaseJobQueue:
    """Redis-backed queue when the cache runs on Redis, memory queue otherwise."""
    if cache.is_redis_available():
        logger.info("Flow queue using Redis", queue=name)
        return RedisJobQueue(name, cache)

    logger.info("Flow queue using memory", queue=name)
    return MemoryJobQueue(name)
