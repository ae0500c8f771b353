"""Job queue for the grading pipeline.

Jobs are small pydantic payloads that carry everything a worker needs to
rebuild its state (submission id, remaining poll attempts), so a job can be
picked up by any worker process and redelivered after a crash.

Two adapters:
  * ``MemoryJobQueue``: in-process heap, used by the embedded worker and tests
  * ``RedisJobQueue``: sorted sets for ready and leased jobs, shared across processes
"""

from __future__ import annotations

import heapq
import itertools
import logging
import time
from functools import lru_cache
from typing import Annotated, Callable, Dict, List, Literal, Optional, Union
from uuid import uuid4

import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool
from pydantic import BaseModel, Field, TypeAdapter

from classjudge.core.config import Settings, get_settings

logger = logging.getLogger(__name__)


class _JobBase(BaseModel):
    job_id: str = Field(default_factory=lambda: uuid4().hex)
    submission_id: int
    # queue-level redelivery counter, distinct from the poll budget
    deliveries: int = 0


class DispatchJob(_JobBase):
    kind: Literal["dispatch"] = "dispatch"


class PollJob(_JobBase):
    kind: Literal["poll"] = "poll"
    remaining_attempts: int


Job = Annotated[Union[DispatchJob, PollJob], Field(discriminator="kind")]
_job_adapter: TypeAdapter = TypeAdapter(Job)


def dump_job(job: Union[DispatchJob, PollJob]) -> str:
    return job.model_dump_json()


def load_job(raw: Union[str, bytes]) -> Union[DispatchJob, PollJob]:
    return _job_adapter.validate_json(raw)


class JobQueue:
    """Delayed job queue interface with leased, at-least-once delivery.

    ``dequeue`` hands out a job under a lease; the consumer calls ``ack`` once
    it is done with it. A job whose lease runs out without an ack is put back
    on the queue, so a worker that dies mid-job does not lose it.
    """

    async def enqueue(self, job: Union[DispatchJob, PollJob], delay_seconds: float = 0.0) -> None:
        raise NotImplementedError

    async def dequeue(self) -> Optional[Union[DispatchJob, PollJob]]:
        """Lease the next job whose delay has elapsed, or return None."""
        raise NotImplementedError

    async def ack(self, job: Union[DispatchJob, PollJob]) -> None:
        """Release the lease of a job returned by ``dequeue``."""
        raise NotImplementedError

    async def close(self) -> None:
        return None


class MemoryJobQueue(JobQueue):
    def __init__(self, clock: Callable[[], float] = time.monotonic, lease_seconds: float = 60.0):
        self._clock = clock
        self._lease_seconds = lease_seconds
        self._heap: list = []
        self._seq = itertools.count()
        # job_id -> (lease deadline, job)
        self._leased: Dict[str, tuple[float, Union[DispatchJob, PollJob]]] = {}

    def _push(self, ready_at: float, job) -> None:
        heapq.heappush(self._heap, (ready_at, next(self._seq), job))

    async def enqueue(self, job, delay_seconds: float = 0.0) -> None:
        self._push(self._clock() + max(0.0, delay_seconds), job)
        logger.debug("job.enqueued kind=%s submission_id=%s delay=%.2f", job.kind, job.submission_id, delay_seconds)

    def _reclaim_expired(self, now: float) -> None:
        for job_id, (deadline, job) in list(self._leased.items()):
            if deadline <= now:
                del self._leased[job_id]
                self._push(now, job)
                logger.warning("job.lease_expired kind=%s submission_id=%s", job.kind, job.submission_id)

    async def dequeue(self):
        now = self._clock()
        self._reclaim_expired(now)
        if not self._heap or self._heap[0][0] > now:
            return None
        job = heapq.heappop(self._heap)[2]
        self._leased[job.job_id] = (now + self._lease_seconds, job)
        return job

    async def ack(self, job) -> None:
        self._leased.pop(job.job_id, None)

    def snapshot(self) -> List[tuple[float, Union[DispatchJob, PollJob]]]:
        """(ready_at, job) pairs in delivery order, leased jobs excluded."""
        return [(ready_at, job) for ready_at, _, job in sorted(self._heap)]

    def leased(self) -> List[Union[DispatchJob, PollJob]]:
        return [job for _, job in self._leased.values()]

    def __len__(self) -> int:
        return len(self._heap)


class RedisJobQueue(JobQueue):
    """Two sorted sets: ``<key>`` scored by ready time, ``<key>:processing``
    scored by lease deadline. Moving a member between them happens inside
    MULTI/EXEC so it is always in at least one of the two sets.
    """

    def __init__(
        self,
        client: redis.Redis,
        key: str,
        clock: Callable[[], float] = time.time,
        lease_seconds: float = 60.0,
    ):
        self._client = client
        self._key = key
        self._processing_key = f"{key}:processing"
        self._clock = clock
        self._lease_seconds = lease_seconds
        # job_id -> raw member currently leased by this process
        self._leased: Dict[str, str] = {}

    @classmethod
    def from_url(cls, url: str, key: str, lease_seconds: float = 60.0) -> "RedisJobQueue":
        pool = ConnectionPool.from_url(url, max_connections=20, decode_responses=True)
        return cls(redis.Redis(connection_pool=pool), key, lease_seconds=lease_seconds)

    async def enqueue(self, job, delay_seconds: float = 0.0) -> None:
        ready_at = self._clock() + max(0.0, delay_seconds)
        await self._client.zadd(self._key, {dump_job(job): ready_at})
        logger.debug("job.enqueued kind=%s submission_id=%s delay=%.2f", job.kind, job.submission_id, delay_seconds)

    async def _move(self, raw: str, source: str, target: str, score: float) -> bool:
        async with self._client.pipeline(transaction=True) as pipe:
            pipe.zrem(source, raw)
            pipe.zadd(target, {raw: score})
            removed, _ = await pipe.execute()
        return bool(removed)

    async def _reclaim_expired(self, now: float) -> None:
        expired = await self._client.zrangebyscore(self._processing_key, "-inf", now)
        for raw in expired:
            if await self._move(raw, self._processing_key, self._key, now):
                logger.warning("job.lease_expired key=%s", self._key)

    async def dequeue(self):
        now = self._clock()
        await self._reclaim_expired(now)
        members = await self._client.zrangebyscore(self._key, "-inf", now, start=0, num=1)
        if not members:
            return None
        raw = members[0]
        # Only the worker whose ZREM removed the member owns the lease
        if not await self._move(raw, self._key, self._processing_key, now + self._lease_seconds):
            return None
        job = load_job(raw)
        self._leased[job.job_id] = raw
        return job

    async def ack(self, job) -> None:
        raw = self._leased.pop(job.job_id, None) or dump_job(job)
        await self._client.zrem(self._processing_key, raw)

    async def close(self) -> None:
        await self._client.aclose()


def create_job_queue(settings: Optional[Settings] = None) -> JobQueue:
    settings = settings or get_settings()
    if settings.use_redis_queue:
        logger.info("job_queue backend=redis key=%s", settings.job_queue_key)
        return RedisJobQueue.from_url(settings.redis_url, settings.job_queue_key, lease_seconds=settings.job_lease_s)
    logger.info("job_queue backend=memory")
    return MemoryJobQueue(lease_seconds=settings.job_lease_s)


@lru_cache()
def get_job_queue() -> JobQueue:
    """Process-wide queue shared by the API and the embedded worker."""
    return create_job_queue()


__all__ = [
    "DispatchJob",
    "PollJob",
    "Job",
    "JobQueue",
    "MemoryJobQueue",
    "RedisJobQueue",
    "create_job_queue",
    "get_job_queue",
    "dump_job",
    "load_job",
]
