"""Grading worker.

Pulls jobs from the queue and runs them through the grading pipeline. A job
that raises is redelivered with a linear backoff until ``JOB_MAX_DELIVERIES``
is reached; that is the queue's retry policy for dispatch and for poll rounds
that could not reach the judge. A dropped job hands its submission to
``GradingPipeline.give_up`` so it settles instead of hanging. Every dequeued
job is acked once handled or re-enqueued; a worker that dies before that
leaves the lease to expire and the job comes back.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from classjudge.core.config import Settings, get_settings
from .grading import GradingPipeline
from .queue import JobQueue, create_job_queue

logger = logging.getLogger("grading_worker")


class GradingWorker:
    def __init__(
        self,
        queue: JobQueue,
        pipeline: GradingPipeline,
        settings: Optional[Settings] = None,
        idle_sleep: float = 0.2,
    ):
        self.queue = queue
        self.pipeline = pipeline
        self.settings = settings or get_settings()
        self.idle_sleep = idle_sleep
        self.running = False

    async def run_once(self) -> bool:
        """Process at most one ready job. Returns False when nothing was ready."""
        job = await self.queue.dequeue()
        if job is None:
            return False
        try:
            outcome = await self.pipeline.handle(job)
            logger.info(
                "job.done kind=%s submission_id=%s outcome=%s", job.kind, job.submission_id, outcome.value
            )
        except Exception:
            logger.exception("job.failed kind=%s submission_id=%s deliveries=%d", job.kind, job.submission_id, job.deliveries)
            await self._redeliver(job)
        # Not reached when redelivery itself fails; the lease then brings the job back
        await self.queue.ack(job)
        return True

    async def _redeliver(self, job) -> None:
        deliveries = job.deliveries + 1
        if deliveries >= self.settings.job_max_deliveries:
            logger.error(
                "job.dropped kind=%s submission_id=%s deliveries=%d", job.kind, job.submission_id, deliveries
            )
            await self.pipeline.give_up(job)
            return
        await self.queue.enqueue(
            job.model_copy(update={"deliveries": deliveries}),
            delay_seconds=self.settings.job_retry_backoff_s * deliveries,
        )

    async def run_forever(self) -> None:
        self.running = True
        logger.info("Grading worker started")
        while self.running:
            try:
                handled = await self.run_once()
            except asyncio.CancelledError:
                logger.info("Grading worker cancelled")
                break
            except Exception:
                # queue backend hiccup (e.g. redis down); keep the loop alive
                logger.exception("Grading worker loop error")
                handled = False
            if not handled:
                await asyncio.sleep(self.idle_sleep)
        logger.info("Grading worker stopped")

    def stop(self) -> None:
        self.running = False


async def main() -> None:
    settings = get_settings()
    queue = create_job_queue(settings)
    worker = GradingWorker(queue, GradingPipeline(queue, settings=settings), settings=settings)
    try:
        await worker.run_forever()
    finally:
        await queue.close()


if __name__ == "__main__":
    logging.basicConfig(
        level=get_settings().log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    asyncio.run(main())
