"""
Triage Work Queues
==================

``ArqTriageQueue`` is the durable Redis-backed queue (arq); jobs survive a
restart of the API process and can be consumed by a standalone worker.
``InProcessTriageQueue`` keeps jobs in an asyncio queue for single-process
deployments and tests.
"""

import asyncio
from datetime import timedelta
from typing import List, Optional, Set, Tuple

from arq.connections import ArqRedis
from arq.worker import Worker, func

from helpdesk_triage.shared.infrastructure.logging import get_logger
from helpdesk_triage.triage.application import ITriageQueue
from helpdesk_triage.triage.application.services import JobHandler
from helpdesk_triage.triage.domain import AgentSettings

logger = get_logger(__name__)

JOB_NAME = "triage_ticket_job"
# Covers every attempt and backoff of the job runner at the largest allowed
# agent settings, plus slack for the lock and audit round trips
DEFAULT_JOB_TIMEOUT_SECONDS = int(AgentSettings.upper_bound().budget_seconds) + 60


def job_id_for(trace_id: str) -> str:
    """One job per trace; enqueueing the same trace twice is a no-op."""
    return f"triage:{trace_id}"


class ArqTriageQueue(ITriageQueue):
    """
    Redis-backed triage queue.

    arq retries are disabled (``max_tries=1``); ``TriageJobRunner`` owns the
    retry policy. The queue owns the Redis pool and closes it.
    """

    def __init__(
        self,
        redis: ArqRedis,
        queue_name: str = "triage",
        job_timeout: int = DEFAULT_JOB_TIMEOUT_SECONDS,
    ):
        self._redis = redis
        self._queue_name = queue_name
        self._job_timeout = job_timeout
        self._worker: Optional[Worker] = None
        self._worker_task: Optional[asyncio.Task] = None

    @property
    def redis(self) -> ArqRedis:
        return self._redis

    async def enqueue(self, ticket_id: str, trace_id: str, delay_seconds: float = 0.0) -> str:
        job_id = job_id_for(trace_id)
        job = await self._redis.enqueue_job(
            JOB_NAME,
            ticket_id,
            trace_id,
            _job_id=job_id,
            _queue_name=self._queue_name,
            _defer_by=timedelta(seconds=delay_seconds) if delay_seconds > 0 else None,
        )
        if job is None:
            logger.info("Triage job already queued", extra={"job_id": job_id, "ticket_id": ticket_id})
        return job_id

    async def consume(self, handler: JobHandler, concurrency: int) -> None:
        """Run an arq worker inside this event loop."""

        async def triage_ticket_job(ctx: dict, ticket_id: str, trace_id: str) -> dict:
            await handler(ticket_id, trace_id)
            return {"ticket_id": ticket_id, "trace_id": trace_id}

        self._worker = Worker(
            functions=[func(triage_ticket_job, name=JOB_NAME)],
            redis_pool=self._redis,
            queue_name=self._queue_name,
            max_jobs=concurrency,
            max_tries=1,
            job_timeout=self._job_timeout,
            handle_signals=False,
        )
        self._worker_task = asyncio.create_task(self._worker.async_run())
        logger.info(
            "Embedded triage worker started",
            extra={"queue": self._queue_name, "max_jobs": concurrency}
        )

    async def close(self) -> None:
        if self._worker is not None:
            # Worker.close waits for running jobs and closes the pool
            await self._worker.close()
            self._worker = None
        else:
            await self._redis.close(close_connection_pool=True)
        if self._worker_task is not None:
            self._worker_task.cancel()
            await asyncio.gather(self._worker_task, return_exceptions=True)
            self._worker_task = None


class InProcessTriageQueue(ITriageQueue):
    """
    asyncio queue consumed by N worker tasks.

    Not durable: pending jobs are lost when the process stops.
    """

    def __init__(self):
        self._queue: "asyncio.Queue[Tuple[str, str, str]]" = asyncio.Queue()
        self._workers: List[asyncio.Task] = []
        self._delayed: Set[asyncio.Task] = set()

    async def enqueue(self, ticket_id: str, trace_id: str, delay_seconds: float = 0.0) -> str:
        job_id = job_id_for(trace_id)
        job = (job_id, ticket_id, trace_id)
        if delay_seconds > 0:
            task = asyncio.create_task(self._put_later(job, delay_seconds))
            self._delayed.add(task)
            task.add_done_callback(self._delayed.discard)
        else:
            await self._queue.put(job)
        return job_id

    async def _put_later(self, job: Tuple[str, str, str], delay_seconds: float) -> None:
        await asyncio.sleep(delay_seconds)
        await self._queue.put(job)

    async def consume(self, handler: JobHandler, concurrency: int) -> None:
        for index in range(concurrency):
            self._workers.append(asyncio.create_task(self._work(handler, index)))

    async def _work(self, handler: JobHandler, index: int) -> None:
        while True:
            job_id, ticket_id, trace_id = await self._queue.get()
            try:
                await handler(ticket_id, trace_id)
            except Exception:
                # The runner already logged the failure; keep the worker alive
                logger.exception(
                    "Triage job failed",
                    extra={"job_id": job_id, "ticket_id": ticket_id, "trace_id": trace_id, "worker": index}
                )
            finally:
                self._queue.task_done()

    async def join(self) -> None:
        """Wait until every enqueued job, delayed ones included, was processed."""
        while self._delayed:
            await asyncio.gather(*list(self._delayed), return_exceptions=True)
        await self._queue.join()

    async def close(self) -> None:
        for task in [*self._workers, *self._delayed]:
            task.cancel()
        await asyncio.gather(*self._workers, *self._delayed, return_exceptions=True)
        self._workers.clear()
        self._delayed.clear()
