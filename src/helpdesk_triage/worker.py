"""
Standalone Triage Worker
========================

Consumes the triage queue outside the API process.

Start with:
    arq helpdesk_triage.worker.WorkerSettings
"""

from arq.worker import func

from helpdesk_triage.bootstrap import build_runtime
from helpdesk_triage.config import settings
from helpdesk_triage.infrastructure.database import close_database, init_database
from helpdesk_triage.infrastructure.redis import get_redis_settings
from helpdesk_triage.shared.infrastructure.logging import get_logger, setup_logging
from helpdesk_triage.triage.infrastructure.queue import DEFAULT_JOB_TIMEOUT_SECONDS, JOB_NAME

logger = get_logger(__name__)


async def startup(ctx: dict) -> None:
    """Called once when the worker process starts."""
    setup_logging(settings.log_level, settings.environment)
    init_database()
    # The worker's own pool backs the run lock; arq closes it on shutdown
    ctx["runtime"] = await build_runtime(settings, redis=ctx["redis"], with_queue=False)
    logger.info("Triage worker started", extra={"queue": settings.triage_queue_name})


async def shutdown(ctx: dict) -> None:
    await close_database()
    logger.info("Triage worker shut down cleanly")


async def triage_ticket_job(ctx: dict, ticket_id: str, trace_id: str) -> dict:
    """arq job: one triage run with the runner's timeout and retry policy."""
    result = await ctx["runtime"].job_runner.run(ticket_id, trace_id)
    return {
        "ticket_id": ticket_id,
        "trace_id": trace_id,
        "decision": result.decision.action.value,
    }


class WorkerSettings:
    functions = [func(triage_ticket_job, name=JOB_NAME)]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = get_redis_settings() if settings.queue_enabled else None
    queue_name = settings.triage_queue_name
    max_jobs = settings.triage_worker_concurrency
    job_timeout = DEFAULT_JOB_TIMEOUT_SECONDS
    max_tries = 1
