"""
Runtime Wiring
==============

Builds the triage runtime shared by the API process and the standalone
worker: system actor, run lock, queue, dispatcher and job runner.
"""

from dataclasses import dataclass
from typing import Optional

from arq.connections import ArqRedis

from helpdesk_triage.config import Settings
from helpdesk_triage.infrastructure.database import get_session_context
from helpdesk_triage.shared.infrastructure.logging import get_logger
from helpdesk_triage.triage.application import (
    ITriageDispatcher,
    ITriageQueue,
    ITriageRunLock,
    TriageJobRunner,
    build_dispatcher,
)
from helpdesk_triage.triage.domain import AgentUser
from helpdesk_triage.triage.infrastructure import (
    ArqTriageQueue,
    InProcessRunLock,
    RedisRunLock,
    SQLAlchemyUserRepository,
    TriageServiceFactory,
)

logger = get_logger(__name__)


@dataclass
class TriageRuntime:
    """Long-lived triage components of one process."""
    system_user: AgentUser
    run_lock: ITriageRunLock
    factory: TriageServiceFactory
    dispatcher: ITriageDispatcher
    job_runner: TriageJobRunner
    queue: Optional[ITriageQueue] = None

    async def close(self) -> None:
        if self.queue is not None:
            await self.queue.close()


async def provision_system_user(settings: Settings) -> AgentUser:
    """Get or create the actor that authors automated replies."""
    async with get_session_context() as session:
        user = await SQLAlchemyUserRepository(session).ensure_system_user(
            settings.system_user_email, settings.system_user_name
        )
    logger.info("System actor ready", extra={"user_id": user.id, "email": user.email})
    return user


async def build_runtime(
    settings: Settings,
    redis: Optional[ArqRedis] = None,
    with_queue: bool = True,
) -> TriageRuntime:
    """
    Wire the triage runtime.

    Args:
        settings: Process settings
        redis: Redis pool; enables the Redis run lock and, with
            ``with_queue``, the queued dispatcher
        with_queue: False in the standalone worker, which only consumes
    """
    system_user = await provision_system_user(settings)

    if redis is not None:
        run_lock: ITriageRunLock = RedisRunLock(redis, ttl_seconds=settings.run_lock_ttl_seconds)
    else:
        run_lock = InProcessRunLock()

    factory = TriageServiceFactory(
        run_lock=run_lock,
        system_user=system_user,
        retrieval_limit=settings.triage_retrieval_limit,
    )

    queue = ArqTriageQueue(redis, settings.triage_queue_name) if redis is not None and with_queue else None
    dispatcher = build_dispatcher(
        factory.audit,
        factory.orchestrator,
        queue=queue,
        delay_seconds=settings.triage_enqueue_delay_seconds,
    )

    logger.info(
        "Triage runtime ready",
        extra={"dispatch_mode": dispatcher.mode, "run_lock": type(run_lock).__name__}
    )
    return TriageRuntime(
        system_user=system_user,
        run_lock=run_lock,
        factory=factory,
        dispatcher=dispatcher,
        job_runner=TriageJobRunner(factory.orchestrator),
        queue=queue,
    )
