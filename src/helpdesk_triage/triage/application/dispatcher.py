"""
Triage Dispatch
===============

The boundary between ticket creation and the triage pipeline.

Two dispatchers share one interface: ``InlineTriageDispatcher`` runs the
pipeline in the calling path, ``QueuedTriageDispatcher`` hands it to the work
queue where ``TriageJobRunner`` executes it with timeout and retry.
"""

import asyncio
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, AsyncContextManager, Awaitable, Callable, Dict, Optional

from helpdesk_triage.config import ActorKind, AuditAction
from helpdesk_triage.core import NotFoundError, ValidationException
from helpdesk_triage.shared.infrastructure.logging import get_context_logger, get_logger
from helpdesk_triage.triage.application.orchestrator import TriageOrchestrator
from helpdesk_triage.triage.application.services import AuditLogger, ITriageQueue
from helpdesk_triage.triage.domain import AgentSettings, TriageResult

logger = get_logger(__name__)

# Opens one unit of work and yields an orchestrator bound to it
OrchestratorScope = Callable[[], AsyncContextManager[TriageOrchestrator]]

# Not worth retrying: the same input fails the same way
PERMANENT_ERRORS = (NotFoundError, ValidationException)


@dataclass
class DispatchReceipt:
    """What the caller learns about a dispatched run."""
    ticket_id: str
    trace_id: str
    mode: str
    job_id: Optional[str] = None
    result: Optional[TriageResult] = None


class ITriageDispatcher(ABC):
    """Interface for dispatching triage runs."""

    mode: str = ""

    def __init__(self, audit: AuditLogger):
        self._audit = audit

    @abstractmethod
    async def dispatch(self, ticket_id: str, trace_id: Optional[str] = None) -> DispatchReceipt:
        """Start a triage run for a ticket."""

    async def ticket_created(
        self,
        ticket_id: str,
        actor_id: Optional[str] = None,
        meta: Optional[Dict[str, Any]] = None,
    ) -> DispatchReceipt:
        """Record the creation of a ticket and dispatch its first triage run."""
        trace_id = str(uuid.uuid4())
        await self._audit.record(
            ticket_id, trace_id, ActorKind.USER, AuditAction.TICKET_CREATED, meta or {}, actor_id=actor_id
        )
        return await self.dispatch(ticket_id, trace_id)


class InlineTriageDispatcher(ITriageDispatcher):
    """
    Runs the pipeline synchronously. No retry; errors reach the caller.
    """

    mode = "inline"

    def __init__(self, audit: AuditLogger, orchestrators: OrchestratorScope):
        super().__init__(audit)
        self._orchestrators = orchestrators

    async def dispatch(self, ticket_id: str, trace_id: Optional[str] = None) -> DispatchReceipt:
        trace_id = trace_id or str(uuid.uuid4())
        async with self._orchestrators() as orchestrator:
            result = await orchestrator.triage_ticket(ticket_id, trace_id=trace_id)
        return DispatchReceipt(ticket_id=ticket_id, trace_id=trace_id, mode=self.mode, result=result)


class QueuedTriageDispatcher(ITriageDispatcher):
    """
    Enqueues the run. The initial delay lets the triggering write commit
    before a worker reads the ticket.
    """

    mode = "queued"

    def __init__(self, audit: AuditLogger, queue: ITriageQueue, delay_seconds: float = 1.0):
        super().__init__(audit)
        self._queue = queue
        self._delay_seconds = delay_seconds

    async def dispatch(self, ticket_id: str, trace_id: Optional[str] = None) -> DispatchReceipt:
        trace_id = trace_id or str(uuid.uuid4())
        job_id = await self._queue.enqueue(ticket_id, trace_id, delay_seconds=self._delay_seconds)
        logger.info(
            "Triage job queued",
            extra={"ticket_id": ticket_id, "trace_id": trace_id, "job_id": job_id}
        )
        return DispatchReceipt(ticket_id=ticket_id, trace_id=trace_id, mode=self.mode, job_id=job_id)


class TriageJobRunner:
    """
    Executes queued triage jobs.

    Each attempt is a fresh run in its own unit of work, bounded by
    ``agent_settings.timeout_ms``. Failed attempts are retried up to
    ``max_retries`` more times, waiting ``backoff_ms * 2**(attempt - 1)``
    between them. Missing tickets and invalid state are not retried.
    """

    def __init__(
        self,
        orchestrators: OrchestratorScope,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._orchestrators = orchestrators
        self._sleep = sleep

    async def run(self, ticket_id: str, trace_id: str) -> TriageResult:
        log = get_context_logger(__name__, trace_id=trace_id, ticket_id=ticket_id)
        agent_settings = AgentSettings()
        attempt = 0

        while True:
            attempt += 1
            try:
                async with self._orchestrators() as orchestrator:
                    config = await orchestrator.current_config()
                    agent_settings = config.agent_settings
                    return await orchestrator.run(
                        ticket_id,
                        config,
                        trace_id=trace_id,
                        timeout=agent_settings.timeout_seconds,
                    )
            except PERMANENT_ERRORS as e:
                log.error(
                    "Triage job failed permanently",
                    extra={"attempt": attempt, "error": str(e), "error_type": type(e).__name__}
                )
                raise
            except Exception as e:
                if attempt > agent_settings.max_retries:
                    log.error(
                        "Triage job failed after all retries",
                        extra={"attempts": attempt, "error": str(e), "error_type": type(e).__name__}
                    )
                    raise
                delay = agent_settings.backoff_seconds(attempt)
                log.warning(
                    "Triage job attempt failed, retrying",
                    extra={"attempt": attempt, "retry_in_seconds": delay, "error": str(e)}
                )
                await self._sleep(delay)


def build_dispatcher(
    audit: AuditLogger,
    orchestrators: OrchestratorScope,
    queue: Optional[ITriageQueue] = None,
    delay_seconds: float = 1.0,
) -> ITriageDispatcher:
    """Queued when a queue backend is available, inline otherwise."""
    if queue is not None:
        return QueuedTriageDispatcher(audit, queue, delay_seconds=delay_seconds)
    return InlineTriageDispatcher(audit, orchestrators)
