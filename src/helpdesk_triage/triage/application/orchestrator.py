"""
Triage Orchestrator
===================

Runs classify -> retrieve -> draft -> decide for one ticket under one trace
ID, auditing every step.
"""

import asyncio
import time
import uuid
from typing import Optional

from helpdesk_triage.config import ActorKind, AuditAction
from helpdesk_triage.core import (
    ApplicationException,
    ClassificationError,
    NotFoundError,
    TriageTimeoutError,
)
from helpdesk_triage.shared.infrastructure.logging import get_context_logger, log_latency
from helpdesk_triage.triage.application.services import (
    AuditLogger,
    DecisionEngine,
    IConfigRepository,
    ITicketRepository,
    ITriageRunLock,
    KnowledgeRetriever,
)
from helpdesk_triage.triage.domain import (
    DraftComposer,
    IClassifier,
    RunState,
    TriageConfig,
    TriageResult,
    TriageRun,
)

# Ticket category is overwritten only above this confidence
RECATEGORIZE_CONFIDENCE = 0.7


class TriageOrchestrator:
    """
    Executes the triage pipeline.

    A run holds the per-ticket lock for its whole duration. Nothing is
    persisted before the decision step, so a failed run leaves the ticket as
    it was and records a single ``TRIAGE_FAILED`` event.
    """

    def __init__(
        self,
        tickets: ITicketRepository,
        configs: IConfigRepository,
        classifier: IClassifier,
        retriever: KnowledgeRetriever,
        composer: DraftComposer,
        decision_engine: DecisionEngine,
        audit: AuditLogger,
        run_lock: ITriageRunLock,
        retrieval_limit: int = 3,
    ):
        self._tickets = tickets
        self._configs = configs
        self._classifier = classifier
        self._retriever = retriever
        self._composer = composer
        self._decisions = decision_engine
        self._audit = audit
        self._lock = run_lock
        self._retrieval_limit = retrieval_limit

    async def current_config(self) -> TriageConfig:
        return await self._configs.get_or_create_default()

    async def triage_ticket(self, ticket_id: str, trace_id: Optional[str] = None) -> TriageResult:
        """Run the pipeline against the live configuration."""
        config = await self.current_config()
        return await self.run(ticket_id, config, trace_id=trace_id)

    async def run(
        self,
        ticket_id: str,
        config: TriageConfig,
        trace_id: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> TriageResult:
        """
        Triage one ticket.

        Args:
            ticket_id: Ticket to triage
            config: Triage configuration snapshot for this run
            trace_id: Trace ID, generated when omitted
            timeout: Seconds before the run is abandoned

        Returns:
            TriageResult for the completed run

        Raises:
            TriageInProgressError: If another run holds the ticket
            TriageTimeoutError: If the run exceeded ``timeout``
            ApplicationException: Any pipeline failure, after it was audited
        """
        trace_id = trace_id or str(uuid.uuid4())
        log = get_context_logger(__name__, trace_id=trace_id, ticket_id=ticket_id)

        async with self._lock.hold(ticket_id):
            run = TriageRun(ticket_id=ticket_id, trace_id=trace_id)
            try:
                if timeout:
                    return await asyncio.wait_for(self._execute(run, config), timeout)
                return await self._execute(run, config)
            except asyncio.TimeoutError as e:
                if not timeout:
                    await self._record_failure(run, str(e) or "timed out", run.stage)
                    raise
                log.error("Triage timed out", extra={"stage": run.stage, "timeout_seconds": timeout})
                await self._record_failure(run, f"timed out after {timeout:g}s", run.stage)
                raise TriageTimeoutError(ticket_id, timeout)
            except Exception as e:
                log.error(
                    "Triage failed",
                    extra={"stage": run.stage, "error": str(e), "error_type": type(e).__name__}
                )
                await self._record_failure(run, str(e), run.stage)
                raise

    async def _execute(self, run: TriageRun, config: TriageConfig) -> TriageResult:
        log = get_context_logger(__name__, trace_id=run.trace_id, ticket_id=run.ticket_id)
        started = time.perf_counter()

        ticket = await self._tickets.get(run.ticket_id)
        if ticket is None:
            raise NotFoundError("ticket", run.ticket_id)

        await self._audit.record(ticket.id, run.trace_id, ActorKind.SYSTEM, AuditAction.TRIAGE_STARTED, {
            "ticket_title": ticket.title,
            "category": ticket.category.value,
            "status": ticket.status.value,
        })
        log.info("Triage started", extra={"steps": ["classify", "retrieve", "draft", "decide"]})

        # Classify
        run.stage = "classify"
        with log_latency(log, "classify"):
            try:
                classification = self._classifier.classify(ticket.full_text)
            except ApplicationException:
                raise
            except Exception as e:
                raise ClassificationError(f"Classification failed: {e}", {"ticket_id": ticket.id})

        await self._audit.record(ticket.id, run.trace_id, ActorKind.SYSTEM, AuditAction.AGENT_CLASSIFIED, {
            "original_category": ticket.category.value,
            "predicted_category": classification.category.value,
            "confidence": classification.confidence,
            "scores": {c.value: s for c, s in classification.scores.items()},
        })
        if classification.category != ticket.category and classification.confidence > RECATEGORIZE_CONFIDENCE:
            ticket.category = classification.category
        run.advance(RunState.CLASSIFIED)

        # Retrieve
        run.stage = "retrieve"
        query = ticket.search_query
        with log_latency(log, "retrieve"):
            articles = await self._retriever.search(
                query, limit=self._retrieval_limit, category=classification.category
            )

        await self._audit.record(ticket.id, run.trace_id, ActorKind.SYSTEM, AuditAction.KB_RETRIEVED, {
            "query": query[:100],
            "articles_found": len(articles),
            "article_ids": [r.article.id for r in articles],
            "scores": [r.score for r in articles],
            "category": classification.category.value,
        })
        run.advance(RunState.RETRIEVED)

        # Draft
        run.stage = "draft"
        with log_latency(log, "draft"):
            draft = self._composer.draft(
                ticket.full_text, [r.article for r in articles], category=classification.category
            )

        await self._audit.record(ticket.id, run.trace_id, ActorKind.SYSTEM, AuditAction.DRAFT_GENERATED, {
            "draft_length": len(draft.draft_reply),
            "citations_count": len(draft.citations),
            "citations": draft.citations,
        })
        run.advance(RunState.DRAFTED)

        # Decide
        run.stage = "decide"
        latency_ms = int((time.perf_counter() - started) * 1000)
        decision = await self._decisions.decide(
            ticket,
            classification,
            articles,
            draft,
            config,
            trace_id=run.trace_id,
            model_info=self._classifier.model_info(latency_ms),
            suggestion_id=str(uuid.uuid4()),
        )
        run.advance(RunState.DECIDED)
        run.advance(RunState.TERMINAL)

        log.info(
            "Triage completed",
            extra={"decision": decision.action.value, "latency_ms": latency_ms}
        )
        return TriageResult(
            trace_id=run.trace_id,
            ticket_id=ticket.id,
            classification=classification,
            articles=articles,
            draft=draft,
            decision=decision,
        )

    async def _record_failure(self, run: TriageRun, error: str, stage: str) -> None:
        try:
            await self._audit.record(
                run.ticket_id, run.trace_id, ActorKind.SYSTEM, AuditAction.TRIAGE_FAILED,
                {"error": error, "stage": stage, "state": run.state.value},
            )
        except Exception:
            # The run's own error is what the caller needs to see
            get_context_logger(__name__, trace_id=run.trace_id).exception(
                "Failed to record triage failure", extra={"ticket_id": run.ticket_id}
            )
