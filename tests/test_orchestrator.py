"""
Triage pipeline integration tests over in-memory stores
"""
import asyncio

import pytest

from helpdesk_triage.config import AuditAction, DecisionAction, TicketCategory, TicketStatus
from helpdesk_triage.core import (
    ClassificationError,
    NotFoundError,
    PersistenceError,
    RetrievalError,
    TriageInProgressError,
    TriageTimeoutError,
)
from helpdesk_triage.triage.domain import TriageConfig

from tests.fakes import (
    SYSTEM_USER,
    ExplodingClassifier,
    FixedClassifier,
    InMemoryArticleRepository,
)


PIPELINE_AUTO_CLOSED = [
    AuditAction.TRIAGE_STARTED,
    AuditAction.AGENT_CLASSIFIED,
    AuditAction.KB_RETRIEVED,
    AuditAction.DRAFT_GENERATED,
    AuditAction.AUTO_CLOSED,
    AuditAction.REPLY_SENT,
]

PIPELINE_ASSIGNED = [
    AuditAction.TRIAGE_STARTED,
    AuditAction.AGENT_CLASSIFIED,
    AuditAction.KB_RETRIEVED,
    AuditAction.DRAFT_GENERATED,
    AuditAction.ASSIGNED_TO_HUMAN,
    AuditAction.REPLY_SENT,
]


class SlowArticleRepository(InMemoryArticleRepository):
    async def text_search(self, query, status, category, limit):
        await asyncio.sleep(1)
        return await super().text_search(query, status, category, limit)


def events_for(services, action):
    return [e for e in services.audit_repo.events if e.action == action]


class TestAutoClose:
    """Confident tickets are resolved automatically"""

    @pytest.mark.asyncio
    async def test_billing_ticket_end_to_end(self, services):
        async with services.orchestrator() as orchestrator:
            result = await orchestrator.triage_ticket("ticket-1", trace_id="trace-1")

        assert result.trace_id == "trace-1"
        assert result.classification.category == TicketCategory.BILLING
        assert result.classification.confidence == 0.82
        assert result.decision.action == DecisionAction.AUTO_CLOSED
        assert result.draft.citations == ["kb-refund", "kb-invoice"]

        ticket = services.tickets.tickets["ticket-1"]
        assert ticket.status == TicketStatus.RESOLVED
        assert ticket.resolved_at is not None
        assert ticket.category == TicketCategory.BILLING
        assert ticket.suggestion_id == result.decision.suggestion.id
        assert len(ticket.replies) == 1
        assert ticket.replies[0].author_id == SYSTEM_USER.id
        assert ticket.replies[0].is_internal is False

        stored = services.suggestions_repo.suggestions[result.decision.suggestion.id]
        assert stored.auto_closed is True
        assert stored.article_ids == ["kb-refund", "kb-invoice"]
        assert stored.model_info.provider == "rule-based"

    @pytest.mark.asyncio
    async def test_audit_trail_is_complete_and_ordered(self, services):
        async with services.orchestrator() as orchestrator:
            await orchestrator.triage_ticket("ticket-1", trace_id="trace-1")

        events = await services.audit.by_trace("trace-1")

        assert [e.action for e in events] == PIPELINE_AUTO_CLOSED
        assert {e.ticket_id for e in events} == {"ticket-1"}
        assert events[-1].actor_id == SYSTEM_USER.id
        assert events[-1].meta["is_auto_reply"] is True

    @pytest.mark.asyncio
    async def test_scenario_threshold_half(self, services, low_threshold_config):
        services.classifier = FixedClassifier(TicketCategory.BILLING, 0.7)

        async with services.orchestrator() as orchestrator:
            result = await orchestrator.run("ticket-1", low_threshold_config)

        assert result.decision.action == DecisionAction.AUTO_CLOSED
        assert result.decision.threshold == 0.5
        ticket = services.tickets.tickets["ticket-1"]
        assert ticket.status == TicketStatus.RESOLVED
        assert len(ticket.replies) == 1

        auto_closed = events_for(services, AuditAction.AUTO_CLOSED)[0]
        assert auto_closed.meta == {
            "confidence": 0.7,
            "threshold": 0.5,
            "suggestion_id": result.decision.suggestion.id,
        }

    @pytest.mark.asyncio
    async def test_category_threshold_override(self, services, high_threshold_config):
        services.classifier = FixedClassifier(TicketCategory.SHIPPING, 0.5)

        async with services.orchestrator() as orchestrator:
            result = await orchestrator.run("ticket-1", high_threshold_config)

        assert result.decision.action == DecisionAction.AUTO_CLOSED
        assert result.decision.threshold == 0.4
        # Not confident enough to overwrite the stored category
        assert services.tickets.tickets["ticket-1"].category == TicketCategory.OTHER


class TestHumanHandoff:
    """Uncertain tickets go to the least-loaded agent"""

    @pytest.mark.asyncio
    async def test_assigns_least_loaded_agent(self, services, high_threshold_config):
        services.classifier = FixedClassifier(TicketCategory.BILLING, 0.75)
        services.users.workloads = {"agent-a": 3, "agent-b": 1, "admin-c": 1}

        async with services.orchestrator() as orchestrator:
            result = await orchestrator.run("ticket-1", high_threshold_config, trace_id="trace-2")

        assert result.decision.action == DecisionAction.ASSIGNED_TO_HUMAN
        assert result.decision.assignee.id == "agent-b"

        ticket = services.tickets.tickets["ticket-1"]
        assert ticket.status == TicketStatus.WAITING_HUMAN
        assert ticket.assignee_id == "agent-b"
        assert ticket.category == TicketCategory.BILLING
        assert len(ticket.replies) == 1

        assert services.audit_repo.actions("trace-2") == PIPELINE_ASSIGNED
        assigned = events_for(services, AuditAction.ASSIGNED_TO_HUMAN)[0]
        assert assigned.meta["reason"] == "low_confidence"
        assert assigned.meta["assignee_id"] == "agent-b"
        assert assigned.meta["assignee_name"] == "Bob"
        assert assigned.meta["threshold"] == 0.9

    @pytest.mark.asyncio
    async def test_no_agent_available(self, services, high_threshold_config):
        services.classifier = FixedClassifier(TicketCategory.BILLING, 0.75)
        services.users.users = []

        async with services.orchestrator() as orchestrator:
            result = await orchestrator.run("ticket-1", high_threshold_config)

        assert result.decision.assignee is None
        ticket = services.tickets.tickets["ticket-1"]
        assert ticket.status == TicketStatus.WAITING_HUMAN
        assert ticket.assignee_id is None
        assigned = events_for(services, AuditAction.ASSIGNED_TO_HUMAN)[0]
        assert assigned.meta["unassigned_reason"] == "no_agent_available"

    @pytest.mark.asyncio
    async def test_auto_close_disabled(self, services):
        config = TriageConfig(auto_close_enabled=False)

        async with services.orchestrator() as orchestrator:
            result = await orchestrator.run("ticket-1", config)

        assert result.decision.action == DecisionAction.ASSIGNED_TO_HUMAN
        assert events_for(services, AuditAction.ASSIGNED_TO_HUMAN)[0].meta["reason"] == "auto_close_disabled"

    @pytest.mark.asyncio
    async def test_retriage_reopens_resolved_ticket(self, services, high_threshold_config):
        async with services.orchestrator() as orchestrator:
            first = await orchestrator.triage_ticket("ticket-1")
        assert services.tickets.tickets["ticket-1"].status == TicketStatus.RESOLVED

        services.classifier = FixedClassifier(TicketCategory.BILLING, 0.75)
        async with services.orchestrator() as orchestrator:
            second = await orchestrator.run("ticket-1", high_threshold_config)

        ticket = services.tickets.tickets["ticket-1"]
        assert ticket.status == TicketStatus.WAITING_HUMAN
        assert ticket.resolved_at is None
        assert ticket.suggestion_id == second.decision.suggestion.id
        assert len(ticket.replies) == 2
        assert first.trace_id != second.trace_id


class TestFailures:
    """A failed run persists nothing and logs one TRIAGE_FAILED"""

    @pytest.mark.asyncio
    async def test_classifier_failure(self, services):
        services.classifier = ExplodingClassifier()

        async with services.orchestrator() as orchestrator:
            with pytest.raises(ClassificationError):
                await orchestrator.triage_ticket("ticket-1", trace_id="trace-x")

        assert services.audit_repo.actions("trace-x") == [AuditAction.TRIAGE_STARTED, AuditAction.TRIAGE_FAILED]
        failed = events_for(services, AuditAction.TRIAGE_FAILED)[0]
        assert failed.meta["stage"] == "classify"
        assert "model unavailable" in failed.meta["error"]
        assert services.suggestions_repo.suggestions == {}
        assert services.tickets.saves == 0

    @pytest.mark.asyncio
    async def test_missing_ticket(self, services):
        async with services.orchestrator() as orchestrator:
            with pytest.raises(NotFoundError):
                await orchestrator.triage_ticket("no-such-ticket", trace_id="trace-y")

        events = await services.audit.by_trace("trace-y")
        assert [e.action for e in events] == [AuditAction.TRIAGE_FAILED]
        assert events[0].ticket_id == "no-such-ticket"
        assert events[0].meta["stage"] == "load"

    @pytest.mark.asyncio
    async def test_persistence_failure(self, services):
        services.suggestions_repo.fail_on_create = True

        async with services.orchestrator() as orchestrator:
            with pytest.raises(PersistenceError):
                await orchestrator.triage_ticket("ticket-1")

        assert len(events_for(services, AuditAction.TRIAGE_FAILED)) == 1
        assert events_for(services, AuditAction.TRIAGE_FAILED)[0].meta["stage"] == "decide"
        assert events_for(services, AuditAction.AUTO_CLOSED) == []
        assert services.tickets.saves == 0
        assert services.tickets.tickets["ticket-1"].status == TicketStatus.OPEN

    @pytest.mark.asyncio
    async def test_commit_failure_is_audited(self, services):
        lock_held_at_commit = []

        async def failing_commit():
            lock_held_at_commit.append(services.run_lock.is_held("ticket-1"))
            raise RuntimeError("commit failed")

        services.commit = failing_commit

        async with services.orchestrator() as orchestrator:
            with pytest.raises(PersistenceError):
                await orchestrator.triage_ticket("ticket-1", trace_id="trace-c")

        assert lock_held_at_commit == [True]
        assert services.audit_repo.actions("trace-c") == [
            AuditAction.TRIAGE_STARTED,
            AuditAction.AGENT_CLASSIFIED,
            AuditAction.KB_RETRIEVED,
            AuditAction.DRAFT_GENERATED,
            AuditAction.TRIAGE_FAILED,
        ]
        failed = events_for(services, AuditAction.TRIAGE_FAILED)[0]
        assert failed.meta["stage"] == "decide"
        assert "commit failed" in failed.meta["error"]
        assert services.run_lock.is_held("ticket-1") is False

    @pytest.mark.asyncio
    async def test_outcome_committed_before_decision_events(self, services):
        seen_at_commit = []

        async def recording_commit():
            seen_at_commit.append((
                services.run_lock.is_held("ticket-1"),
                services.audit_repo.actions()[-1],
            ))

        services.commit = recording_commit

        async with services.orchestrator() as orchestrator:
            await orchestrator.triage_ticket("ticket-1")

        assert seen_at_commit == [(True, AuditAction.DRAFT_GENERATED)]
        assert services.audit_repo.actions() == PIPELINE_AUTO_CLOSED

    @pytest.mark.asyncio
    async def test_retrieval_failure_is_audited(self, services):
        services.articles.fail = True

        async with services.orchestrator() as orchestrator:
            with pytest.raises(RetrievalError):
                await orchestrator.triage_ticket("ticket-1")

        failed = events_for(services, AuditAction.TRIAGE_FAILED)
        assert len(failed) == 1
        assert failed[0].meta["stage"] == "retrieve"
        assert failed[0].meta["state"] == "classified"


class TestRunControl:
    """Run lock and timeout"""

    @pytest.mark.asyncio
    async def test_concurrent_run_is_rejected(self, services):
        token = await services.run_lock.try_acquire("ticket-1")

        async with services.orchestrator() as orchestrator:
            with pytest.raises(TriageInProgressError):
                await orchestrator.triage_ticket("ticket-1")

        assert services.audit_repo.events == []
        await services.run_lock.release("ticket-1", token)

    @pytest.mark.asyncio
    async def test_lock_released_after_failure(self, services):
        services.classifier = ExplodingClassifier()

        async with services.orchestrator() as orchestrator:
            with pytest.raises(ClassificationError):
                await orchestrator.triage_ticket("ticket-1")

        assert services.run_lock.is_held("ticket-1") is False

    @pytest.mark.asyncio
    async def test_timeout(self, services, kb_articles):
        services.articles = SlowArticleRepository(kb_articles)

        async with services.orchestrator() as orchestrator:
            with pytest.raises(TriageTimeoutError):
                await orchestrator.run("ticket-1", TriageConfig(), trace_id="trace-t", timeout=0.05)

        assert services.audit_repo.actions("trace-t") == [
            AuditAction.TRIAGE_STARTED,
            AuditAction.AGENT_CLASSIFIED,
            AuditAction.TRIAGE_FAILED,
        ]
        assert events_for(services, AuditAction.TRIAGE_FAILED)[0].meta["stage"] == "retrieve"
        assert services.run_lock.is_held("ticket-1") is False
        assert services.suggestions_repo.suggestions == {}
