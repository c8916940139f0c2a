"""
Suggestion review tests
"""
import pytest

from helpdesk_triage.config import ActorKind, AuditAction, SuggestionState, TicketCategory, TicketStatus
from helpdesk_triage.core import NotFoundError, ValidationException

from tests.fakes import FixedClassifier


async def triage_for_review(services, config):
    services.classifier = FixedClassifier(TicketCategory.BILLING, 0.75)
    async with services.orchestrator() as orchestrator:
        return await orchestrator.run("ticket-1", config)


class TestRejectSuggestion:
    """Rejection leaves the ticket untouched"""

    @pytest.mark.asyncio
    async def test_reject_records_actor_and_reason(self, services, high_threshold_config):
        result = await triage_for_review(services, high_threshold_config)
        suggestion_id = result.decision.suggestion.id
        ticket_before = services.tickets.tickets["ticket-1"]

        async with services.suggestions() as service:
            suggestion = await service.reject_suggestion(suggestion_id, "agent-a", "Customer wants a call")

        assert suggestion.accepted is False
        assert suggestion.decided_by == "agent-a"
        assert suggestion.rejection_reason == "Customer wants a call"
        assert suggestion.decided_at is not None

        stored = services.suggestions_repo.suggestions[suggestion_id]
        assert stored.state == SuggestionState.REJECTED

        ticket = services.tickets.tickets["ticket-1"]
        assert ticket.status == TicketStatus.WAITING_HUMAN
        assert len(ticket.replies) == len(ticket_before.replies)

        event = services.audit_repo.events[-1]
        assert event.action == AuditAction.SUGGESTION_REJECTED
        assert event.actor == ActorKind.AGENT
        assert event.actor_id == "agent-a"
        assert event.trace_id == result.trace_id
        assert event.meta == {
            "suggestion_id": suggestion_id,
            "agent_id": "agent-a",
            "reason": "Customer wants a call",
        }


class TestAcceptSuggestion:
    """Acceptance posts the draft as the agent"""

    @pytest.mark.asyncio
    async def test_accept_appends_reply_by_agent(self, services, high_threshold_config):
        result = await triage_for_review(services, high_threshold_config)
        suggestion_id = result.decision.suggestion.id

        async with services.suggestions() as service:
            suggestion = await service.accept_suggestion(suggestion_id, "agent-b")

        assert suggestion.state == SuggestionState.ACCEPTED
        ticket = services.tickets.tickets["ticket-1"]
        assert len(ticket.replies) == 2
        assert ticket.replies[-1].author_id == "agent-b"
        assert ticket.replies[-1].content == result.draft.draft_reply
        assert ticket.replies[-1].is_internal is False

        event = services.audit_repo.events[-1]
        assert event.action == AuditAction.SUGGESTION_ACCEPTED
        assert event.meta == {"suggestion_id": suggestion_id, "agent_id": "agent-b"}

    @pytest.mark.asyncio
    async def test_cannot_decide_twice(self, services, high_threshold_config):
        result = await triage_for_review(services, high_threshold_config)
        suggestion_id = result.decision.suggestion.id

        async with services.suggestions() as service:
            await service.accept_suggestion(suggestion_id, "agent-a")
            with pytest.raises(ValidationException):
                await service.reject_suggestion(suggestion_id, "agent-b", "late")

    @pytest.mark.asyncio
    async def test_unknown_suggestion(self, services):
        async with services.suggestions() as service:
            with pytest.raises(NotFoundError):
                await service.accept_suggestion("missing", "agent-a")


class TestSuggestionLifecycle:
    """Latest suggestion, supersession and statistics"""

    @pytest.mark.asyncio
    async def test_retriage_supersedes_open_suggestion(self, services, high_threshold_config):
        first = await triage_for_review(services, high_threshold_config)
        second = await triage_for_review(services, high_threshold_config)

        stored = services.suggestions_repo.suggestions
        assert stored[first.decision.suggestion.id].superseded is True
        assert stored[second.decision.suggestion.id].superseded is False

    @pytest.mark.asyncio
    async def test_superseded_suggestion_cannot_be_decided(self, services, high_threshold_config):
        first = await triage_for_review(services, high_threshold_config)
        await triage_for_review(services, high_threshold_config)
        replies_before = len(services.tickets.tickets["ticket-1"].replies)

        async with services.suggestions() as service:
            with pytest.raises(ValidationException):
                await service.accept_suggestion(first.decision.suggestion.id, "agent-a")
            with pytest.raises(ValidationException):
                await service.reject_suggestion(first.decision.suggestion.id, "agent-a", "stale")

        stored = services.suggestions_repo.suggestions[first.decision.suggestion.id]
        assert stored.accepted is None
        assert len(services.tickets.tickets["ticket-1"].replies) == replies_before
        assert AuditAction.SUGGESTION_ACCEPTED not in services.audit_repo.actions()

    @pytest.mark.asyncio
    async def test_review_is_committed_before_it_is_audited(self, services, high_threshold_config):
        result = await triage_for_review(services, high_threshold_config)

        async def failing_commit():
            raise RuntimeError("commit failed")

        services.commit = failing_commit
        async with services.suggestions() as service:
            with pytest.raises(RuntimeError):
                await service.reject_suggestion(result.decision.suggestion.id, "agent-a", "wrong tone")

        assert AuditAction.SUGGESTION_REJECTED not in services.audit_repo.actions()

    @pytest.mark.asyncio
    async def test_get_suggestion_for_ticket(self, services, high_threshold_config):
        result = await triage_for_review(services, high_threshold_config)

        async with services.suggestions() as service:
            latest = await service.get_suggestion("ticket-1")
            missing = await service.get_suggestion("ticket-404")

        assert latest.id == result.decision.suggestion.id
        assert missing is None

    @pytest.mark.asyncio
    async def test_stats(self, services, high_threshold_config, low_threshold_config):
        reviewed = await triage_for_review(services, high_threshold_config)
        await triage_for_review(services, low_threshold_config)

        async with services.suggestions() as service:
            await service.reject_suggestion(reviewed.decision.suggestion.id, "agent-a", "no")
            stats = await service.suggestion_stats()

        assert stats["total"] == 2
        assert stats["accepted"] == 0
        assert stats["rejected"] == 1
        assert stats["acceptance_rate"] == 0.0
        assert stats["auto_closed"] == 1
        assert stats["auto_close_rate"] == 0.5
        assert stats["average_confidence"] == 0.75
        assert stats["since"] is None
