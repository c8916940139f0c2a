"""
Domain entity and policy tests
"""
from datetime import timedelta

import pytest
from pydantic import ValidationError

from helpdesk_triage.config import ActorKind, AuditAction, SuggestionState, TicketCategory, TicketStatus
from helpdesk_triage.core import ValidationException
from helpdesk_triage.triage.domain import (
    AgentSettings,
    AuditEvent,
    DecisionPolicy,
    ModelInfo,
    RunState,
    TriageConfig,
    TriageRun,
    TriageSuggestion,
    utcnow,
)
from helpdesk_triage.triage.infrastructure.queue import DEFAULT_JOB_TIMEOUT_SECONDS

from tests.fakes import make_ticket


def make_suggestion(**kwargs) -> TriageSuggestion:
    values = dict(
        id="sugg-1",
        ticket_id="ticket-1",
        trace_id="trace-1",
        predicted_category=TicketCategory.BILLING,
        article_ids=["kb-1"],
        draft_reply="Hello",
        confidence=0.8,
        model_info=ModelInfo(provider="rule-based", model="keyword-weighted-v1", prompt_version="v1.0"),
    )
    values.update(kwargs)
    return TriageSuggestion(**values)


class TestDecisionPolicy:
    """Auto-close threshold and assignment"""

    def test_auto_close_at_threshold(self):
        assert DecisionPolicy.should_auto_close(0.78, 0.78) is True

    def test_no_auto_close_just_below_threshold(self):
        assert DecisionPolicy.should_auto_close(0.78 - 1e-9, 0.78) is False

    def test_no_auto_close_when_disabled(self):
        assert DecisionPolicy.should_auto_close(0.99, 0.5, enabled=False) is False

    def test_least_loaded_first_wins_on_ties(self):
        assert DecisionPolicy.pick_least_loaded([("a", 2), ("b", 1), ("c", 1)]) == "b"

    def test_least_loaded_without_candidates(self):
        assert DecisionPolicy.pick_least_loaded([]) is None


class TestTriageConfig:
    """Configuration document"""

    def test_defaults(self):
        config = TriageConfig()

        assert config.auto_close_enabled is True
        assert config.confidence_threshold == 0.78
        assert config.sla_hours == 24
        assert config.agent_settings.max_retries == 3
        assert config.agent_settings.timeout_ms == 30000

    def test_category_threshold_overrides_global(self):
        config = TriageConfig(category_thresholds={TicketCategory.SHIPPING: 0.4})

        assert config.threshold_for(TicketCategory.SHIPPING) == 0.4
        assert config.threshold_for(TicketCategory.BILLING) == 0.78

    def test_rejects_out_of_range_category_threshold(self):
        with pytest.raises(ValidationError):
            TriageConfig(category_thresholds={TicketCategory.TECH: 1.5})

    def test_rejects_out_of_range_agent_settings(self):
        with pytest.raises(ValidationError):
            AgentSettings(max_retries=6)
        with pytest.raises(ValidationError):
            AgentSettings(timeout_ms=1000)

    def test_backoff_doubles(self):
        settings = AgentSettings(backoff_ms=2000)

        assert [settings.backoff_seconds(n) for n in (1, 2, 3)] == [2.0, 4.0, 8.0]

    def test_rejects_unbounded_backoff(self):
        with pytest.raises(ValidationError):
            AgentSettings(backoff_ms=60000)

    def test_budget_counts_every_attempt_and_wait(self):
        settings = AgentSettings(max_retries=2, timeout_ms=10000, backoff_ms=1000)

        # three 10s attempts, then waits of 1s and 2s
        assert settings.budget_seconds == 33.0

    def test_queue_job_timeout_covers_largest_budget(self):
        assert AgentSettings.upper_bound().budget_seconds < DEFAULT_JOB_TIMEOUT_SECONDS

    def test_json_round_trip_keeps_category_keys(self):
        config = TriageConfig(category_thresholds={TicketCategory.TECH: 0.6})

        restored = TriageConfig.model_validate(config.model_dump(mode="json"))

        assert restored == config


class TestTicketLifecycle:
    """Status transitions"""

    def test_forward_transition(self):
        ticket = make_ticket()

        ticket.transition_to(TicketStatus.WAITING_HUMAN)

        assert ticket.status == TicketStatus.WAITING_HUMAN
        assert ticket.updated_at is not None

    def test_backward_transition_is_rejected(self):
        ticket = make_ticket(status=TicketStatus.WAITING_HUMAN)

        with pytest.raises(ValidationException):
            ticket.transition_to(TicketStatus.OPEN)

    def test_resolve_stamps_resolved_at(self):
        ticket = make_ticket()

        ticket.mark_resolved()

        assert ticket.status == TicketStatus.RESOLVED
        assert ticket.resolved_at is not None
        assert ticket.is_resolved

    def test_reopen_resolved_ticket(self):
        ticket = make_ticket()
        ticket.mark_resolved()

        ticket.reopen()

        assert ticket.status == TicketStatus.WAITING_HUMAN
        assert ticket.resolved_at is None

    def test_reopen_requires_resolved_ticket(self):
        with pytest.raises(ValidationException):
            make_ticket().reopen()

    def test_sla_breach(self):
        ticket = make_ticket(created_at=utcnow() - timedelta(hours=25))

        assert ticket.is_sla_breached(24) is True
        ticket.mark_resolved()
        assert ticket.is_sla_breached(24) is False

    def test_reply_is_appended(self):
        ticket = make_ticket()

        reply = ticket.add_reply("agent-a", "On it")

        assert ticket.replies == [reply]
        assert reply.is_internal is False


class TestTriageSuggestion:
    """Suggestion review state"""

    def test_confidence_is_clamped(self):
        assert make_suggestion(confidence=1.4).confidence == 1.0
        assert make_suggestion(confidence=-0.2).confidence == 0.0

    def test_reject_records_actor_and_reason(self):
        suggestion = make_suggestion()

        suggestion.reject("agent-a", "wrong category")

        assert suggestion.state == SuggestionState.REJECTED
        assert suggestion.accepted is False
        assert suggestion.decided_by == "agent-a"
        assert suggestion.rejection_reason == "wrong category"

    def test_cannot_decide_twice(self):
        suggestion = make_suggestion()
        suggestion.accept("agent-a")

        with pytest.raises(ValidationException):
            suggestion.reject("agent-b")

    def test_superseded_suggestion_is_closed_to_review(self):
        suggestion = make_suggestion(superseded=True)

        with pytest.raises(ValidationException):
            suggestion.accept("agent-a")
        with pytest.raises(ValidationException):
            suggestion.reject("agent-a", "stale")
        assert suggestion.state == SuggestionState.UNDECIDED


class TestTriageRun:
    """Run state machine"""

    def test_advances_strictly_forward(self):
        run = TriageRun(ticket_id="ticket-1", trace_id="trace-1")

        for state in (RunState.CLASSIFIED, RunState.RETRIEVED, RunState.DRAFTED, RunState.DECIDED, RunState.TERMINAL):
            run.advance(state)

        assert run.state == RunState.TERMINAL

    def test_cannot_skip_states(self):
        run = TriageRun(ticket_id="ticket-1", trace_id="trace-1")

        with pytest.raises(ValidationException):
            run.advance(RunState.DRAFTED)

    def test_terminal_is_final(self):
        run = TriageRun(ticket_id="ticket-1", trace_id="trace-1", state=RunState.TERMINAL)

        with pytest.raises(ValidationException):
            run.advance(RunState.STARTED)


class TestAuditEvent:
    def test_export_keys(self):
        event = AuditEvent(
            ticket_id="ticket-1",
            trace_id="trace-1",
            actor=ActorKind.SYSTEM,
            action=AuditAction.TRIAGE_STARTED,
        )

        assert list(event.to_dict()) == ["ticket_id", "trace_id", "actor", "actor_id", "action", "meta", "timestamp"]
