"""
Triage Application Services
============================

Application services for knowledge retrieval, auditing, decisions and
suggestion review.

Orchestrates business logic between domain objects and repositories.
"""

import json
from abc import ABC, abstractmethod
from collections import Counter
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from helpdesk_triage.config import (
    ActorKind,
    ArticleStatus,
    AuditAction,
    DecisionAction,
    TicketCategory,
    TicketStatus,
    WORKLOAD_STATUSES,
)
from helpdesk_triage.core import (
    ApplicationException,
    NotFoundError,
    PersistenceError,
    RetrievalError,
    TriageInProgressError,
)
from helpdesk_triage.shared.infrastructure.logging import get_context_logger, get_logger
from helpdesk_triage.triage.domain import (
    AgentUser,
    AuditEvent,
    ClassificationResult,
    DecisionPolicy,
    DraftResult,
    KnowledgeArticle,
    ModelInfo,
    RankedArticle,
    Ticket,
    TriageConfig,
    TriageDecision,
    TriageSuggestion,
    extract_keywords,
    rank_articles,
    utcnow,
)

logger = get_logger(__name__)


# ========== Repository Interfaces (Dependency Inversion) ==========

class ITicketRepository(ABC):
    """Interface for ticket data access."""

    @abstractmethod
    async def get(self, ticket_id: str) -> Optional[Ticket]:
        """Get ticket by ID, None if missing."""

    @abstractmethod
    async def save(self, ticket: Ticket) -> Ticket:
        """Persist status, assignee, category, suggestion reference and new replies."""


class IArticleRepository(ABC):
    """Interface for knowledge base article access."""

    @abstractmethod
    async def text_search(
        self,
        query: str,
        status: ArticleStatus,
        category: Optional[TicketCategory],
        limit: int,
    ) -> List[Tuple[KnowledgeArticle, float]]:
        """Relevance-ranked full-text search; returns (article, score) pairs."""

    @abstractmethod
    async def keyword_search(
        self,
        terms: Sequence[str],
        status: ArticleStatus,
        category: Optional[TicketCategory],
        limit: int,
        exclude_ids: Sequence[str] = (),
    ) -> List[KnowledgeArticle]:
        """Articles matching any term in title, body or tags."""

    @abstractmethod
    async def get_by_ids(self, ids: Sequence[str]) -> List[KnowledgeArticle]:
        """Published articles by ID."""


class IUserRepository(ABC):
    """Interface for user lookups used by assignment."""

    @abstractmethod
    async def find_active_agents(self) -> List[AgentUser]:
        """Active agents and admins, in store order."""

    @abstractmethod
    async def count_assigned(self, user_id: str, statuses: Sequence[TicketStatus]) -> int:
        """Number of tickets assigned to a user in the given statuses."""

    @abstractmethod
    async def ensure_system_user(self, email: str, name: str) -> AgentUser:
        """Get or create the automated actor."""


class IConfigRepository(ABC):
    """Interface for the live triage configuration."""

    @abstractmethod
    async def get_or_create_default(self) -> TriageConfig:
        """Current config, creating the default document on first use."""

    @abstractmethod
    async def update(self, config: TriageConfig) -> TriageConfig:
        """Replace the live config."""


class ISuggestionRepository(ABC):
    """Interface for triage suggestion storage."""

    @abstractmethod
    async def create(self, suggestion: TriageSuggestion) -> TriageSuggestion:
        """Store a new suggestion."""

    @abstractmethod
    async def get(self, suggestion_id: str) -> Optional[TriageSuggestion]:
        """Get suggestion by ID."""

    @abstractmethod
    async def get_latest_for_ticket(self, ticket_id: str) -> Optional[TriageSuggestion]:
        """Most recent suggestion for a ticket."""

    @abstractmethod
    async def update(self, suggestion: TriageSuggestion) -> TriageSuggestion:
        """Persist acceptance state changes."""

    @abstractmethod
    async def supersede_open(self, ticket_id: str, keep_id: str) -> int:
        """Mark every other undecided suggestion of the ticket superseded."""

    @abstractmethod
    async def list_since(self, since: Optional[datetime]) -> List[TriageSuggestion]:
        """Suggestions created at or after ``since`` (all when None)."""


class IAuditRepository(ABC):
    """
    Interface for the append-only audit store.

    Appends are committed independently of any surrounding unit of work.
    """

    @abstractmethod
    async def append(self, event: AuditEvent) -> AuditEvent:
        """Append an event; returns it with its sequence assigned."""

    @abstractmethod
    async def query_by_ticket(self, ticket_id: str) -> List[AuditEvent]:
        """Events for a ticket ordered by (timestamp, sequence)."""

    @abstractmethod
    async def query_by_trace(self, trace_id: str) -> List[AuditEvent]:
        """Events for a trace ordered by (timestamp, sequence)."""

    @abstractmethod
    async def query(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        action: Optional[AuditAction] = None,
        actor: Optional[ActorKind] = None,
    ) -> List[AuditEvent]:
        """Events in a time range, optionally filtered, in timestamp order."""


JobHandler = Callable[[str, str], Awaitable[Any]]

# Commits the unit of work the session-bound repositories write through
UnitOfWorkCommit = Callable[[], Awaitable[Any]]


async def _nothing_to_commit() -> None:
    return None


class ITriageQueue(ABC):
    """Interface for the triage work queue."""

    @abstractmethod
    async def enqueue(self, ticket_id: str, trace_id: str, delay_seconds: float = 0.0) -> str:
        """Queue one triage job; returns the job id."""

    @abstractmethod
    async def consume(self, handler: JobHandler, concurrency: int) -> None:
        """Start processing jobs with at most ``concurrency`` in flight."""

    @abstractmethod
    async def close(self) -> None:
        """Stop consumers and release connections."""


class ITriageRunLock(ABC):
    """At most one triage run per ticket at a time."""

    @abstractmethod
    async def try_acquire(self, ticket_id: str) -> Optional[str]:
        """Returns a release token, or None if a run already holds the ticket."""

    @abstractmethod
    async def release(self, ticket_id: str, token: str) -> None:
        """Release a lock previously acquired with ``token``."""

    @asynccontextmanager
    async def hold(self, ticket_id: str) -> AsyncIterator[str]:
        """
        Hold the ticket for the duration of the block.

        Raises:
            TriageInProgressError: If another run holds the ticket
        """
        token = await self.try_acquire(ticket_id)
        if token is None:
            raise TriageInProgressError(ticket_id)
        try:
            yield token
        finally:
            await self.release(ticket_id, token)


# ========== Application Services ==========

class KnowledgeRetriever:
    """
    Two-phase knowledge base search with composite re-ranking.

    Full-text matches come first; when they are fewer than ``limit`` the
    shortfall is filled by a keyword search over the extracted query terms.
    """

    def __init__(self, articles: IArticleRepository, default_limit: int = 3):
        self._articles = articles
        self._default_limit = default_limit

    async def search(
        self,
        query: str,
        limit: Optional[int] = None,
        category: Optional[TicketCategory] = None,
        status: ArticleStatus = ArticleStatus.PUBLISHED,
    ) -> List[RankedArticle]:
        """
        Search articles relevant to a query.

        Raises:
            RetrievalError: If the article store fails
        """
        limit = limit or self._default_limit
        try:
            candidates = await self._articles.text_search(query, status, category, limit)

            if len(candidates) < limit:
                terms = extract_keywords(query)
                if terms:
                    extra = await self._articles.keyword_search(
                        terms,
                        status,
                        category,
                        limit - len(candidates),
                        exclude_ids=[article.id for article, _ in candidates],
                    )
                    seen = {article.id for article, _ in candidates}
                    candidates = list(candidates) + [(a, 0.0) for a in extra if a.id not in seen]
        except ApplicationException:
            raise
        except Exception as e:
            logger.error(
                "Article search failed",
                extra={"error": str(e), "category": category.value if category else None}
            )
            raise RetrievalError(f"Knowledge base search unavailable: {e}")

        ranked = rank_articles(candidates, query, limit)
        logger.debug(
            "Articles ranked",
            extra={"found": len(ranked), "category": category.value if category else None}
        )
        return ranked


class AuditLogger:
    """
    Append-only audit trail of what the triage pipeline and agents did.
    """

    def __init__(self, repository: IAuditRepository):
        self._repository = repository

    async def record(
        self,
        ticket_id: str,
        trace_id: str,
        actor: ActorKind,
        action: AuditAction,
        meta: Optional[Dict[str, Any]] = None,
        actor_id: Optional[str] = None,
    ) -> AuditEvent:
        event = await self._repository.append(AuditEvent(
            ticket_id=ticket_id,
            trace_id=trace_id,
            actor=actor,
            action=action,
            meta=meta or {},
            actor_id=actor_id,
        ))
        logger.info(
            f"Audit logged: {action.value}",
            extra={"ticket_id": ticket_id, "trace_id": trace_id, "actor": actor.value}
        )
        return event

    async def by_ticket(self, ticket_id: str) -> List[AuditEvent]:
        return await self._repository.query_by_ticket(ticket_id)

    async def by_trace(self, trace_id: str) -> List[AuditEvent]:
        return await self._repository.query_by_trace(trace_id)

    async def export(self, start: Optional[datetime] = None, end: Optional[datetime] = None) -> List[str]:
        """NDJSON lines, one per event, in timestamp order."""
        events = await self._repository.query(start=start, end=end)
        return [json.dumps(event.to_dict(), default=str) for event in events]

    async def trace_summary(self, trace_id: str) -> Dict[str, Any]:
        """
        Reconstruct one run.

        Raises:
            NotFoundError: If no events carry the trace id
        """
        events = await self.by_trace(trace_id)
        if not events:
            raise NotFoundError("trace", trace_id)

        start, end = events[0].timestamp, events[-1].timestamp
        return {
            "trace_id": trace_id,
            "ticket_id": events[0].ticket_id,
            "events": [event.to_dict() for event in events],
            "summary": {
                "start_time": start.isoformat(),
                "end_time": end.isoformat(),
                "duration_ms": int((end - start).total_seconds() * 1000),
                "step_count": len(events),
            },
        }

    async def stats(self, start: Optional[datetime] = None, end: Optional[datetime] = None) -> Dict[str, Any]:
        """Event totals by action, by actor and per day."""
        events = await self._repository.query(start=start, end=end)
        daily = Counter(event.timestamp.strftime("%Y-%m-%d") for event in events)
        return {
            "period": {
                "start": start.isoformat() if start else None,
                "end": end.isoformat() if end else None,
            },
            "total": len(events),
            "by_action": dict(Counter(event.action.value for event in events).most_common()),
            "by_actor": dict(Counter(event.actor.value for event in events).most_common()),
            "daily_activity": [{"date": day, "count": daily[day]} for day in sorted(daily)],
        }


class DecisionEngine:
    """
    Applies the auto-close policy to a drafted ticket.

    Builds and persists the suggestion, mutates the ticket (reply, status,
    assignee) and records the decision events. This is the only step of a
    run that writes tickets or suggestions.

    The outcome is committed here, while the caller still holds the ticket's
    run lock. Decision events are recorded only once the commit succeeded.
    """

    def __init__(
        self,
        tickets: ITicketRepository,
        users: IUserRepository,
        suggestions: ISuggestionRepository,
        audit: AuditLogger,
        system_user: AgentUser,
        commit: Optional[UnitOfWorkCommit] = None,
    ):
        self._tickets = tickets
        self._users = users
        self._suggestions = suggestions
        self._audit = audit
        self._system_user = system_user
        self._commit = commit or _nothing_to_commit

    async def decide(
        self,
        ticket: Ticket,
        classification: ClassificationResult,
        articles: Sequence[RankedArticle],
        draft: DraftResult,
        config: TriageConfig,
        trace_id: str,
        model_info: ModelInfo,
        suggestion_id: str,
    ) -> TriageDecision:
        log = get_context_logger(__name__, trace_id=trace_id, ticket_id=ticket.id)
        threshold = config.threshold_for(classification.category)
        auto_close = DecisionPolicy.should_auto_close(
            classification.confidence, threshold, config.auto_close_enabled
        )

        suggestion = TriageSuggestion(
            id=suggestion_id,
            ticket_id=ticket.id,
            trace_id=trace_id,
            predicted_category=classification.category,
            article_ids=[r.article.id for r in articles],
            draft_reply=draft.draft_reply,
            confidence=classification.confidence,
            model_info=model_info,
            auto_closed=auto_close,
        )

        ticket.add_reply(self._system_user.id, draft.draft_reply, is_internal=False)
        ticket.suggestion_id = suggestion.id

        assignee: Optional[AgentUser] = None
        if auto_close:
            # A closed ticket stays closed
            if ticket.status != TicketStatus.CLOSED:
                ticket.mark_resolved()
        else:
            if ticket.is_resolved:
                ticket.reopen()
            else:
                ticket.transition_to(TicketStatus.WAITING_HUMAN)
            assignee = await self._least_loaded_agent()
            if assignee:
                ticket.assignee_id = assignee.id

        try:
            await self._suggestions.create(suggestion)
            superseded = await self._suggestions.supersede_open(ticket.id, keep_id=suggestion.id)
            await self._tickets.save(ticket)
            await self._commit()
        except ApplicationException:
            raise
        except Exception as e:
            raise PersistenceError(
                f"Failed to persist triage outcome: {e}",
                {"ticket_id": ticket.id, "suggestion_id": suggestion.id}
            )

        if superseded:
            log.info("Older suggestions superseded", extra={"count": superseded})

        if auto_close:
            await self._audit.record(ticket.id, trace_id, ActorKind.SYSTEM, AuditAction.AUTO_CLOSED, {
                "confidence": classification.confidence,
                "threshold": threshold,
                "suggestion_id": suggestion.id,
            })
            action = DecisionAction.AUTO_CLOSED
        else:
            meta: Dict[str, Any] = {
                "reason": "low_confidence" if config.auto_close_enabled else "auto_close_disabled",
                "confidence": classification.confidence,
                "threshold": threshold,
                "suggestion_id": suggestion.id,
                "assignee_id": assignee.id if assignee else None,
                "assignee_name": assignee.name if assignee else None,
            }
            if assignee is None:
                meta["unassigned_reason"] = "no_agent_available"
                log.warning("No agent available for assignment")
            await self._audit.record(
                ticket.id, trace_id, ActorKind.SYSTEM, AuditAction.ASSIGNED_TO_HUMAN, meta
            )
            action = DecisionAction.ASSIGNED_TO_HUMAN

        await self._audit.record(
            ticket.id, trace_id, ActorKind.SYSTEM, AuditAction.REPLY_SENT, {
                "reply_preview": draft.draft_reply[:100],
                "is_auto_reply": True,
                "confidence": classification.confidence,
            },
            actor_id=self._system_user.id,
        )

        log.info(
            "Decision made",
            extra={"action": action.value, "confidence": classification.confidence, "threshold": threshold}
        )
        return TriageDecision(action=action, suggestion=suggestion, threshold=threshold, assignee=assignee)

    async def _least_loaded_agent(self) -> Optional[AgentUser]:
        agents = [a for a in await self._users.find_active_agents() if a.id != self._system_user.id]
        workloads = [
            (agent.id, await self._users.count_assigned(agent.id, WORKLOAD_STATUSES))
            for agent in agents
        ]
        chosen = DecisionPolicy.pick_least_loaded(workloads)
        return next((a for a in agents if a.id == chosen), None)


class SuggestionService:
    """
    Human review of triage suggestions.
    """

    def __init__(
        self,
        suggestions: ISuggestionRepository,
        tickets: ITicketRepository,
        audit: AuditLogger,
        commit: Optional[UnitOfWorkCommit] = None,
    ):
        self._suggestions = suggestions
        self._tickets = tickets
        self._audit = audit
        self._commit = commit or _nothing_to_commit

    async def get_suggestion(self, ticket_id: str) -> Optional[TriageSuggestion]:
        """Latest suggestion for a ticket."""
        return await self._suggestions.get_latest_for_ticket(ticket_id)

    async def _require(self, suggestion_id: str) -> TriageSuggestion:
        suggestion = await self._suggestions.get(suggestion_id)
        if suggestion is None:
            raise NotFoundError("suggestion", suggestion_id)
        return suggestion

    async def accept_suggestion(self, suggestion_id: str, actor_id: str) -> TriageSuggestion:
        """
        Accept a suggestion and post its draft as a visible reply by the actor.

        Raises:
            NotFoundError: If the suggestion does not exist
            ValidationException: If it was already decided or was superseded
        """
        suggestion = await self._require(suggestion_id)
        suggestion.accept(actor_id)
        await self._suggestions.update(suggestion)

        ticket = await self._tickets.get(suggestion.ticket_id)
        if ticket is not None:
            ticket.add_reply(actor_id, suggestion.draft_reply, is_internal=False)
            await self._tickets.save(ticket)
        else:
            logger.warning(
                "Accepted suggestion references a missing ticket",
                extra={"suggestion_id": suggestion_id, "ticket_id": suggestion.ticket_id}
            )
        await self._commit()

        await self._audit.record(
            suggestion.ticket_id,
            suggestion.trace_id,
            ActorKind.AGENT,
            AuditAction.SUGGESTION_ACCEPTED,
            {"suggestion_id": suggestion_id, "agent_id": actor_id},
            actor_id=actor_id,
        )
        return suggestion

    async def reject_suggestion(self, suggestion_id: str, actor_id: str, reason: str = "") -> TriageSuggestion:
        """
        Reject a suggestion. The ticket is left untouched.

        Raises:
            NotFoundError: If the suggestion does not exist
            ValidationException: If it was already decided or was superseded
        """
        suggestion = await self._require(suggestion_id)
        suggestion.reject(actor_id, reason)
        await self._suggestions.update(suggestion)
        await self._commit()

        await self._audit.record(
            suggestion.ticket_id,
            suggestion.trace_id,
            ActorKind.AGENT,
            AuditAction.SUGGESTION_REJECTED,
            {"suggestion_id": suggestion_id, "agent_id": actor_id, "reason": reason},
            actor_id=actor_id,
        )
        return suggestion

    async def suggestion_stats(self, since: Optional[datetime] = None) -> Dict[str, Any]:
        """Acceptance and auto-close rates over suggestions created since ``since``."""
        suggestions = await self._suggestions.list_since(since)
        total = len(suggestions)
        accepted = sum(1 for s in suggestions if s.accepted is True)
        rejected = sum(1 for s in suggestions if s.accepted is False)
        auto_closed = sum(1 for s in suggestions if s.auto_closed)
        decided = accepted + rejected

        return {
            "since": since.isoformat() if since else None,
            "total": total,
            "accepted": accepted,
            "rejected": rejected,
            "acceptance_rate": round(accepted / decided, 4) if decided else 0.0,
            "auto_closed": auto_closed,
            "auto_close_rate": round(auto_closed / total, 4) if total else 0.0,
            "average_confidence": round(sum(s.confidence for s in suggestions) / total, 4) if total else 0.0,
            "generated_at": utcnow().isoformat(),
        }
