"""
Triage Domain Entities
======================

Domain entities for the ticket triage module.

Pure Python business objects: tickets and their replies, knowledge articles,
triage suggestions, audit events and the per-run results passed between
pipeline steps. No infrastructure concerns live here.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from helpdesk_triage.config import (
    ActorKind,
    ArticleStatus,
    AuditAction,
    DecisionAction,
    SuggestionState,
    TicketCategory,
    TicketStatus,
    UserRole,
)
from helpdesk_triage.core import ValidationException


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# Forward-only status graph; reopen is handled separately.
_ALLOWED_TRANSITIONS: Dict[TicketStatus, frozenset] = {
    TicketStatus.OPEN: frozenset({
        TicketStatus.TRIAGED, TicketStatus.WAITING_HUMAN,
        TicketStatus.RESOLVED, TicketStatus.CLOSED,
    }),
    TicketStatus.TRIAGED: frozenset({
        TicketStatus.WAITING_HUMAN, TicketStatus.RESOLVED, TicketStatus.CLOSED,
    }),
    TicketStatus.WAITING_HUMAN: frozenset({TicketStatus.RESOLVED, TicketStatus.CLOSED}),
    TicketStatus.RESOLVED: frozenset({TicketStatus.CLOSED}),
    TicketStatus.CLOSED: frozenset(),
}


@dataclass
class Reply:
    """A reply appended to a ticket."""
    author_id: str
    content: str
    is_internal: bool = False
    created_at: datetime = field(default_factory=utcnow)
    id: Optional[str] = None  # None until persisted


@dataclass
class Ticket:
    """
    Ticket entity.

    Owned by the ticket-management collaborator; the triage pipeline only
    mutates status, assignee, category, suggestion reference and replies.
    """
    id: str
    title: str
    description: str
    created_by: str
    category: TicketCategory = TicketCategory.OTHER
    status: TicketStatus = TicketStatus.OPEN
    assignee_id: Optional[str] = None
    suggestion_id: Optional[str] = None
    replies: List[Reply] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None

    @property
    def full_text(self) -> str:
        """Combined title and description used for classification."""
        return f"{self.title}\n\n{self.description}"

    @property
    def search_query(self) -> str:
        """Title and description joined for knowledge base search."""
        return f"{self.title} {self.description}"

    @property
    def is_resolved(self) -> bool:
        return self.status in (TicketStatus.RESOLVED, TicketStatus.CLOSED)

    def add_reply(self, author_id: str, content: str, is_internal: bool = False) -> Reply:
        """Append a reply; replies are never edited in place."""
        reply = Reply(author_id=author_id, content=content, is_internal=is_internal)
        self.replies.append(reply)
        self.updated_at = reply.created_at
        return reply

    def can_transition_to(self, status: TicketStatus) -> bool:
        return status == self.status or status in _ALLOWED_TRANSITIONS[self.status]

    def transition_to(self, status: TicketStatus, timestamp: Optional[datetime] = None) -> None:
        """
        Move the ticket forward in its lifecycle.

        Raises:
            ValidationException: For backward moves (use ``reopen``)
        """
        if status == self.status:
            return
        if not self.can_transition_to(status):
            raise ValidationException(
                f"Ticket {self.id} cannot move from {self.status.value} to {status.value}",
                {"ticket_id": self.id, "from": self.status.value, "to": status.value}
            )

        now = timestamp or utcnow()
        self.status = status
        self.updated_at = now
        if status == TicketStatus.RESOLVED:
            self.resolved_at = now
        elif status == TicketStatus.CLOSED:
            self.closed_at = now

    def mark_resolved(self, timestamp: Optional[datetime] = None) -> None:
        """Mark ticket as resolved."""
        self.transition_to(TicketStatus.RESOLVED, timestamp)

    def mark_closed(self, timestamp: Optional[datetime] = None) -> None:
        """Mark ticket as closed."""
        self.transition_to(TicketStatus.CLOSED, timestamp)

    def reopen(self, timestamp: Optional[datetime] = None) -> None:
        """
        Explicitly reopen a resolved or closed ticket for human follow-up.

        Raises:
            ValidationException: If the ticket is not resolved or closed
        """
        if not self.is_resolved:
            raise ValidationException(
                f"Ticket {self.id} is not closed or resolved",
                {"ticket_id": self.id, "status": self.status.value}
            )
        self.status = TicketStatus.WAITING_HUMAN
        self.resolved_at = None
        self.closed_at = None
        self.updated_at = timestamp or utcnow()

    def sla_deadline(self, sla_hours: int) -> datetime:
        return self.created_at + timedelta(hours=sla_hours)

    def is_sla_breached(self, sla_hours: int, now: Optional[datetime] = None) -> bool:
        """True while unresolved past the SLA deadline."""
        if self.is_resolved:
            return False
        return (now or utcnow()) > self.sla_deadline(sla_hours)


@dataclass
class KnowledgeArticle:
    """Knowledge base article."""
    id: str
    title: str
    body: str
    tags: List[str] = field(default_factory=list)
    status: ArticleStatus = ArticleStatus.PUBLISHED
    author_id: Optional[str] = None
    views: int = 0
    helpful: int = 0
    not_helpful: int = 0
    created_at: datetime = field(default_factory=utcnow)
    updated_at: Optional[datetime] = None

    @property
    def is_published(self) -> bool:
        return self.status == ArticleStatus.PUBLISHED


@dataclass
class AgentUser:
    """A user as seen by the triage pipeline (assignment candidates, actors)."""
    id: str
    name: str
    email: str
    role: UserRole
    is_active: bool = True


@dataclass
class ModelInfo:
    """Provenance of a suggestion."""
    provider: str
    model: str
    prompt_version: str
    latency_ms: int = 0

    def to_dict(self) -> dict:
        return {
            "provider": self.provider,
            "model": self.model,
            "prompt_version": self.prompt_version,
            "latency_ms": self.latency_ms,
        }


@dataclass
class TriageSuggestion:
    """
    The persisted outcome of one triage run.

    Confidence is clamped to [0, 1] on construction.
    """
    id: str
    ticket_id: str
    trace_id: str
    predicted_category: TicketCategory
    article_ids: List[str]
    draft_reply: str
    confidence: float
    model_info: ModelInfo
    auto_closed: bool = False
    accepted: Optional[bool] = None
    decided_by: Optional[str] = None
    decided_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    superseded: bool = False
    created_at: datetime = field(default_factory=utcnow)

    def __post_init__(self):
        self.confidence = min(1.0, max(0.0, float(self.confidence)))

    @property
    def state(self) -> SuggestionState:
        if self.accepted is None:
            return SuggestionState.UNDECIDED
        return SuggestionState.ACCEPTED if self.accepted else SuggestionState.REJECTED

    def _ensure_undecided(self) -> None:
        if self.state != SuggestionState.UNDECIDED:
            raise ValidationException(
                f"Suggestion {self.id} was already {self.state.value}",
                {"suggestion_id": self.id, "state": self.state.value}
            )
        # A later run replaced it; only the newest draft may reach the customer
        if self.superseded:
            raise ValidationException(
                f"Suggestion {self.id} was superseded by a later triage run",
                {"suggestion_id": self.id, "superseded": True}
            )

    def accept(self, actor_id: str, timestamp: Optional[datetime] = None) -> None:
        self._ensure_undecided()
        self.accepted = True
        self.decided_by = actor_id
        self.decided_at = timestamp or utcnow()

    def reject(self, actor_id: str, reason: str = "", timestamp: Optional[datetime] = None) -> None:
        self._ensure_undecided()
        self.accepted = False
        self.decided_by = actor_id
        self.decided_at = timestamp or utcnow()
        self.rejection_reason = reason

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "ticket_id": self.ticket_id,
            "trace_id": self.trace_id,
            "predicted_category": self.predicted_category.value,
            "article_ids": list(self.article_ids),
            "draft_reply": self.draft_reply,
            "confidence": self.confidence,
            "auto_closed": self.auto_closed,
            "state": self.state.value,
            "accepted": self.accepted,
            "decided_by": self.decided_by,
            "decided_at": self.decided_at.isoformat() if self.decided_at else None,
            "rejection_reason": self.rejection_reason,
            "superseded": self.superseded,
            "model_info": self.model_info.to_dict(),
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class AuditEvent:
    """
    Append-only audit trail entry.

    ``sequence`` is assigned by the store and breaks timestamp ties.
    """
    ticket_id: str
    trace_id: str
    actor: ActorKind
    action: AuditAction
    meta: Dict[str, Any] = field(default_factory=dict)
    actor_id: Optional[str] = None
    timestamp: datetime = field(default_factory=utcnow)
    sequence: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "ticket_id": self.ticket_id,
            "trace_id": self.trace_id,
            "actor": self.actor.value,
            "actor_id": self.actor_id,
            "action": self.action.value,
            "meta": self.meta,
            "timestamp": self.timestamp.isoformat(),
        }


# ========== Per-run results ==========

@dataclass
class ClassificationResult:
    """Predicted category with confidence and the raw per-category scores."""
    category: TicketCategory
    confidence: float
    scores: Dict[TicketCategory, float] = field(default_factory=dict)

    def __post_init__(self):
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError("Confidence must be between 0 and 1")


@dataclass
class RankedArticle:
    """An article with its composite relevance score."""
    article: KnowledgeArticle
    score: float


@dataclass
class DraftResult:
    """Composed reply and the ids of the articles it references."""
    draft_reply: str
    citations: List[str] = field(default_factory=list)


@dataclass
class TriageDecision:
    action: DecisionAction
    suggestion: TriageSuggestion
    threshold: float
    assignee: Optional[AgentUser] = None


@dataclass
class TriageResult:
    """Everything one successful triage run produced."""
    trace_id: str
    ticket_id: str
    classification: ClassificationResult
    articles: List[RankedArticle]
    draft: DraftResult
    decision: TriageDecision


class RunState(str, Enum):
    """Pipeline states of one triage run."""
    STARTED = "started"
    CLASSIFIED = "classified"
    RETRIEVED = "retrieved"
    DRAFTED = "drafted"
    DECIDED = "decided"
    TERMINAL = "terminal"


_RUN_ORDER = list(RunState)


@dataclass
class TriageRun:
    """
    Tracks one run through the pipeline.

    Transitions are strictly sequential; a failed run is abandoned and a
    retry starts a new ``TriageRun`` from ``STARTED``.
    """
    ticket_id: str
    trace_id: str
    state: RunState = RunState.STARTED
    stage: str = "load"  # step currently executing, reported on failure
    started_at: datetime = field(default_factory=utcnow)

    def advance(self, state: RunState) -> None:
        expected = _RUN_ORDER[_RUN_ORDER.index(self.state) + 1] if self.state != RunState.TERMINAL else None
        if state != expected:
            raise ValidationException(
                f"Triage run cannot move from {self.state.value} to {state.value}",
                {"trace_id": self.trace_id}
            )
        self.state = state
