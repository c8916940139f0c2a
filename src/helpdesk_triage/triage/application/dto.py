"""
Triage Application DTOs
========================

Data Transfer Objects for the triage and audit API layer.

Pydantic models for request/response validation.
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from helpdesk_triage.triage.domain import AuditEvent, TriageResult, TriageSuggestion


# ========== Type Aliases for Literals ==========
CategoryStr = Literal["billing", "tech", "shipping", "other"]
DecisionStr = Literal["auto_closed", "assigned_to_human"]
SuggestionStateStr = Literal["undecided", "accepted", "rejected"]


# ========== Request DTOs ==========

class TriageRequest(BaseModel):
    """Optional body for a manual triage run."""
    trace_id: Optional[str] = Field(None, description="Reuse a trace ID instead of generating one")


class TicketCreatedRequest(BaseModel):
    """Notification from ticket management that a ticket was created."""
    actor_id: Optional[str] = Field(None, description="User who created the ticket")
    meta: Dict[str, Any] = Field(default_factory=dict, description="Extra audit metadata")


class AcceptSuggestionRequest(BaseModel):
    """Request model for accepting a suggestion."""
    actor_id: str = Field(..., min_length=1, description="Agent accepting the suggestion")


class RejectSuggestionRequest(BaseModel):
    """Request model for rejecting a suggestion."""
    actor_id: str = Field(..., min_length=1, description="Agent rejecting the suggestion")
    reason: str = Field(default="", description="Why the suggestion was rejected")

    @field_validator("reason")
    @classmethod
    def validate_reason_length(cls, v: str) -> str:
        if len(v) > 2000:
            raise ValueError("Reason too long (max 2000 characters)")
        return v.strip()


# ========== Response DTOs ==========

class ClassificationInfo(BaseModel):
    """Classification result information."""
    category: CategoryStr
    confidence: float = Field(..., ge=0.0, le=1.0)
    scores: Dict[str, float]


class ArticleInfo(BaseModel):
    """Retrieved article with its relevance score."""
    id: str
    title: str
    tags: List[str]
    score: float


class DecisionInfo(BaseModel):
    """Decision outcome."""
    action: DecisionStr
    threshold: float
    suggestion_id: str
    assignee_id: Optional[str] = None
    assignee_name: Optional[str] = None


class TriageResponse(BaseModel):
    """Response model for an inline triage run."""
    trace_id: str
    ticket_id: str
    classification: ClassificationInfo
    articles: List[ArticleInfo]
    draft_reply: str
    citations: List[str]
    decision: DecisionInfo

    @classmethod
    def from_result(cls, result: TriageResult) -> "TriageResponse":
        decision = result.decision
        return cls(
            trace_id=result.trace_id,
            ticket_id=result.ticket_id,
            classification=ClassificationInfo(
                category=result.classification.category.value,
                confidence=result.classification.confidence,
                scores={c.value: s for c, s in result.classification.scores.items()},
            ),
            articles=[
                ArticleInfo(id=r.article.id, title=r.article.title, tags=list(r.article.tags), score=r.score)
                for r in result.articles
            ],
            draft_reply=result.draft.draft_reply,
            citations=list(result.draft.citations),
            decision=DecisionInfo(
                action=decision.action.value,
                threshold=decision.threshold,
                suggestion_id=decision.suggestion.id,
                assignee_id=decision.assignee.id if decision.assignee else None,
                assignee_name=decision.assignee.name if decision.assignee else None,
            ),
        )


class QueuedTriageResponse(BaseModel):
    """Response model when the run was handed to the queue."""
    status: Literal["queued"] = "queued"
    trace_id: str
    ticket_id: str
    job_id: Optional[str] = None


class ModelInfoResponse(BaseModel):
    provider: str
    model: str
    prompt_version: str
    latency_ms: int


class SuggestionResponse(BaseModel):
    """Response model for a triage suggestion."""
    id: str
    ticket_id: str
    trace_id: str
    predicted_category: CategoryStr
    article_ids: List[str]
    draft_reply: str
    confidence: float
    auto_closed: bool
    state: SuggestionStateStr
    accepted: Optional[bool] = None
    decided_by: Optional[str] = None
    decided_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    superseded: bool = False
    model_info: ModelInfoResponse
    created_at: datetime

    @classmethod
    def from_domain(cls, suggestion: TriageSuggestion) -> "SuggestionResponse":
        return cls(
            id=suggestion.id,
            ticket_id=suggestion.ticket_id,
            trace_id=suggestion.trace_id,
            predicted_category=suggestion.predicted_category.value,
            article_ids=list(suggestion.article_ids),
            draft_reply=suggestion.draft_reply,
            confidence=suggestion.confidence,
            auto_closed=suggestion.auto_closed,
            state=suggestion.state.value,
            accepted=suggestion.accepted,
            decided_by=suggestion.decided_by,
            decided_at=suggestion.decided_at,
            rejection_reason=suggestion.rejection_reason,
            superseded=suggestion.superseded,
            model_info=ModelInfoResponse(**suggestion.model_info.to_dict()),
            created_at=suggestion.created_at,
        )


class AuditEventResponse(BaseModel):
    """Response model for one audit event."""
    ticket_id: str
    trace_id: str
    actor: str
    actor_id: Optional[str] = None
    action: str
    meta: Dict[str, Any]
    timestamp: datetime

    @classmethod
    def from_domain(cls, event: AuditEvent) -> "AuditEventResponse":
        return cls(
            ticket_id=event.ticket_id,
            trace_id=event.trace_id,
            actor=event.actor.value,
            actor_id=event.actor_id,
            action=event.action.value,
            meta=event.meta,
            timestamp=event.timestamp,
        )


class TicketAuditResponse(BaseModel):
    """Audit trail of one ticket."""
    ticket_id: str
    events: List[AuditEventResponse]
    total: int


class SuggestionStatsResponse(BaseModel):
    """Response model for suggestion statistics."""
    since: Optional[str] = None
    total: int
    accepted: int
    rejected: int
    acceptance_rate: float
    auto_closed: int
    auto_close_rate: float
    average_confidence: float
    generated_at: str
