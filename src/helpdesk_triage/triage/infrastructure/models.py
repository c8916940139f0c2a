"""
Triage Infrastructure Models
=============================

SQLAlchemy ORM models for the triage module.

These are the database representations of the domain entities. They belong
in the infrastructure layer, not the domain layer.
"""

from datetime import datetime, timezone
from typing import List, Optional
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
)
from sqlalchemy.dialects.postgresql import ARRAY
from sqlalchemy.orm import Mapped, mapped_column, relationship

from helpdesk_triage.config import (
    ActorKind,
    ArticleStatus,
    AuditAction,
    TicketCategory,
    TicketStatus,
    UserRole,
)
from helpdesk_triage.infrastructure.database import Base


def _now() -> datetime:
    return datetime.now(timezone.utc)


class UserModel(Base):
    """
    Database model for users.

    Only the fields assignment and authorship need.
    """
    __tablename__ = "users"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    role: Mapped[UserRole] = mapped_column(String(50), nullable=False, default=UserRole.USER)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)


class TicketModel(Base):
    """
    Database model for Ticket entity.

    Maps to the 'tickets' table.
    """
    __tablename__ = "tickets"

    # Primary key
    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    # Ticket content
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[TicketCategory] = mapped_column(String(50), nullable=False, default=TicketCategory.OTHER)
    status: Mapped[TicketStatus] = mapped_column(String(50), nullable=False, default=TicketStatus.OPEN, index=True)

    # People
    created_by: Mapped[UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    assignee_id: Mapped[Optional[UUID]] = mapped_column(Uuid, ForeignKey("users.id"), nullable=True, index=True)

    # Latest triage suggestion
    suggestion_id: Mapped[Optional[UUID]] = mapped_column(Uuid, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    closed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    replies: Mapped[List["ReplyModel"]] = relationship(
        back_populates="ticket",
        order_by="ReplyModel.created_at",
        lazy="selectin",
        cascade="all, delete-orphan",
    )


class ReplyModel(Base):
    """Database model for ticket replies. Rows are only ever inserted."""
    __tablename__ = "ticket_replies"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    ticket_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("tickets.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    author_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    is_internal: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)

    ticket: Mapped[TicketModel] = relationship(back_populates="replies")


class ArticleModel(Base):
    """
    Database model for knowledge base articles.

    Full-text search runs over title, body and tags.
    """
    __tablename__ = "kb_articles"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    tags: Mapped[List[str]] = mapped_column(ARRAY(String(50)), nullable=False, default=list)
    status: Mapped[ArticleStatus] = mapped_column(String(50), nullable=False, default=ArticleStatus.DRAFT, index=True)
    author_id: Mapped[Optional[UUID]] = mapped_column(Uuid, ForeignKey("users.id"), nullable=True)

    # Reader feedback
    views: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    helpful: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    not_helpful: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class SuggestionModel(Base):
    """
    Database model for TriageSuggestion entity.

    One row per triage run that reached the decision step.
    """
    __tablename__ = "triage_suggestions"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    ticket_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("tickets.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    trace_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    # Outcome
    predicted_category: Mapped[TicketCategory] = mapped_column(String(50), nullable=False)
    article_ids: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    draft_reply: Mapped[str] = mapped_column(Text, nullable=False)
    confidence: Mapped[float] = mapped_column(Float, nullable=False)
    auto_closed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Review
    accepted: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    decided_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    decided_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    superseded: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Provenance
    model_provider: Mapped[str] = mapped_column(String(100), nullable=False)
    model_name: Mapped[str] = mapped_column(String(100), nullable=False)
    prompt_version: Mapped[str] = mapped_column(String(50), nullable=False)
    latency_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now, index=True)


class AuditEventModel(Base):
    """
    Database model for AuditEvent entity.

    Append-only. The autoincrement id is the sequence that orders events
    sharing a timestamp. ``ticket_id`` is not a foreign key so failures for
    unknown tickets can still be recorded.
    """
    __tablename__ = "audit_events"

    sequence: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    ticket_id: Mapped[str] = mapped_column(String(64), nullable=False)
    trace_id: Mapped[str] = mapped_column(String(64), nullable=False)
    actor: Mapped[ActorKind] = mapped_column(String(20), nullable=False)
    actor_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    action: Mapped[AuditAction] = mapped_column(String(50), nullable=False, index=True)
    meta: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)

    __table_args__ = (
        Index("ix_audit_events_ticket_ts", "ticket_id", "timestamp"),
        Index("ix_audit_events_trace_ts", "trace_id", "timestamp"),
        Index("ix_audit_events_timestamp", "timestamp"),
    )


class TriageConfigModel(Base):
    """
    The single live triage configuration document (row id 1).
    """
    __tablename__ = "triage_config"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=1)
    document: Mapped[dict] = mapped_column(JSON, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)
