"""
Triage Infrastructure Repositories
====================================

SQLAlchemy implementations of the triage repositories.

Repositories bound to a session take part in its unit of work. The audit
repository opens its own short session per append so that events survive a
rollback of the run that produced them.
"""

from datetime import datetime, timezone
from typing import AsyncContextManager, Callable, List, Optional, Sequence, Tuple
from uuid import UUID

from pydantic import ValidationError
from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk_triage.config import (
    ASSIGNABLE_ROLES,
    ActorKind,
    ArticleStatus,
    AuditAction,
    TicketCategory,
    TicketStatus,
    UserRole,
)
from helpdesk_triage.core import ConfigError, NotFoundError, PersistenceError, ValidationException
from helpdesk_triage.infrastructure.database import get_session_context
from helpdesk_triage.triage.application import (
    IArticleRepository,
    IAuditRepository,
    IConfigRepository,
    ISuggestionRepository,
    ITicketRepository,
    IUserRepository,
)
from helpdesk_triage.triage.domain import (
    AgentUser,
    AuditEvent,
    KnowledgeArticle,
    ModelInfo,
    Reply,
    Ticket,
    TriageConfig,
    TriageSuggestion,
)
from helpdesk_triage.triage.infrastructure.models import (
    ArticleModel,
    AuditEventModel,
    ReplyModel,
    SuggestionModel,
    TicketModel,
    TriageConfigModel,
    UserModel,
)

CONFIG_ROW_ID = 1
TEXT_SEARCH_LANGUAGE = "english"


def _parse_uuid(value: Optional[str]) -> Optional[UUID]:
    """UUID from a string id, None when malformed."""
    if value is None:
        return None
    try:
        return UUID(str(value))
    except ValueError:
        return None


def _require_uuid(value: str, field: str) -> UUID:
    parsed = _parse_uuid(value)
    if parsed is None:
        raise ValidationException(f"Invalid {field}: {value}", {field: value})
    return parsed


# ========== Model <-> Domain mapping ==========

def _ticket_to_domain(model: TicketModel) -> Ticket:
    return Ticket(
        id=str(model.id),
        title=model.title,
        description=model.description,
        created_by=str(model.created_by),
        category=TicketCategory(model.category),
        status=TicketStatus(model.status),
        assignee_id=str(model.assignee_id) if model.assignee_id else None,
        suggestion_id=str(model.suggestion_id) if model.suggestion_id else None,
        replies=[
            Reply(
                id=str(r.id),
                author_id=str(r.author_id),
                content=r.content,
                is_internal=r.is_internal,
                created_at=r.created_at,
            )
            for r in model.replies
        ],
        created_at=model.created_at,
        updated_at=model.updated_at,
        resolved_at=model.resolved_at,
        closed_at=model.closed_at,
    )


def _article_to_domain(model: ArticleModel) -> KnowledgeArticle:
    return KnowledgeArticle(
        id=str(model.id),
        title=model.title,
        body=model.body,
        tags=list(model.tags or []),
        status=ArticleStatus(model.status),
        author_id=str(model.author_id) if model.author_id else None,
        views=model.views,
        helpful=model.helpful,
        not_helpful=model.not_helpful,
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


def _user_to_domain(model: UserModel) -> AgentUser:
    return AgentUser(
        id=str(model.id),
        name=model.name,
        email=model.email,
        role=UserRole(model.role),
        is_active=model.is_active,
    )


def _suggestion_to_domain(model: SuggestionModel) -> TriageSuggestion:
    return TriageSuggestion(
        id=str(model.id),
        ticket_id=str(model.ticket_id),
        trace_id=model.trace_id,
        predicted_category=TicketCategory(model.predicted_category),
        article_ids=list(model.article_ids or []),
        draft_reply=model.draft_reply,
        confidence=model.confidence,
        model_info=ModelInfo(
            provider=model.model_provider,
            model=model.model_name,
            prompt_version=model.prompt_version,
            latency_ms=model.latency_ms,
        ),
        auto_closed=model.auto_closed,
        accepted=model.accepted,
        decided_by=model.decided_by,
        decided_at=model.decided_at,
        rejection_reason=model.rejection_reason,
        superseded=model.superseded,
        created_at=model.created_at,
    )


def _event_to_domain(model: AuditEventModel) -> AuditEvent:
    return AuditEvent(
        ticket_id=model.ticket_id,
        trace_id=model.trace_id,
        actor=ActorKind(model.actor),
        actor_id=model.actor_id,
        action=AuditAction(model.action),
        meta=dict(model.meta or {}),
        timestamp=model.timestamp,
        sequence=model.sequence,
    )


# ========== Repositories ==========

class SQLAlchemyTicketRepository(ITicketRepository):
    """SQLAlchemy implementation for tickets."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def _get_model(self, ticket_id: str) -> Optional[TicketModel]:
        ticket_uuid = _parse_uuid(ticket_id)
        if ticket_uuid is None:
            return None
        stmt = select(TicketModel).where(TicketModel.id == ticket_uuid)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get(self, ticket_id: str) -> Optional[Ticket]:
        model = await self._get_model(ticket_id)
        return _ticket_to_domain(model) if model else None

    async def save(self, ticket: Ticket) -> Ticket:
        """Write mutable fields and insert replies that have no id yet."""
        model = await self._get_model(ticket.id)
        if model is None:
            raise NotFoundError("ticket", ticket.id)

        model.category = ticket.category.value
        model.status = ticket.status.value
        model.assignee_id = _parse_uuid(ticket.assignee_id)
        model.suggestion_id = _parse_uuid(ticket.suggestion_id)
        model.updated_at = ticket.updated_at or datetime.now(timezone.utc)
        model.resolved_at = ticket.resolved_at
        model.closed_at = ticket.closed_at

        new_replies = []
        for reply in ticket.replies:
            if reply.id is not None:
                continue
            reply_model = ReplyModel(
                author_id=_require_uuid(reply.author_id, "author_id"),
                content=reply.content,
                is_internal=reply.is_internal,
                created_at=reply.created_at,
            )
            model.replies.append(reply_model)
            new_replies.append((reply, reply_model))

        await self._session.flush()
        for reply, reply_model in new_replies:
            reply.id = str(reply_model.id)
        return ticket


class SQLAlchemyArticleRepository(IArticleRepository):
    """
    SQLAlchemy implementation for knowledge base articles.

    Full-text search uses PostgreSQL ``to_tsvector``/``plainto_tsquery``.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    @staticmethod
    def _filtered(stmt, status: ArticleStatus, category: Optional[TicketCategory]):
        stmt = stmt.where(ArticleModel.status == status.value)
        if category is not None:
            stmt = stmt.where(ArticleModel.tags.contains([category.value]))
        return stmt

    async def text_search(
        self,
        query: str,
        status: ArticleStatus,
        category: Optional[TicketCategory],
        limit: int,
    ) -> List[Tuple[KnowledgeArticle, float]]:
        document = func.to_tsvector(
            TEXT_SEARCH_LANGUAGE,
            func.concat_ws(" ", ArticleModel.title, ArticleModel.body, func.array_to_string(ArticleModel.tags, " ")),
        )
        tsquery = func.plainto_tsquery(TEXT_SEARCH_LANGUAGE, query)
        rank = func.ts_rank(document, tsquery).label("rank")

        stmt = self._filtered(select(ArticleModel, rank), status, category)
        stmt = stmt.where(document.op("@@")(tsquery)).order_by(rank.desc(), ArticleModel.id).limit(limit)

        result = await self._session.execute(stmt)
        return [(_article_to_domain(model), float(score or 0.0)) for model, score in result.all()]

    async def keyword_search(
        self,
        terms: Sequence[str],
        status: ArticleStatus,
        category: Optional[TicketCategory],
        limit: int,
        exclude_ids: Sequence[str] = (),
    ) -> List[KnowledgeArticle]:
        if not terms or limit <= 0:
            return []

        conditions = []
        for term in terms:
            conditions.append(ArticleModel.title.icontains(term, autoescape=True))
            conditions.append(ArticleModel.body.icontains(term, autoescape=True))
        conditions.append(ArticleModel.tags.overlap([t.lower() for t in terms]))

        stmt = self._filtered(select(ArticleModel), status, category).where(or_(*conditions))
        excluded = [u for u in (_parse_uuid(i) for i in exclude_ids) if u is not None]
        if excluded:
            stmt = stmt.where(ArticleModel.id.not_in(excluded))
        stmt = stmt.order_by(ArticleModel.updated_at.desc().nulls_last(), ArticleModel.id).limit(limit)

        result = await self._session.execute(stmt)
        return [_article_to_domain(model) for model in result.scalars().all()]

    async def get_by_ids(self, ids: Sequence[str]) -> List[KnowledgeArticle]:
        uuids = [u for u in (_parse_uuid(i) for i in ids) if u is not None]
        if not uuids:
            return []
        stmt = select(ArticleModel).where(
            ArticleModel.id.in_(uuids),
            ArticleModel.status == ArticleStatus.PUBLISHED.value,
        )
        result = await self._session.execute(stmt)
        by_id = {str(m.id): _article_to_domain(m) for m in result.scalars().all()}
        return [by_id[i] for i in ids if i in by_id]


class SQLAlchemyUserRepository(IUserRepository):
    """SQLAlchemy implementation for user lookups."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def find_active_agents(self) -> List[AgentUser]:
        stmt = (
            select(UserModel)
            .where(
                UserModel.role.in_([r.value for r in ASSIGNABLE_ROLES]),
                UserModel.is_active.is_(True),
            )
            .order_by(UserModel.created_at, UserModel.id)
        )
        result = await self._session.execute(stmt)
        return [_user_to_domain(model) for model in result.scalars().all()]

    async def count_assigned(self, user_id: str, statuses: Sequence[TicketStatus]) -> int:
        user_uuid = _parse_uuid(user_id)
        if user_uuid is None:
            return 0
        stmt = select(func.count()).select_from(TicketModel).where(
            TicketModel.assignee_id == user_uuid,
            TicketModel.status.in_([s.value for s in statuses]),
        )
        result = await self._session.execute(stmt)
        return int(result.scalar_one())

    async def ensure_system_user(self, email: str, name: str) -> AgentUser:
        stmt = select(UserModel).where(UserModel.email == email)
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        if model is None:
            model = UserModel(name=name, email=email, role=UserRole.SYSTEM.value, is_active=True)
            self._session.add(model)
            await self._session.flush()
        return _user_to_domain(model)


class SQLAlchemyConfigRepository(IConfigRepository):
    """Stores the triage config as one JSON document."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_or_create_default(self) -> TriageConfig:
        model = await self._session.get(TriageConfigModel, CONFIG_ROW_ID)
        if model is None:
            config = TriageConfig()
            self._session.add(TriageConfigModel(id=CONFIG_ROW_ID, document=config.model_dump(mode="json")))
            await self._session.flush()
            return config
        try:
            return TriageConfig.model_validate(model.document)
        except ValidationError as e:
            raise ConfigError(f"Stored triage config is invalid: {e}", {"errors": e.errors()})

    async def update(self, config: TriageConfig) -> TriageConfig:
        model = await self._session.get(TriageConfigModel, CONFIG_ROW_ID)
        document = config.model_dump(mode="json")
        if model is None:
            self._session.add(TriageConfigModel(id=CONFIG_ROW_ID, document=document))
        else:
            model.document = document
            model.updated_at = datetime.now(timezone.utc)
        await self._session.flush()
        return config


class SQLAlchemySuggestionRepository(ISuggestionRepository):
    """SQLAlchemy implementation for triage suggestions."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def _get_model(self, suggestion_id: str) -> Optional[SuggestionModel]:
        suggestion_uuid = _parse_uuid(suggestion_id)
        if suggestion_uuid is None:
            return None
        return await self._session.get(SuggestionModel, suggestion_uuid)

    async def create(self, suggestion: TriageSuggestion) -> TriageSuggestion:
        model = SuggestionModel(
            id=_require_uuid(suggestion.id, "suggestion_id"),
            ticket_id=_require_uuid(suggestion.ticket_id, "ticket_id"),
            trace_id=suggestion.trace_id,
            predicted_category=suggestion.predicted_category.value,
            article_ids=list(suggestion.article_ids),
            draft_reply=suggestion.draft_reply,
            confidence=suggestion.confidence,
            auto_closed=suggestion.auto_closed,
            accepted=suggestion.accepted,
            superseded=suggestion.superseded,
            model_provider=suggestion.model_info.provider,
            model_name=suggestion.model_info.model,
            prompt_version=suggestion.model_info.prompt_version,
            latency_ms=suggestion.model_info.latency_ms,
            created_at=suggestion.created_at,
        )
        self._session.add(model)
        await self._session.flush()
        return suggestion

    async def get(self, suggestion_id: str) -> Optional[TriageSuggestion]:
        model = await self._get_model(suggestion_id)
        return _suggestion_to_domain(model) if model else None

    async def get_latest_for_ticket(self, ticket_id: str) -> Optional[TriageSuggestion]:
        ticket_uuid = _parse_uuid(ticket_id)
        if ticket_uuid is None:
            return None
        stmt = (
            select(SuggestionModel)
            .where(SuggestionModel.ticket_id == ticket_uuid)
            .order_by(SuggestionModel.created_at.desc())
            .limit(1)
        )
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        return _suggestion_to_domain(model) if model else None

    async def update(self, suggestion: TriageSuggestion) -> TriageSuggestion:
        model = await self._get_model(suggestion.id)
        if model is None:
            raise NotFoundError("suggestion", suggestion.id)
        model.accepted = suggestion.accepted
        model.decided_by = suggestion.decided_by
        model.decided_at = suggestion.decided_at
        model.rejection_reason = suggestion.rejection_reason
        model.superseded = suggestion.superseded
        await self._session.flush()
        return suggestion

    async def supersede_open(self, ticket_id: str, keep_id: str) -> int:
        stmt = (
            update(SuggestionModel)
            .where(
                SuggestionModel.ticket_id == _require_uuid(ticket_id, "ticket_id"),
                SuggestionModel.id != _require_uuid(keep_id, "suggestion_id"),
                SuggestionModel.accepted.is_(None),
                SuggestionModel.superseded.is_(False),
            )
            .values(superseded=True)
        )
        result = await self._session.execute(stmt)
        return result.rowcount or 0

    async def list_since(self, since: Optional[datetime]) -> List[TriageSuggestion]:
        stmt = select(SuggestionModel).order_by(SuggestionModel.created_at)
        if since is not None:
            stmt = stmt.where(SuggestionModel.created_at >= since)
        result = await self._session.execute(stmt)
        return [_suggestion_to_domain(model) for model in result.scalars().all()]


class SQLAlchemyAuditRepository(IAuditRepository):
    """
    SQLAlchemy implementation for the audit trail.

    Every call runs in its own session from ``session_factory``.
    """

    def __init__(self, session_factory: Callable[[], AsyncContextManager[AsyncSession]] = get_session_context):
        self._session_factory = session_factory

    async def append(self, event: AuditEvent) -> AuditEvent:
        try:
            async with self._session_factory() as session:
                model = AuditEventModel(
                    ticket_id=event.ticket_id,
                    trace_id=event.trace_id,
                    actor=event.actor.value,
                    actor_id=event.actor_id,
                    action=event.action.value,
                    meta=event.meta,
                    timestamp=event.timestamp,
                )
                session.add(model)
                await session.flush()
                event.sequence = model.sequence
        except SQLAlchemyError as e:
            raise PersistenceError(
                f"Failed to append audit event: {e}",
                {"ticket_id": event.ticket_id, "action": event.action.value}
            )
        return event

    async def _select(self, *criteria) -> List[AuditEvent]:
        stmt = (
            select(AuditEventModel)
            .where(*criteria)
            .order_by(AuditEventModel.timestamp, AuditEventModel.sequence)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [_event_to_domain(model) for model in result.scalars().all()]

    async def query_by_ticket(self, ticket_id: str) -> List[AuditEvent]:
        return await self._select(AuditEventModel.ticket_id == ticket_id)

    async def query_by_trace(self, trace_id: str) -> List[AuditEvent]:
        return await self._select(AuditEventModel.trace_id == trace_id)

    async def query(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        action: Optional[AuditAction] = None,
        actor: Optional[ActorKind] = None,
    ) -> List[AuditEvent]:
        criteria = []
        if start is not None:
            criteria.append(AuditEventModel.timestamp >= start)
        if end is not None:
            criteria.append(AuditEventModel.timestamp <= end)
        if action is not None:
            criteria.append(AuditEventModel.action == action.value)
        if actor is not None:
            criteria.append(AuditEventModel.actor == actor.value)
        return await self._select(*criteria)
