"""
Triage Service Factory
======================

Builds orchestrators and services bound to one database session.
"""

from contextlib import asynccontextmanager
from typing import AsyncContextManager, AsyncIterator, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk_triage.infrastructure.database import get_session_context
from helpdesk_triage.triage.application import (
    AuditLogger,
    DecisionEngine,
    ITriageRunLock,
    KnowledgeRetriever,
    SuggestionService,
    TriageOrchestrator,
)
from helpdesk_triage.triage.domain import AgentUser, DraftComposer, IClassifier, KeywordClassifier
from helpdesk_triage.triage.infrastructure.repositories import (
    SQLAlchemyArticleRepository,
    SQLAlchemyAuditRepository,
    SQLAlchemyConfigRepository,
    SQLAlchemySuggestionRepository,
    SQLAlchemyTicketRepository,
    SQLAlchemyUserRepository,
)

SessionFactory = Callable[[], AsyncContextManager[AsyncSession]]


class TriageServiceFactory:
    """
    One session is one unit of work: a scope rolls back when its block
    raises. Services commit it themselves before recording their audit
    events, so a run commits while it still holds the ticket lock. Audit
    appends are outside it.
    """

    def __init__(
        self,
        run_lock: ITriageRunLock,
        system_user: AgentUser,
        classifier: Optional[IClassifier] = None,
        retrieval_limit: int = 3,
        session_factory: SessionFactory = get_session_context,
    ):
        self._run_lock = run_lock
        self._system_user = system_user
        self._classifier = classifier or KeywordClassifier()
        self._retrieval_limit = retrieval_limit
        self._session_factory = session_factory
        self.audit = AuditLogger(SQLAlchemyAuditRepository(session_factory))

    def build_orchestrator(self, session: AsyncSession) -> TriageOrchestrator:
        tickets = SQLAlchemyTicketRepository(session)
        decision_engine = DecisionEngine(
            tickets=tickets,
            users=SQLAlchemyUserRepository(session),
            suggestions=SQLAlchemySuggestionRepository(session),
            audit=self.audit,
            system_user=self._system_user,
            commit=session.commit,
        )
        return TriageOrchestrator(
            tickets=tickets,
            configs=SQLAlchemyConfigRepository(session),
            classifier=self._classifier,
            retriever=KnowledgeRetriever(SQLAlchemyArticleRepository(session), self._retrieval_limit),
            composer=DraftComposer(self._classifier, max_citations=self._retrieval_limit),
            decision_engine=decision_engine,
            audit=self.audit,
            run_lock=self._run_lock,
            retrieval_limit=self._retrieval_limit,
        )

    @asynccontextmanager
    async def orchestrator(self) -> AsyncIterator[TriageOrchestrator]:
        async with self._session_factory() as session:
            yield self.build_orchestrator(session)

    @asynccontextmanager
    async def suggestions(self) -> AsyncIterator[SuggestionService]:
        async with self._session_factory() as session:
            yield SuggestionService(
                SQLAlchemySuggestionRepository(session),
                SQLAlchemyTicketRepository(session),
                self.audit,
                commit=session.commit,
            )

    @asynccontextmanager
    async def configs(self) -> AsyncIterator[SQLAlchemyConfigRepository]:
        async with self._session_factory() as session:
            yield SQLAlchemyConfigRepository(session)
