"""
Triage Infrastructure Layer
============================

Infrastructure implementations for ticket triage module.

Contains:
- Models: SQLAlchemy ORM models
- Repositories: Data access implementations
- Queue: arq (Redis) and in-process triage queues
- Run locks: in-process and Redis per-ticket locks
- Factory: session-scoped orchestrators and services
"""

from helpdesk_triage.triage.infrastructure.models import (
    ArticleModel,
    AuditEventModel,
    ReplyModel,
    SuggestionModel,
    TicketModel,
    TriageConfigModel,
    UserModel,
)
from helpdesk_triage.triage.infrastructure.repositories import (
    SQLAlchemyArticleRepository,
    SQLAlchemyAuditRepository,
    SQLAlchemyConfigRepository,
    SQLAlchemySuggestionRepository,
    SQLAlchemyTicketRepository,
    SQLAlchemyUserRepository,
)
from helpdesk_triage.triage.infrastructure.queue import (
    JOB_NAME,
    ArqTriageQueue,
    InProcessTriageQueue,
)
from helpdesk_triage.triage.infrastructure.run_lock import InProcessRunLock, RedisRunLock
from helpdesk_triage.triage.infrastructure.factory import TriageServiceFactory

__all__ = [
    "ArticleModel",
    "AuditEventModel",
    "ReplyModel",
    "SuggestionModel",
    "TicketModel",
    "TriageConfigModel",
    "UserModel",
    "SQLAlchemyArticleRepository",
    "SQLAlchemyAuditRepository",
    "SQLAlchemyConfigRepository",
    "SQLAlchemySuggestionRepository",
    "SQLAlchemyTicketRepository",
    "SQLAlchemyUserRepository",
    "JOB_NAME",
    "ArqTriageQueue",
    "InProcessTriageQueue",
    "InProcessRunLock",
    "RedisRunLock",
    "TriageServiceFactory",
]
