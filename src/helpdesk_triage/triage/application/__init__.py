"""
Triage Application Layer
=========================

Application layer for ticket triage module.

Contains:
- Services: retrieval, auditing, decisions, suggestion review
- Orchestrator and dispatchers: running the pipeline inline or queued
- DTOs: Data transfer objects for API serialization
"""

from helpdesk_triage.triage.application.dto import (
    AcceptSuggestionRequest,
    AuditEventResponse,
    QueuedTriageResponse,
    RejectSuggestionRequest,
    SuggestionResponse,
    SuggestionStatsResponse,
    TicketAuditResponse,
    TicketCreatedRequest,
    TriageRequest,
    TriageResponse,
)
from helpdesk_triage.triage.application.services import (
    AuditLogger,
    DecisionEngine,
    IArticleRepository,
    IAuditRepository,
    IConfigRepository,
    ISuggestionRepository,
    ITicketRepository,
    ITriageQueue,
    ITriageRunLock,
    IUserRepository,
    KnowledgeRetriever,
    SuggestionService,
)
from helpdesk_triage.triage.application.orchestrator import TriageOrchestrator
from helpdesk_triage.triage.application.dispatcher import (
    DispatchReceipt,
    InlineTriageDispatcher,
    ITriageDispatcher,
    OrchestratorScope,
    QueuedTriageDispatcher,
    TriageJobRunner,
    build_dispatcher,
)

__all__ = [
    # DTOs
    "AcceptSuggestionRequest",
    "AuditEventResponse",
    "QueuedTriageResponse",
    "RejectSuggestionRequest",
    "SuggestionResponse",
    "SuggestionStatsResponse",
    "TicketAuditResponse",
    "TicketCreatedRequest",
    "TriageRequest",
    "TriageResponse",
    # Services
    "AuditLogger",
    "DecisionEngine",
    "KnowledgeRetriever",
    "SuggestionService",
    "TriageOrchestrator",
    # Dispatch
    "DispatchReceipt",
    "InlineTriageDispatcher",
    "ITriageDispatcher",
    "OrchestratorScope",
    "QueuedTriageDispatcher",
    "TriageJobRunner",
    "build_dispatcher",
    # Repository Interfaces
    "IArticleRepository",
    "IAuditRepository",
    "IConfigRepository",
    "ISuggestionRepository",
    "ITicketRepository",
    "ITriageQueue",
    "ITriageRunLock",
    "IUserRepository",
]
