"""
Triage Domain Layer
===================

Domain layer for the ticket triage module.

Contains:
- Entities: Ticket, KnowledgeArticle, TriageSuggestion, AuditEvent, run results
- Value Objects: TriageConfig, AgentSettings, DecisionPolicy
- Classifier, ranking and draft composition (pure, deterministic)

This layer is framework-agnostic and contains pure business logic.
"""

from helpdesk_triage.triage.domain.entities import (
    AgentUser,
    AuditEvent,
    ClassificationResult,
    DraftResult,
    KnowledgeArticle,
    ModelInfo,
    RankedArticle,
    Reply,
    RunState,
    Ticket,
    TriageDecision,
    TriageResult,
    TriageRun,
    TriageSuggestion,
    utcnow,
)
from helpdesk_triage.triage.domain.value_objects import (
    AgentSettings,
    DecisionPolicy,
    TriageConfig,
)
from helpdesk_triage.triage.domain.classifier import IClassifier, KeywordClassifier
from helpdesk_triage.triage.domain.ranking import extract_keywords, rank_articles
from helpdesk_triage.triage.domain.composer import DraftComposer

__all__ = [
    "AgentUser",
    "AuditEvent",
    "ClassificationResult",
    "DraftResult",
    "KnowledgeArticle",
    "ModelInfo",
    "RankedArticle",
    "Reply",
    "RunState",
    "Ticket",
    "TriageDecision",
    "TriageResult",
    "TriageRun",
    "TriageSuggestion",
    "utcnow",
    "AgentSettings",
    "DecisionPolicy",
    "TriageConfig",
    "IClassifier",
    "KeywordClassifier",
    "extract_keywords",
    "rank_articles",
    "DraftComposer",
]
