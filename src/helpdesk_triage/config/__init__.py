"""
Configuration Module
====================

Application settings and configuration management using Pydantic.

Process-level settings (database, queue, logging) come from the environment.
The live triage policy (thresholds, retries) is a separate document owned by
the config store, see ``triage.domain.value_objects.TriageConfig``.
"""

from enum import Enum
from functools import lru_cache
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="helpdesk-triage", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port", ge=1, le=65535)

    # ========== Database ==========
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/helpdesk",
        description="PostgreSQL connection URL (async)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)

    # ========== Triage Queue ==========
    redis_url: Optional[str] = Field(
        default=None,
        description="Redis URL for the triage queue; unset runs triage inline"
    )
    triage_queue_name: str = Field(default="triage", description="arq queue name")
    triage_worker_concurrency: int = Field(
        default=5,
        description="Max triage jobs processed concurrently per worker",
        ge=1,
        le=100
    )
    triage_enqueue_delay_seconds: float = Field(
        default=1.0,
        description="Initial delay before a queued job becomes runnable",
        ge=0.0
    )
    triage_embedded_worker: bool = Field(
        default=True,
        description="Consume the triage queue inside the API process"
    )
    run_lock_ttl_seconds: int = Field(
        default=180,
        description="Expiry of the per-ticket run lock in Redis",
        ge=10
    )

    # ========== Triage Pipeline ==========
    triage_retrieval_limit: int = Field(
        default=3,
        description="Number of KB articles retrieved and cited per run",
        ge=1,
        le=20
    )
    system_user_email: str = Field(
        default="system@helpdesk.ai",
        description="Email of the automated actor that authors triage replies"
    )
    system_user_name: str = Field(default="AI Assistant", description="System actor name")

    # ========== CORS ==========
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:5173"],
        description="Allowed CORS origins"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is one of allowed values."""
        allowed = {"development", "test", "staging", "production"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v

    @property
    def queue_enabled(self) -> bool:
        """Whether a queue backend is configured."""
        return bool(self.redis_url)


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()


# ========== Constants ==========

class TicketCategory(str, Enum):
    """Ticket categories, in classifier tie-break priority order."""
    BILLING = "billing"
    TECH = "tech"
    SHIPPING = "shipping"
    OTHER = "other"


class TicketStatus(str, Enum):
    """Ticket lifecycle statuses."""
    OPEN = "open"
    TRIAGED = "triaged"
    WAITING_HUMAN = "waiting_human"
    RESOLVED = "resolved"
    CLOSED = "closed"


class ArticleStatus(str, Enum):
    """Knowledge article publication states."""
    DRAFT = "draft"
    PUBLISHED = "published"


class UserRole(str, Enum):
    """User roles."""
    USER = "user"
    AGENT = "agent"
    ADMIN = "admin"
    SYSTEM = "system"


class ActorKind(str, Enum):
    """Who performed an audited action."""
    SYSTEM = "system"
    AGENT = "agent"
    USER = "user"


class AuditAction(str, Enum):
    """Audited ticket and suggestion lifecycle events."""
    TICKET_CREATED = "TICKET_CREATED"
    TRIAGE_STARTED = "TRIAGE_STARTED"
    AGENT_CLASSIFIED = "AGENT_CLASSIFIED"
    KB_RETRIEVED = "KB_RETRIEVED"
    DRAFT_GENERATED = "DRAFT_GENERATED"
    AUTO_CLOSED = "AUTO_CLOSED"
    ASSIGNED_TO_HUMAN = "ASSIGNED_TO_HUMAN"
    REPLY_SENT = "REPLY_SENT"
    STATUS_CHANGED = "STATUS_CHANGED"
    TICKET_ASSIGNED = "TICKET_ASSIGNED"
    TICKET_REOPENED = "TICKET_REOPENED"
    SUGGESTION_ACCEPTED = "SUGGESTION_ACCEPTED"
    SUGGESTION_REJECTED = "SUGGESTION_REJECTED"
    TRIAGE_FAILED = "TRIAGE_FAILED"


class DecisionAction(str, Enum):
    """Outcome of the decision step."""
    AUTO_CLOSED = "auto_closed"
    ASSIGNED_TO_HUMAN = "assigned_to_human"


class SuggestionState(str, Enum):
    """Acceptance state of a triage suggestion."""
    UNDECIDED = "undecided"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


# ========== Lists for validation ==========

TICKET_CATEGORIES = list(TicketCategory)
WORKLOAD_STATUSES = [TicketStatus.TRIAGED, TicketStatus.WAITING_HUMAN]
ASSIGNABLE_ROLES = [UserRole.AGENT, UserRole.ADMIN]
