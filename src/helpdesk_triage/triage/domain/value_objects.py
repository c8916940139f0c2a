"""
Triage Value Objects
====================

Immutable value objects for the triage domain.

``TriageConfig`` is the live triage policy document. ``DecisionPolicy`` holds
the pure decision rules applied to it.
"""

from typing import Dict, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from helpdesk_triage.config import TicketCategory


MAX_RETRIES_LIMIT = 5
TIMEOUT_MS_LIMIT = 120000
BACKOFF_MS_LIMIT = 10000


class AgentSettings(BaseModel):
    """Retry and timeout budget for one triage job."""
    model_config = ConfigDict(frozen=True)

    max_retries: int = Field(default=3, ge=1, le=MAX_RETRIES_LIMIT, description="Additional attempts after the first")
    timeout_ms: int = Field(default=30000, ge=5000, le=TIMEOUT_MS_LIMIT, description="Per-attempt timeout")
    backoff_ms: int = Field(default=2000, ge=0, le=BACKOFF_MS_LIMIT, description="Base delay for exponential backoff")
    enable_fallback: bool = Field(default=True, description="Fall back to human review on failure")

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000

    def backoff_seconds(self, attempt: int) -> float:
        """Delay before the retry that follows failed ``attempt`` (1-based)."""
        return self.backoff_ms * 2 ** (attempt - 1) / 1000

    @property
    def budget_seconds(self) -> float:
        """Longest a job can run: every attempt times out and every backoff is waited."""
        waits = sum(self.backoff_seconds(attempt) for attempt in range(1, self.max_retries + 1))
        return (self.max_retries + 1) * self.timeout_seconds + waits

    @classmethod
    def upper_bound(cls) -> "AgentSettings":
        """The largest budget any stored configuration can ask for."""
        return cls(max_retries=MAX_RETRIES_LIMIT, timeout_ms=TIMEOUT_MS_LIMIT, backoff_ms=BACKOFF_MS_LIMIT)


class TriageConfig(BaseModel):
    """
    Live triage configuration.

    A single document read at the start of each run and passed explicitly
    into the orchestrator. Changed only through the config store.
    """
    model_config = ConfigDict(frozen=True)

    auto_close_enabled: bool = Field(default=True, description="Allow auto-resolution")
    confidence_threshold: float = Field(default=0.78, ge=0.0, le=1.0)
    category_thresholds: Dict[TicketCategory, float] = Field(
        default_factory=dict,
        description="Per-category overrides of confidence_threshold"
    )
    sla_hours: int = Field(default=24, ge=1, le=168)
    max_tickets_per_user: int = Field(default=10, ge=1)
    agent_settings: AgentSettings = Field(default_factory=AgentSettings)

    @field_validator("category_thresholds")
    @classmethod
    def validate_category_thresholds(cls, v: Dict[TicketCategory, float]) -> Dict[TicketCategory, float]:
        for category, threshold in v.items():
            if not 0.0 <= threshold <= 1.0:
                raise ValueError(f"threshold for {category.value} must be between 0 and 1")
        return v

    def threshold_for(self, category: TicketCategory) -> float:
        """Effective threshold for a category."""
        return self.category_thresholds.get(category, self.confidence_threshold)


class DecisionPolicy:
    """
    Pure functions for the auto-close and assignment decisions.
    """

    @staticmethod
    def should_auto_close(confidence: float, threshold: float, enabled: bool = True) -> bool:
        """Auto-close iff enabled and confidence reaches the threshold (inclusive)."""
        return enabled and confidence >= threshold

    @staticmethod
    def pick_least_loaded(candidates: Sequence[Tuple[str, int]]) -> Optional[str]:
        """
        Choose the candidate with the fewest open tickets.

        Args:
            candidates: (user_id, workload) pairs in store order

        Returns:
            The chosen user id, first one wins on ties; None if empty
        """
        best: Optional[Tuple[str, int]] = None
        for user_id, workload in candidates:
            if best is None or workload < best[1]:
                best = (user_id, workload)
        return best[0] if best else None


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))
