"""
Ticket Classifier
=================

Deterministic, explainable category classification.

``IClassifier`` is the seam a model-backed classifier would plug into; the
shipped implementation scores ticket text against weighted keyword lists.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from helpdesk_triage.config import TicketCategory
from helpdesk_triage.core import ClassificationError
from helpdesk_triage.triage.domain.entities import ClassificationResult, ModelInfo
from helpdesk_triage.triage.domain.value_objects import clamp

MAX_TEXT_LENGTH = 10_000
DEFAULT_KEYWORD_WEIGHT = 0.2
OTHER_BASE_SCORE = 0.1
MIN_CONFIDENCE = 0.3
MAX_CONFIDENCE = 0.95

# Declaration order is the tie-break order.
DEFAULT_KEYWORDS: Dict[TicketCategory, List[str]] = {
    TicketCategory.BILLING: [
        "refund", "invoice", "payment", "charge", "billing",
        "credit", "money", "price", "cost", "fee",
    ],
    TicketCategory.TECH: [
        "error", "bug", "crash", "broken", "technical",
        "code", "stack", "login", "password", "api",
    ],
    TicketCategory.SHIPPING: [
        "delivery", "shipment", "package", "shipping",
        "tracking", "arrived", "delayed", "address",
    ],
    TicketCategory.OTHER: [
        "general", "question", "help", "support", "information", "contact",
    ],
}


class IClassifier(ABC):
    """Interface for ticket classifiers."""

    @abstractmethod
    def classify(self, text: str) -> ClassificationResult:
        """Assign a category and confidence to ticket text."""

    @abstractmethod
    def model_info(self, latency_ms: int = 0) -> ModelInfo:
        """Provenance recorded on suggestions."""


class KeywordClassifier(IClassifier):
    """
    Weighted keyword classifier.

    Each keyword occurrence in the lowercased text adds its weight to the
    category score; ``other`` starts from a small base score so that text
    with no signal falls through to it. Confidence is the margin between the
    two best scores relative to the winner.
    """

    provider = "rule-based"
    model = "keyword-weighted-v1"
    prompt_version = "v1.0"

    def __init__(
        self,
        keywords: Optional[Mapping[TicketCategory, Sequence]] = None,
        default_weight: float = DEFAULT_KEYWORD_WEIGHT,
    ):
        table = keywords or DEFAULT_KEYWORDS
        self._weighted: Dict[TicketCategory, List[Tuple[str, float]]] = {
            category: [self._weighted_keyword(k, default_weight) for k in words]
            for category, words in table.items()
        }

    @staticmethod
    def _weighted_keyword(entry, default_weight: float) -> Tuple[str, float]:
        # Entries are plain keywords or (keyword, weight) pairs
        if isinstance(entry, str):
            return entry.lower(), default_weight
        keyword, weight = entry
        return keyword.lower(), float(weight)

    def score(self, text: str) -> Dict[TicketCategory, float]:
        """Raw per-category scores for text."""
        lowered = text[:MAX_TEXT_LENGTH].lower()
        scores: Dict[TicketCategory, float] = {}
        for category, keywords in self._weighted.items():
            total = OTHER_BASE_SCORE if category == TicketCategory.OTHER else 0.0
            for keyword, weight in keywords:
                total += lowered.count(keyword) * weight
            # Rounded so float accumulation does not break exact ties
            scores[category] = round(total, 6)
        return scores

    def classify(self, text: str) -> ClassificationResult:
        try:
            scores = self.score(text or "")
        except (TypeError, AttributeError) as e:
            raise ClassificationError(f"Cannot classify input: {e}", {"input_type": type(text).__name__})

        predicted = None
        for category, value in scores.items():
            if predicted is None or value > scores[predicted]:
                predicted = category

        ranked = sorted(scores.values(), reverse=True)
        top = ranked[0]
        second = ranked[1] if len(ranked) > 1 else 0.0
        confidence = clamp((top - second) / (top + 0.1), MIN_CONFIDENCE, MAX_CONFIDENCE)

        return ClassificationResult(
            category=predicted,
            confidence=round(confidence, 2),
            scores=scores,
        )

    def model_info(self, latency_ms: int = 0) -> ModelInfo:
        return ModelInfo(
            provider=self.provider,
            model=self.model,
            prompt_version=self.prompt_version,
            latency_ms=latency_ms,
        )
