"""
Draft Composer
==============

Builds the candidate reply for a ticket from a category template and the
titles of the retrieved articles.
"""

from typing import Dict, Optional, Sequence

from helpdesk_triage.config import TicketCategory
from helpdesk_triage.core import ApplicationException, DraftError
from helpdesk_triage.triage.domain.classifier import IClassifier, KeywordClassifier
from helpdesk_triage.triage.domain.entities import DraftResult, KnowledgeArticle

TEMPLATES: Dict[TicketCategory, str] = {
    TicketCategory.BILLING: (
        "Thank you for contacting us regarding your billing inquiry. "
        "I understand your concern and I'm here to help resolve this issue promptly."
    ),
    TicketCategory.TECH: (
        "Thank you for reporting this technical issue. "
        "I apologize for any inconvenience this may have caused. "
        "Let me help you resolve this problem."
    ),
    TicketCategory.SHIPPING: (
        "Thank you for contacting us about your shipment. "
        "I understand you're looking for information about your delivery and I'm here to help."
    ),
    TicketCategory.OTHER: (
        "Thank you for reaching out to our support team. "
        "I'm here to assist you with your inquiry."
    ),
}

RESOURCES_HEADER = "Based on our knowledge base, here are some relevant resources that may help:"
FOLLOW_UP = (
    "Please review these resources, and if you need further assistance, "
    "don't hesitate to reply to this ticket."
)
SIGNATURE = "Best regards,\nSupport Team"


class DraftComposer:
    """
    Composes draft replies.

    Only article titles are injected into the reply; bodies never are.
    """

    def __init__(self, classifier: Optional[IClassifier] = None, max_citations: int = 3):
        self._classifier = classifier or KeywordClassifier()
        self._max_citations = max_citations

    def draft(
        self,
        ticket_text: str,
        articles: Sequence[KnowledgeArticle],
        category: Optional[TicketCategory] = None,
    ) -> DraftResult:
        """
        Compose a reply and its citation list.

        Args:
            ticket_text: Ticket title and description
            articles: Retrieved articles, best first
            category: Known category; classified from the text when omitted

        Returns:
            DraftResult whose citations are the ids of the listed articles
        """
        try:
            if category is None:
                category = self._classifier.classify(ticket_text).category

            cited = list(articles)[: self._max_citations]
            parts = [TEMPLATES.get(category, TEMPLATES[TicketCategory.OTHER])]

            if cited:
                listing = "".join(f"{i}. {article.title}\n" for i, article in enumerate(cited, 1))
                parts.append(f"{RESOURCES_HEADER}\n\n{listing}\n{FOLLOW_UP}")

            parts.append(SIGNATURE)
            return DraftResult(
                draft_reply="\n\n".join(parts),
                citations=[article.id for article in cited],
            )
        except ApplicationException:
            raise
        except Exception as e:
            raise DraftError(f"Draft composition failed: {e}")
