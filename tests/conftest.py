"""
pytest configuration and shared fixtures
"""
import os

os.environ.setdefault("ENVIRONMENT", "test")

import pytest

from helpdesk_triage.config import ArticleStatus, TicketCategory, UserRole
from helpdesk_triage.triage.domain import TriageConfig

from tests.fakes import InMemoryTriageServices, make_agent, make_article, make_ticket


@pytest.fixture
def billing_ticket():
    return make_ticket()


@pytest.fixture
def kb_articles():
    """Published articles tagged with their category, plus one draft"""
    return [
        make_article(
            "kb-refund",
            "How refunds work",
            "Refunds for a double charge are issued to the original payment method.",
            tags=["billing", "refund"],
            helpful=5,
        ),
        make_article(
            "kb-invoice",
            "Reading your invoice",
            "Every charge on your invoice is listed with its date.",
            tags=["billing", "invoice"],
        ),
        make_article(
            "kb-login",
            "Resetting your password",
            "Use the login page to reset a forgotten password.",
            tags=["tech", "login"],
        ),
        make_article(
            "kb-refund-draft",
            "Refund policy (draft)",
            "Unpublished refund charge policy.",
            tags=["billing"],
            status=ArticleStatus.DRAFT,
        ),
    ]


@pytest.fixture
def agents():
    return [make_agent("agent-a", "Alice"), make_agent("agent-b", "Bob"), make_agent("admin-c", "Cleo", UserRole.ADMIN)]


@pytest.fixture
def services(billing_ticket, kb_articles, agents):
    return InMemoryTriageServices(
        tickets=[billing_ticket],
        articles=kb_articles,
        agents=agents,
        config=TriageConfig(),
    )


@pytest.fixture
def low_threshold_config():
    return TriageConfig(confidence_threshold=0.5)


@pytest.fixture
def high_threshold_config():
    return TriageConfig(
        confidence_threshold=0.9,
        category_thresholds={TicketCategory.SHIPPING: 0.4},
    )
