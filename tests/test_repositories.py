"""
SQLAlchemy store tests

The session is mocked; statements are compiled with the PostgreSQL dialect
and checked for the filters and ordering the stores rely on.
"""
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest
from sqlalchemy.dialects import postgresql

from helpdesk_triage.config import ArticleStatus, TicketCategory, settings
from helpdesk_triage.core import ConfigError, ValidationException
from helpdesk_triage.infrastructure.redis import get_redis_settings
from helpdesk_triage.triage.infrastructure.models import ArticleModel, SuggestionModel
from helpdesk_triage.triage.infrastructure.repositories import (
    SQLAlchemyArticleRepository,
    SQLAlchemySuggestionRepository,
)


def compiled(statement):
    result = statement.compile(dialect=postgresql.dialect())
    return " ".join(str(result).split()), result.params


@pytest.fixture
def mock_result():
    result = MagicMock()
    result.scalars.return_value.all.return_value = []
    result.scalar_one_or_none.return_value = None
    result.rowcount = 0
    return result


@pytest.fixture
def mock_session(mock_result):
    session = MagicMock()
    session.execute = AsyncMock(return_value=mock_result)
    return session


def executed_statement(session):
    return session.execute.await_args.args[0]


class TestKeywordSearch:
    """Phase-2 keyword search"""

    @pytest.mark.asyncio
    async def test_excludes_phase_one_hits(self, mock_session):
        found = uuid4()

        await SQLAlchemyArticleRepository(mock_session).keyword_search(
            ["refund"], ArticleStatus.PUBLISHED, None, 2, exclude_ids=[str(found), "not-a-uuid"]
        )

        sql, params = compiled(executed_statement(mock_session))
        assert "kb_articles.id NOT IN" in sql
        assert [found] in params.values()
        assert "kb_articles.status = " in sql

    @pytest.mark.asyncio
    async def test_orders_by_recency_then_id(self, mock_session):
        await SQLAlchemyArticleRepository(mock_session).keyword_search(
            ["refund", "charge"], ArticleStatus.PUBLISHED, TicketCategory.BILLING, 3
        )

        sql, params = compiled(executed_statement(mock_session))
        assert "ORDER BY kb_articles.updated_at DESC NULLS LAST, kb_articles.id" in sql
        assert "LIMIT" in sql
        assert "NOT IN" not in sql
        assert 3 in params.values()

    @pytest.mark.asyncio
    async def test_maps_rows_to_articles(self, mock_session, mock_result):
        article_id = uuid4()
        mock_result.scalars.return_value.all.return_value = [ArticleModel(
            id=article_id,
            title="Refund policy",
            body="Refunds are issued within 5 days.",
            tags=["billing", "refund"],
            status=ArticleStatus.PUBLISHED.value,
            views=10,
            helpful=5,
            not_helpful=0,
            created_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
        )]

        articles = await SQLAlchemyArticleRepository(mock_session).keyword_search(
            ["refund"], ArticleStatus.PUBLISHED, None, 2
        )

        assert [a.id for a in articles] == [str(article_id)]
        assert articles[0].tags == ["billing", "refund"]

    @pytest.mark.asyncio
    async def test_nothing_to_fill(self, mock_session):
        repo = SQLAlchemyArticleRepository(mock_session)

        assert await repo.keyword_search([], ArticleStatus.PUBLISHED, None, 2) == []
        assert await repo.keyword_search(["refund"], ArticleStatus.PUBLISHED, None, 0) == []
        mock_session.execute.assert_not_awaited()


class TestSuggestionStore:
    """Supersession and latest lookup"""

    @pytest.mark.asyncio
    async def test_supersede_open_targets_undecided_siblings(self, mock_session, mock_result):
        ticket_id, keep_id = uuid4(), uuid4()
        mock_result.rowcount = 2

        count = await SQLAlchemySuggestionRepository(mock_session).supersede_open(str(ticket_id), str(keep_id))

        sql, params = compiled(executed_statement(mock_session))
        assert count == 2
        assert sql.startswith("UPDATE triage_suggestions SET superseded=")
        assert "triage_suggestions.ticket_id = " in sql
        assert "triage_suggestions.id != " in sql
        assert "triage_suggestions.accepted IS NULL" in sql
        assert "triage_suggestions.superseded IS false" in sql
        assert ticket_id in params.values()
        assert keep_id in params.values()

    @pytest.mark.asyncio
    async def test_supersede_open_rejects_malformed_ids(self, mock_session):
        with pytest.raises(ValidationException):
            await SQLAlchemySuggestionRepository(mock_session).supersede_open("ticket-1", str(uuid4()))

    @pytest.mark.asyncio
    async def test_latest_for_ticket_is_newest_first(self, mock_session, mock_result):
        ticket_id, suggestion_id = uuid4(), uuid4()
        mock_result.scalar_one_or_none.return_value = SuggestionModel(
            id=suggestion_id,
            ticket_id=ticket_id,
            trace_id="trace-1",
            predicted_category=TicketCategory.BILLING.value,
            article_ids=["kb-refund"],
            draft_reply="Hello",
            confidence=0.75,
            auto_closed=False,
            accepted=None,
            superseded=False,
            model_provider="rule-based",
            model_name="keyword-weighted-v1",
            prompt_version="v1.0",
            latency_ms=12,
            created_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
        )

        suggestion = await SQLAlchemySuggestionRepository(mock_session).get_latest_for_ticket(str(ticket_id))

        sql, _ = compiled(executed_statement(mock_session))
        assert "ORDER BY triage_suggestions.created_at DESC" in sql
        assert "LIMIT" in sql
        assert suggestion.id == str(suggestion_id)
        assert suggestion.ticket_id == str(ticket_id)
        assert suggestion.model_info.latency_ms == 12

    @pytest.mark.asyncio
    async def test_latest_for_unknown_ticket_id(self, mock_session):
        assert await SQLAlchemySuggestionRepository(mock_session).get_latest_for_ticket("ticket-1") is None
        mock_session.execute.assert_not_awaited()


class TestRedisSettings:
    def test_from_dsn(self):
        redis_settings = get_redis_settings("redis://cache:6380/2")

        assert redis_settings.host == "cache"
        assert redis_settings.port == 6380
        assert redis_settings.database == 2

    def test_missing_url(self, monkeypatch):
        monkeypatch.setattr(settings, "redis_url", None)

        with pytest.raises(ConfigError):
            get_redis_settings()
