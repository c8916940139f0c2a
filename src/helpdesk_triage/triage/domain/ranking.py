"""
Article Ranking
===============

Query term extraction and composite re-ranking of knowledge base candidates.
"""

import re
from typing import Iterable, List, Optional, Sequence, Tuple

from helpdesk_triage.triage.domain.entities import KnowledgeArticle, RankedArticle

STOP_WORDS = frozenset({
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for",
    "of", "with", "by", "is", "are", "was", "were", "be", "been", "being",
    "have", "has", "had", "do", "does", "did", "will", "would", "could",
    "should", "may", "might", "must", "can", "this", "that", "these", "those",
})
MAX_TERMS = 10
MIN_TERM_LENGTH = 3

TITLE_WEIGHT = 3
BODY_WEIGHT = 1
TAG_WEIGHT = 2
HELPFUL_WEIGHT = 0.1
NOT_HELPFUL_WEIGHT = 0.05

_PUNCTUATION = re.compile(r"[^\w\s]")


def extract_keywords(query: str) -> List[str]:
    """
    Extract search terms from free text.

    Lowercases, replaces punctuation with spaces, drops stop words and words
    shorter than three characters, and keeps the first ten terms.
    """
    words = _PUNCTUATION.sub(" ", (query or "").lower()).split()
    terms = [w for w in words if len(w) >= MIN_TERM_LENGTH and w not in STOP_WORDS]
    return terms[:MAX_TERMS]


def count_matches(text: Optional[str], terms: Iterable[str]) -> int:
    """Total non-overlapping occurrences of every term in text."""
    if not text:
        return 0
    lowered = text.lower()
    return sum(lowered.count(term) for term in terms)


def composite_score(article: KnowledgeArticle, terms: Sequence[str], base_score: float = 0.0) -> float:
    """Full-text score boosted by field matches and reader feedback."""
    tags = {t.lower() for t in article.tags or []}
    score = base_score
    score += count_matches(article.title, terms) * TITLE_WEIGHT
    score += count_matches(article.body, terms) * BODY_WEIGHT
    score += sum(1 for term in terms if term in tags) * TAG_WEIGHT
    score += (article.helpful or 0) * HELPFUL_WEIGHT
    score -= (article.not_helpful or 0) * NOT_HELPFUL_WEIGHT
    return round(score, 2)


def rank_articles(
    candidates: Sequence[Tuple[KnowledgeArticle, float]],
    query: str,
    limit: int,
) -> List[RankedArticle]:
    """
    Re-rank candidates by composite score.

    Args:
        candidates: (article, full-text score) pairs; keyword-only hits carry 0
        query: The original search text
        limit: Maximum number of results

    Returns:
        Ranked articles, best first, ties broken by article id
    """
    terms = extract_keywords(query)
    ranked = [
        RankedArticle(article=article, score=composite_score(article, terms, base))
        for article, base in candidates
    ]
    ranked.sort(key=lambda r: (-r.score, r.article.id))
    return ranked[:limit]
