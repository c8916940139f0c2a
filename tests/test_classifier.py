"""
Keyword classifier tests
"""
import pytest

from helpdesk_triage.config import TicketCategory
from helpdesk_triage.core import ClassificationError
from helpdesk_triage.triage.domain import KeywordClassifier
from helpdesk_triage.triage.domain.classifier import MAX_TEXT_LENGTH


@pytest.fixture
def classifier():
    return KeywordClassifier()


class TestClassify:
    """Category and confidence"""

    def test_refund_charge_is_billing(self, classifier):
        result = classifier.classify("refund charge double charge")

        assert result.category == TicketCategory.BILLING
        assert result.confidence > 0.3
        assert result.scores[TicketCategory.BILLING] == pytest.approx(0.6)
        assert result.scores[TicketCategory.OTHER] == pytest.approx(0.1)
        # (0.6 - 0.1) / (0.6 + 0.1)
        assert result.confidence == 0.71

    def test_password_crash_is_tech(self, classifier):
        result = classifier.classify("Login crash\n\nThe app shows an error after I reset my password")

        assert result.category == TicketCategory.TECH

    def test_tracking_is_shipping(self, classifier):
        result = classifier.classify("Package delayed\n\nTracking says the shipment never arrived")

        assert result.category == TicketCategory.SHIPPING

    def test_empty_text_is_other(self, classifier):
        result = classifier.classify("")

        assert result.category == TicketCategory.OTHER
        assert result.scores[TicketCategory.OTHER] == pytest.approx(0.1)
        assert result.confidence == 0.5

    def test_none_is_treated_as_empty(self, classifier):
        assert classifier.classify(None).category == TicketCategory.OTHER

    def test_tie_goes_to_first_declared_category(self, classifier):
        result = classifier.classify("refund error")

        assert result.scores[TicketCategory.BILLING] == result.scores[TicketCategory.TECH]
        assert result.category == TicketCategory.BILLING
        assert result.confidence == 0.3

    def test_text_beyond_limit_is_ignored(self, classifier):
        text = "x" * MAX_TEXT_LENGTH + " refund refund refund"

        assert classifier.classify(text).category == TicketCategory.OTHER

    def test_non_text_input_raises(self, classifier):
        with pytest.raises(ClassificationError):
            classifier.classify(12345)


class TestConfidenceBounds:
    """0.3 <= confidence <= 0.95 for every input"""

    @pytest.mark.parametrize("text", [
        "",
        "hello",
        "refund",
        "refund " * 200,
        "refund error delivery help",
        "invoice payment charge billing credit money price cost fee",
        "crash crash crash bug bug error stack api code login",
    ])
    def test_confidence_is_bounded(self, classifier, text):
        confidence = classifier.classify(text).confidence

        assert 0.3 <= confidence <= 0.95

    def test_classify_is_deterministic(self, classifier):
        text = "My package was delayed and the invoice shows a double charge"

        results = [classifier.classify(text) for _ in range(5)]

        assert all(r == results[0] for r in results)


class TestCustomKeywords:
    """Keyword table overrides"""

    def test_weighted_keywords(self):
        classifier = KeywordClassifier({
            TicketCategory.TECH: [("outage", 1.0), "slow"],
            TicketCategory.OTHER: [],
        })

        result = classifier.classify("Full OUTAGE since morning")

        assert result.category == TicketCategory.TECH
        assert result.scores[TicketCategory.TECH] == pytest.approx(1.0)
        assert result.confidence == 0.82

    def test_model_info(self):
        info = KeywordClassifier().model_info(latency_ms=12)

        assert info.to_dict() == {
            "provider": "rule-based",
            "model": "keyword-weighted-v1",
            "prompt_version": "v1.0",
            "latency_ms": 12,
        }
