"""Tests for answer confidence scoring."""

import pytest

from rag import confidence
from rag.confidence import (
    CATEGORY_EVIDENCE,
    category_score,
    confidence_level,
    quality_score,
    retrieval_score,
    score,
)
from schemas.page import Category


class TestScenarios:
    def test_grounded_specific_answer(self):
        """Three documents, concrete facts and matching keywords score well without handoff."""
        result = score("Tuition is $4500 per semester, due March 1.", 3, "TUITION")
        assert result.retrieval_term == 1.0
        assert result.category_term == 1.0
        # short answer: 0.3 base boosted by 1.1 for specific information
        assert result.quality_term == pytest.approx(0.33)
        assert result.confidence == pytest.approx(0.732)
        assert result.needs_human_assistance is False
        assert result.level == "MEDIUM"

    def test_hedging_answer_without_documents(self):
        """No documents and hedging language hand off to a human."""
        result = score("I'm not sure, you might want to contact the office.", 0, None)
        assert result.retrieval_term == 0.0
        assert result.quality_term == pytest.approx(0.42)
        assert result.category_term == 0.5
        assert result.confidence == pytest.approx(0.268)
        assert result.needs_human_assistance is True
        assert result.level == "LOW"

    def test_long_grounded_answer_is_high(self):
        """A long, specific, on-topic answer with enough documents is HIGH."""
        answer = (
            "Undergraduate tuition for the fall semester is $4,500 for full-time students. "
            "Payment is due by August 15, and a payment plan is available through the "
            "bursar for students who cannot pay the full fee at once."
        )
        result = score(answer, 3, Category.TUITION)
        assert result.confidence == pytest.approx(1.0)
        assert result.level == "HIGH"

    def test_deterministic(self):
        """The same inputs always produce the same score."""
        args = ("Classes start on 8/18/2025.", 2, "DEADLINES")
        assert score(*args) == score(*args)


class TestSignals:
    @pytest.mark.parametrize("count,expected", [(-1, 0.0), (0, 0.0), (1, 0.5), (2, 0.75), (3, 1.0), (10, 1.0)])
    def test_retrieval_steps(self, count, expected):
        """Retrieval yield saturates at three documents."""
        assert retrieval_score(count) == expected

    def test_blank_response_has_zero_quality(self):
        """Missing or blank answers score zero quality."""
        assert quality_score(None) == 0.0
        assert quality_score("   ") == 0.0

    def test_quality_length_bands(self):
        """Quality base depends on answer length."""
        assert quality_score("a" * 49) == pytest.approx(0.3)
        assert quality_score("a" * 50) == pytest.approx(0.6)
        assert quality_score("a" * 150) == pytest.approx(1.0)

    def test_quality_capped_at_one(self):
        """The specificity boost never pushes quality above 1."""
        assert quality_score("Fee is $10. " * 20) == 1.0

    def test_month_names_are_whole_words(self):
        """Month names count as specific information only as words."""
        assert quality_score("Applications open in may." + "x" * 30) == pytest.approx(0.66)
        assert quality_score("The mayor visits campus every year.") == pytest.approx(0.3)

    def test_category_without_category(self):
        """No category scores neutral."""
        assert category_score(None, "anything") == 0.5

    def test_unrecognized_category_name(self):
        """An unknown category name scores the default."""
        assert category_score("HOUSING", "dorm rooms") == 0.7

    def test_categories_without_rules(self):
        """Admissions and general answers get the default score."""
        assert category_score(Category.ADMISSIONS, "apply online") == 0.7
        assert category_score("general", "hello") == 0.7

    def test_category_misses(self):
        """Answers without evidence get the per-category miss score."""
        assert category_score("TUITION", "Contact the office.") == 0.6
        assert category_score("DEADLINES", "Contact the office.") == 0.5
        assert category_score("DEADLINES", "Submit by 3/1/2025.") == 1.0
        assert category_score("TECHNICAL", "Reset your password online.") == 1.0

    def test_every_category_has_a_rule(self):
        """The evidence table covers the full category set."""
        assert set(CATEGORY_EVIDENCE) == set(Category)


class TestLevels:
    @pytest.mark.parametrize("value,level,handoff", [
        (0.75, "HIGH", False),
        (0.749, "MEDIUM", False),
        (0.5, "MEDIUM", False),
        (0.499, "LOW", True),
        (0.0, "LOW", True),
    ])
    def test_thresholds(self, value, level, handoff):
        """Levels and handoff follow the two thresholds."""
        assert confidence_level(value) == level
        assert confidence.needs_human_assistance(value) is handoff
