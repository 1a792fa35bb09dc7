"""
Tests for keyword sentiment scoring.
"""

import pytest

from trader.sentiment import SentimentScore, aggregate_scores, score_text, top_terms


class TestScoreText:
    def test_positive_text(self):
        score = score_text("Strong support and likely approval, a clear win")

        assert score.score == pytest.approx(0.4)
        assert score.confidence == pytest.approx(0.4)
        assert score.matches == 4

    def test_negative_text(self):
        score = score_text("Polls falling, bearish outlook, support may collapse")

        assert score.score == pytest.approx(-0.2)
        assert score.matches == 4

    def test_neutral_text(self):
        score = score_text("The committee meets on Tuesday")

        assert score == SentimentScore(score=0.0, confidence=0.0, matches=0)

    def test_confidence_capped(self):
        score = score_text(" ".join(["win"] * 12))

        assert score.score == pytest.approx(1.0)
        assert score.confidence == 0.8


class TestAggregateScores:
    def test_confidence_weighted_mean(self):
        combined = aggregate_scores([
            SentimentScore(0.5, 0.6, 6),
            SentimentScore(-0.1, 0.2, 2),
        ])

        assert combined.score == pytest.approx((0.5 * 0.6 - 0.1 * 0.2) / 0.8)
        assert combined.confidence == pytest.approx(0.4)
        assert combined.matches == 8

    def test_empty_and_zero_confidence(self):
        assert aggregate_scores([]).confidence == 0.0
        assert aggregate_scores([SentimentScore(0.0, 0.0, 0)]).score == 0.0


def test_top_terms_skips_short_words():
    texts = ["Senate votes on budget", "Budget deal reached in Senate", "budget talks"]

    assert top_terms(texts, limit=2) == ["budget", "senate"]
