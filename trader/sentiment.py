"""
Keyword-based sentiment scoring used by the intelligence sources.

Each positive or negative keyword moves the score by 0.1; confidence grows
with the number of matched keywords and is capped at 0.8 because keyword
matching is a weak signal.
"""

import re
from collections import Counter
from dataclasses import dataclass
from typing import Iterable

POSITIVE_WORDS = frozenset({
    "positive", "good", "success", "win", "up", "bullish", "likely", "confident",
    "strong", "growth", "increase", "rise", "boom", "surge", "optimistic",
    "favorable", "approve", "support", "boost", "rally", "momentum", "gains",
    "upward", "recovery", "improvement", "expanding", "advancing", "wins", "leads",
})

NEGATIVE_WORDS = frozenset({
    "negative", "bad", "fail", "down", "bearish", "unlikely", "doubt",
    "weak", "decline", "decrease", "fall", "crash", "plunge", "pessimistic",
    "unfavorable", "reject", "oppose", "tank", "collapse", "concern",
    "losses", "downward", "recession", "contraction", "falling", "dropping", "loses",
})

_TOPIC_STOPWORDS = frozenset({
    "about", "after", "their", "there", "these", "those", "which", "would",
    "could", "should", "where", "while", "being", "other", "people", "https",
})

_WORD_RE = re.compile(r"[a-z0-9']+")


@dataclass(frozen=True)
class SentimentScore:
    score: float
    confidence: float
    matches: int


def score_text(text: str) -> SentimentScore:
    """
    Score a piece of text from -1.0 (negative) to 1.0 (positive).

    Args:
        text: Text to analyze

    Returns:
        SentimentScore with score, confidence and matched keyword count
    """
    score = 0.0
    matches = 0
    for word in _WORD_RE.findall((text or "").lower()):
        if word in POSITIVE_WORDS:
            score += 0.1
            matches += 1
        elif word in NEGATIVE_WORDS:
            score -= 0.1
            matches += 1

    return SentimentScore(
        score=max(-1.0, min(1.0, score)),
        confidence=min(0.8, matches * 0.1),
        matches=matches,
    )


def aggregate_scores(scores: Iterable[SentimentScore]) -> SentimentScore:
    """
    Confidence-weighted mean of several scores.

    The aggregate confidence is the mean confidence of the inputs.
    """
    items = list(scores)
    if not items:
        return SentimentScore(score=0.0, confidence=0.0, matches=0)

    total_confidence = sum(item.confidence for item in items)
    if total_confidence == 0:
        return SentimentScore(score=0.0, confidence=0.0, matches=0)

    weighted = sum(item.score * item.confidence for item in items) / total_confidence
    return SentimentScore(
        score=max(-1.0, min(1.0, weighted)),
        confidence=total_confidence / len(items),
        matches=sum(item.matches for item in items),
    )


def top_terms(texts: Iterable[str], limit: int = 5, min_length: int = 5) -> list[str]:
    """Most frequent words of at least `min_length` characters across texts."""
    counts: Counter = Counter()
    for text in texts:
        for word in _WORD_RE.findall((text or "").lower()):
            if len(word) >= min_length and word not in _TOPIC_STOPWORDS:
                counts[word] += 1
    return [word for word, _ in counts.most_common(limit)]
