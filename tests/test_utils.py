"""
Tests for the shared helpers in trader.utils.
"""

import pytest

from trader.utils import (
    backoff_delay,
    clamp,
    extract_keywords,
    format_currency,
    safe_float,
    safe_json_loads,
)


class TestSafeJsonLoads:
    def test_plain_object(self):
        assert safe_json_loads('{"a": 1}') == {"a": 1}

    def test_fenced_object_with_prose(self):
        text = 'Sure, here it is:\n```json\n{"action": "HOLD"}\n```\nLet me know.'

        assert safe_json_loads(text) == {"action": "HOLD"}

    def test_unparseable_returns_default(self):
        assert safe_json_loads("no json here", default={}) == {}
        assert safe_json_loads('{"broken": ', default=None) is None
        assert safe_json_loads(None) is None


class TestNumbers:
    def test_clamp(self):
        assert clamp(1.4) == 1.0
        assert clamp(-3.0, -1.0, 1.0) == -1.0
        assert clamp(0.25) == 0.25

    def test_clamp_rejects_inverted_bounds(self):
        with pytest.raises(ValueError):
            clamp(0.5, 1.0, 0.0)

    def test_safe_float(self):
        assert safe_float("12.5") == 12.5
        assert safe_float(3) == 3.0
        assert safe_float(None, default=-1.0) == -1.0
        assert safe_float("n/a") == 0.0
        assert safe_float(True) == 0.0

    def test_format_currency(self):
        assert format_currency(1234.5) == "$1,234.50"


class TestExtractKeywords:
    def test_drops_stopwords_and_short_words(self):
        assert extract_keywords("Will the Fed cut rates before the end of 2026?") == ["fed", "cut", "rates", "2026"]

    def test_limit_and_deduplication(self):
        assert extract_keywords("Trump Trump Biden Harris Newsom Vance DeSantis", limit=3) == [
            "trump", "biden", "harris"
        ]

    def test_empty_text(self):
        assert extract_keywords("") == []


class TestBackoff:
    def test_delay_grows_with_jitter_bounds(self):
        for attempt, base in ((0, 1.0), (1, 2.0), (2, 4.0)):
            delay = backoff_delay(attempt, 1.0, max_delay=30.0)
            assert base * 0.9 <= delay <= base * 1.1

    def test_delay_is_capped(self):
        assert backoff_delay(10, 1.0, max_delay=5.0) <= 5.5
