"""
Shared pytest fixtures for the trader test suite.
"""

from datetime import timedelta

import pytest

from trader.config import Config
from trader.models import (
    ACTION_BUY,
    MarketSnapshot,
    SignalBundle,
    SignalFragment,
    SOURCE_COMMUNITY,
    SOURCE_MARKET,
    SOURCE_NEWS,
    SOURCE_SOCIAL,
    STRATEGY_SENTIMENT_ARBITRAGE,
    Decision,
)
from trader.security import reset_security_manager
from trader.storage import Storage


@pytest.fixture(autouse=True)
def isolate_config(monkeypatch):
    """Keep tests offline: no Telegram, no LLM key, dry-run on."""
    monkeypatch.setattr(Config, "TELEGRAM_BOT_TOKEN", None)
    monkeypatch.setattr(Config, "TELEGRAM_CHAT_ID", None)
    monkeypatch.setattr(Config, "ANTHROPIC_API_KEY", None)
    monkeypatch.setattr(Config, "DRY_RUN", True)
    reset_security_manager()
    yield
    reset_security_manager()


class FakeClock:
    """Manually advanced monotonic clock; `sleep` advances it."""

    def __init__(self, start: float = 0.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def storage(tmp_path):
    return Storage(db_path=tmp_path / "trader.db")


@pytest.fixture
def make_snapshot():
    """Factory for a liquid, eligible binary market; override any field."""
    def _make(**overrides) -> MarketSnapshot:
        fields = {
            "id": "m1",
            "question": "Will the Federal Reserve cut interest rates in March?",
            "price": 0.3,
            "liquidity": 10000.0,
            "volume_24h": 2500.0,
            "time_to_close": timedelta(hours=18),
            "spread": 0.01,
            "outcomes": ("Yes", "No"),
            "outcome_prices": (0.3, 0.7),
            "total_volume": 30000.0,
        }
        fields.update(overrides)
        return MarketSnapshot(**fields)

    return _make


@pytest.fixture
def make_bundle():
    """
    Factory for a complete signal bundle.

    All directional sources share `sentiment` and `confidence`; news metadata
    and market technicals can be overridden.
    """
    def _make(
        sentiment: float = 0.8,
        confidence: float = 0.8,
        market_id: str = "m1",
        news_metadata: dict = None,
        technicals: dict = None,
        trending_topics: list = None,
    ) -> SignalBundle:
        news_meta = {"breaking_news": False, "news_count": 5, "source_credibility": 0.8}
        news_meta.update(news_metadata or {})
        if trending_topics is not None:
            news_meta["trending_topics"] = trending_topics
        market_technicals = {"price_momentum": 0.4, "volume_trend": 1.0, "market_efficiency": 0.99}
        market_technicals.update(technicals or {})

        return SignalBundle(
            market_id=market_id,
            fragments={
                SOURCE_NEWS: SignalFragment(SOURCE_NEWS, sentiment, confidence, news_meta),
                SOURCE_SOCIAL: SignalFragment(SOURCE_SOCIAL, sentiment, confidence, {}),
                SOURCE_COMMUNITY: SignalFragment(SOURCE_COMMUNITY, sentiment, confidence, {}),
                SOURCE_MARKET: SignalFragment(SOURCE_MARKET, 0.0, 0.9, {"technicals": market_technicals}),
            },
        )

    return _make


@pytest.fixture
def make_decision():
    def _make(**overrides) -> Decision:
        fields = {
            "market_id": "m1",
            "action": ACTION_BUY,
            "confidence": 80,
            "position_size": 10.0,
            "strategy": STRATEGY_SENTIMENT_ARBITRAGE,
            "rationale": "Sentiment well ahead of price",
            "outcome": "Yes",
        }
        fields.update(overrides)
        return Decision(**fields)

    return _make
