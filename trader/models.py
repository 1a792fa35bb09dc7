"""
Data models for the autonomous prediction market trader.

This module defines the core dataclasses used throughout the application
for representing market snapshots, intelligence signals, scoring factors,
trade decisions and trade records.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Optional

from trader.errors import InvalidSnapshotError


# Action labels
ACTION_BUY = "BUY"
ACTION_SELL = "SELL"
ACTION_HOLD = "HOLD"
ACTION_NONE = "NONE"
TRADE_ACTIONS = (ACTION_BUY, ACTION_SELL)

# Strategy tags
STRATEGY_BREAKING_NEWS = "breaking-news"
STRATEGY_SENTIMENT_ARBITRAGE = "sentiment-arbitrage"
STRATEGY_NONE = "none"

# Trade record statuses. CANCELLED is reserved for external cleanup jobs.
STATUS_PENDING = "PENDING"
STATUS_EXECUTED = "EXECUTED"
STATUS_FAILED = "FAILED"
STATUS_CANCELLED = "CANCELLED"
TERMINAL_STATUSES = (STATUS_EXECUTED, STATUS_FAILED)

# Execution urgency hints
URGENCY_IMMEDIATE = "IMMEDIATE"
URGENCY_NORMAL = "NORMAL"
URGENCY_PATIENT = "PATIENT"

# Intelligence source names
SOURCE_NEWS = "news"
SOURCE_SOCIAL = "social"
SOURCE_COMMUNITY = "community"
SOURCE_MARKET = "market"
SOURCE_NAMES = (SOURCE_NEWS, SOURCE_SOCIAL, SOURCE_COMMUNITY, SOURCE_MARKET)

# Fixed factor weights; must sum to 1.0
SCORING_WEIGHTS: dict[str, float] = {
    "sentiment_edge": 0.40,
    "technical_momentum": 0.25,
    "liquidity_quality": 0.20,
    "timing_urgency": 0.10,
    "catalyst_strength": 0.05,
}

if not math.isclose(sum(SCORING_WEIGHTS.values()), 1.0, abs_tol=1e-9):
    raise ValueError("Scoring weights must sum to 1.0")

# Blend of directional sources into one sentiment
SENTIMENT_SOURCE_WEIGHTS: dict[str, float] = {
    SOURCE_NEWS: 0.3,
    SOURCE_SOCIAL: 0.4,
    SOURCE_COMMUNITY: 0.3,
}


@dataclass(frozen=True)
class MarketSnapshot:
    """
    Point-in-time view of a prediction market.

    Attributes:
        id: Unique market identifier
        question: Market question text
        price: Current implied price of the leading/Yes outcome (0.0 to 1.0)
        liquidity: Available liquidity in USD
        volume_24h: 24-hour trading volume in USD
        time_to_close: Duration until the market closes
        spread: Best bid/ask spread
        outcomes: Ordered outcome labels
        outcome_prices: Price for each outcome, aligned with outcomes
        description: Market description
        order_book_enabled: Whether the market accepts order book trades
        active: Whether the market is open
        category: Market category/topic
        end_date: Market close date
        total_volume: Lifetime trading volume in USD
    """
    id: str
    question: str
    price: float
    liquidity: float
    volume_24h: float
    time_to_close: Optional[timedelta]
    spread: float
    outcomes: tuple[str, ...] = ("Yes", "No")
    outcome_prices: tuple[float, ...] = ()
    description: str = ""
    order_book_enabled: bool = True
    active: bool = True
    category: str = ""
    end_date: Optional[datetime] = None
    total_volume: float = 0.0

    def validate(self) -> None:
        """
        Check structural validity.

        Raises:
            InvalidSnapshotError: If a required field is missing or malformed
        """
        problems: list[str] = []

        if not self.id:
            problems.append("id is missing")
        if not self.question:
            problems.append("question is missing")
        if self.price is None or not (0.0 <= self.price <= 1.0):
            problems.append(f"price {self.price} outside [0, 1]")
        if self.liquidity is None or self.liquidity < 0:
            problems.append("liquidity is missing or negative")
        if self.volume_24h is None or self.volume_24h < 0:
            problems.append("volume_24h is missing or negative")
        if self.spread is None or self.spread < 0:
            problems.append("spread is missing or negative")
        if self.time_to_close is None:
            problems.append("time_to_close is missing")
        if not self.outcomes:
            problems.append("outcomes are missing")
        if self.outcome_prices and len(self.outcome_prices) != len(self.outcomes):
            problems.append(
                f"{len(self.outcomes)} outcomes but {len(self.outcome_prices)} prices"
            )

        if problems:
            raise InvalidSnapshotError(
                f"Invalid snapshot {self.id or '<unknown>'}: {'; '.join(problems)}"
            )

    @property
    def hours_to_close(self) -> float:
        if self.time_to_close is None:
            return 0.0
        return self.time_to_close.total_seconds() / 3600.0

    @property
    def is_binary(self) -> bool:
        labels = {label.strip().lower() for label in self.outcomes}
        return labels == {"yes", "no"}

    @property
    def is_multi_outcome(self) -> bool:
        return not self.is_binary

    def outcome_price(self, label: str) -> Optional[float]:
        for outcome, price in zip(self.outcomes, self.outcome_prices):
            if outcome == label:
                return price
        return None


@dataclass(frozen=True)
class SignalFragment:
    """
    One intelligence source's reading for one market.

    Attributes:
        source: Source name (news, social, community, market)
        sentiment: Directional sentiment (-1.0 to 1.0)
        confidence: Confidence in the reading (0.0 to 1.0)
        metadata: Source-specific details (breaking_news, trending_topics, ...)
        degraded: True when this is a neutral substitute for a failed source
    """
    source: str
    sentiment: float
    confidence: float
    metadata: dict[str, Any] = field(default_factory=dict)
    degraded: bool = False

    @classmethod
    def neutral(cls, source: str, reason: str = "") -> "SignalFragment":
        metadata = {"reason": reason} if reason else {}
        return cls(source=source, sentiment=0.0, confidence=0.0, metadata=metadata, degraded=True)

    def to_dict(self) -> dict:
        return {
            "source": self.source,
            "sentiment": self.sentiment,
            "confidence": self.confidence,
            "metadata": self.metadata,
            "degraded": self.degraded,
        }


@dataclass
class SignalBundle:
    """
    Complete set of source readings for one decision request.

    Every name in SOURCE_NAMES is always present; failed sources carry a
    neutral fragment.
    """
    market_id: str
    fragments: dict[str, SignalFragment] = field(default_factory=dict)
    created_at: datetime = field(default_factory=datetime.utcnow)

    def get(self, source: str) -> SignalFragment:
        return self.fragments.get(source) or SignalFragment.neutral(source, "missing")

    @property
    def degraded_sources(self) -> list[str]:
        return [name for name in SOURCE_NAMES if self.get(name).degraded]

    @property
    def breaking_news(self) -> bool:
        return bool(self.get(SOURCE_NEWS).metadata.get("breaking_news", False))

    @property
    def news_count(self) -> int:
        return int(self.get(SOURCE_NEWS).metadata.get("news_count", 0) or 0)

    @property
    def news_credibility(self) -> float:
        return float(self.get(SOURCE_NEWS).metadata.get("source_credibility", 0.0) or 0.0)

    @property
    def trending_topics(self) -> list[str]:
        topics: list[str] = []
        for name in (SOURCE_NEWS, SOURCE_SOCIAL, SOURCE_COMMUNITY):
            for topic in self.get(name).metadata.get("trending_topics", []) or []:
                if topic not in topics:
                    topics.append(topic)
        return topics

    @property
    def technicals(self) -> dict[str, float]:
        return dict(self.get(SOURCE_MARKET).metadata.get("technicals", {}) or {})

    @property
    def aggregated_sentiment(self) -> float:
        """Weighted blend of news, social and community sentiment in [-1, 1]."""
        total = sum(weight * self.get(source).sentiment for source, weight in SENTIMENT_SOURCE_WEIGHTS.items())
        return max(-1.0, min(1.0, total))

    def to_dict(self) -> dict:
        return {name: self.get(name).to_dict() for name in SOURCE_NAMES}


@dataclass(frozen=True)
class ScoringFactors:
    """
    The five normalized scoring factors, each in [0.0, 1.0].
    """
    sentiment_edge: float
    technical_momentum: float
    liquidity_quality: float
    timing_urgency: float
    catalyst_strength: float

    def as_dict(self) -> dict[str, float]:
        return {
            "sentiment_edge": self.sentiment_edge,
            "technical_momentum": self.technical_momentum,
            "liquidity_quality": self.liquidity_quality,
            "timing_urgency": self.timing_urgency,
            "catalyst_strength": self.catalyst_strength,
        }

    def composite(self) -> float:
        """Weighted sum of the factors."""
        factors = self.as_dict()
        return sum(SCORING_WEIGHTS[name] * factors[name] for name in SCORING_WEIGHTS)

    def confidence(self) -> int:
        """
        Composite score as an integer percentage.

        Rounds half up after trimming float noise, so 0.715 becomes 72.
        """
        scaled = round(self.composite() * 100.0, 6)
        return int(max(0, min(100, math.floor(scaled + 0.5))))


@dataclass(frozen=True)
class Decision:
    """
    Trading decision for one market.

    Attributes:
        market_id: ID of the market this decision applies to
        action: BUY, SELL, HOLD or NONE
        outcome: Outcome label to trade, if any
        confidence: Composite confidence (0 to 100)
        position_size: Amount to trade in USD (0 for HOLD/NONE)
        strategy: breaking-news, sentiment-arbitrage or none
        rationale: Human-readable explanation
        risk_factors: Identified risks
        factors: Scoring factor breakdown (None when filters failed)
        failed_filters: Names of failed eligibility filters
        source: "rules" or "llm"
        execution_urgency: IMMEDIATE, NORMAL or PATIENT
        stop_loss_price: Optional stop-loss price
        created_at: Timestamp when decision was made
    """
    market_id: str
    action: str
    confidence: int
    position_size: float
    strategy: str
    rationale: str
    outcome: Optional[str] = None
    risk_factors: tuple[str, ...] = ()
    factors: Optional[ScoringFactors] = None
    failed_filters: tuple[str, ...] = ()
    source: str = "rules"
    execution_urgency: str = URGENCY_NORMAL
    stop_loss_price: Optional[float] = None
    created_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def is_trade(self) -> bool:
        return self.action in TRADE_ACTIONS and self.position_size > 0

    def to_dict(self) -> dict:
        return {
            "market_id": self.market_id,
            "action": self.action,
            "outcome": self.outcome,
            "confidence": self.confidence,
            "position_size": self.position_size,
            "strategy": self.strategy,
            "rationale": self.rationale,
            "risk_factors": list(self.risk_factors),
            "factors": self.factors.as_dict() if self.factors else None,
            "failed_filters": list(self.failed_filters),
            "source": self.source,
            "execution_urgency": self.execution_urgency,
            "stop_loss_price": self.stop_loss_price,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class TradeRecord:
    """
    Persisted lifecycle of a single trade.

    Created PENDING right before the first execution attempt; moves to
    EXECUTED or FAILED exactly once.
    """
    id: str
    market_id: str
    action: str
    outcome: Optional[str]
    planned_amount: float
    confidence: int
    rationale: str
    status: str = STATUS_PENDING
    strategy: str = STRATEGY_NONE
    actual_amount: Optional[float] = None
    transaction_ref: Optional[str] = None
    execution_price: Optional[float] = None
    error_message: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


@dataclass
class ExecutionResult:
    """
    Outcome of handing a decision to the execution engine.

    A rejected result means the security manager blocked the trade before
    any external call; no trade record exists in that case.
    """
    success: bool
    status: Optional[str] = None
    trade_id: Optional[str] = None
    transaction_ref: Optional[str] = None
    attempts: int = 0
    error: Optional[str] = None
    rejected: bool = False
    rejection_reason: Optional[str] = None
    dry_run: bool = False
    monitoring_active: bool = False


@dataclass
class PipelineResult:
    """Outcome of processing one market end to end."""
    market_id: str
    decision: Optional[Decision] = None
    execution: Optional[ExecutionResult] = None
    intelligence_record_id: Optional[int] = None
    error: Optional[str] = None
    duration_seconds: float = 0.0

    @property
    def traded(self) -> bool:
        return self.execution is not None and self.execution.success
