"""
Multi-factor decision engine.

Turns a market snapshot and its signal bundle into a trading Decision:

1. Eligibility filters (all evaluated, every failure reported)
2. Five scoring factors, each in [0, 1]
3. Weighted composite and integer confidence
4. Strategy selection (breaking-news, sentiment-arbitrage, none)
5. Action and outcome from the aggregated sentiment direction
6. Confidence-scaled, Kelly-fractioned position size
7. Optional refinement by the language-model advisor, falling back to the
   rule-based decision whenever the advisor is unavailable or its response
   fails validation

Business conditions never raise; only a structurally invalid snapshot
raises InvalidSnapshotError.
"""

import logging
from dataclasses import dataclass, replace
from typing import Optional

from trader.config import Config
from trader.errors import IneligibilityError
from trader.llm_advisor import LLMAdvisor
from trader.models import (
    ACTION_BUY,
    ACTION_HOLD,
    ACTION_NONE,
    TRADE_ACTIONS,
    Decision,
    MarketSnapshot,
    ScoringFactors,
    SignalBundle,
    SENTIMENT_SOURCE_WEIGHTS,
    STRATEGY_BREAKING_NEWS,
    STRATEGY_NONE,
    STRATEGY_SENTIMENT_ARBITRAGE,
    URGENCY_IMMEDIATE,
    URGENCY_NORMAL,
    URGENCY_PATIENT,
)
from trader.utils import clamp, format_currency

# Configure module logger
logger = logging.getLogger(__name__)

DIRECTION_THRESHOLD = 0.1
STOP_LOSS_PCT = 0.15


@dataclass(frozen=True)
class StrategyProfile:
    """Sizing profile for a named strategy."""
    name: str
    base_size: float
    max_size: float


STRATEGIES: dict[str, StrategyProfile] = {
    STRATEGY_BREAKING_NEWS: StrategyProfile(STRATEGY_BREAKING_NEWS, base_size=40.0, max_size=75.0),
    STRATEGY_SENTIMENT_ARBITRAGE: StrategyProfile(STRATEGY_SENTIMENT_ARBITRAGE, base_size=50.0, max_size=100.0),
}

# Strategy thresholds
BREAKING_NEWS_MIN_CATALYST = 0.6
BREAKING_NEWS_MIN_EDGE = 0.3
ARBITRAGE_MIN_EDGE = 0.20
ARBITRAGE_MIN_LIQUIDITY = 2000.0
ARBITRAGE_MIN_HOURS = 12.0


def aggregated_sentiment(bundle: SignalBundle) -> float:
    """Weighted blend of news, social and community sentiment in [-1, 1]."""
    return bundle.aggregated_sentiment


def average_confidence(bundle: SignalBundle) -> float:
    """Mean confidence of the directional sources."""
    return sum(bundle.get(source).confidence for source in SENTIMENT_SOURCE_WEIGHTS) / len(SENTIMENT_SOURCE_WEIGHTS)


def market_sentiment(snapshot: MarketSnapshot) -> float:
    """Market-implied sentiment: price mapped from [0, 1] to [-1, 1]."""
    return (snapshot.price - 0.5) * 2.0


def sentiment_edge(snapshot: MarketSnapshot, bundle: SignalBundle) -> float:
    gap = abs(aggregated_sentiment(bundle) - market_sentiment(snapshot))
    return clamp(gap * average_confidence(bundle))


def technical_momentum(bundle: SignalBundle) -> float:
    technicals = bundle.technicals
    return clamp(
        technicals.get("price_momentum", 0.0) * 0.4
        + technicals.get("volume_trend", 0.0) * 0.3
        + technicals.get("market_efficiency", 0.0) * 0.3
    )


def liquidity_quality(snapshot: MarketSnapshot) -> float:
    liquidity_score = min(1.0, snapshot.liquidity / 10000.0)
    spread_score = max(0.0, 1.0 - snapshot.spread / 0.05)
    volume_score = min(1.0, snapshot.volume_24h / 2000.0)
    return clamp(liquidity_score * 0.4 + spread_score * 0.4 + volume_score * 0.2)


def timing_urgency(snapshot: MarketSnapshot) -> float:
    """
    Bucketed preference for markets closing in 12-24 hours.
    """
    hours = snapshot.hours_to_close
    if hours < 6:
        return 0.3
    if hours > 48:
        return 0.6
    if 12 <= hours <= 24:
        return 1.0
    return 0.7


def catalyst_strength(bundle: SignalBundle) -> float:
    score = 0.4 if bundle.breaking_news else 0.0
    score += min(0.3, bundle.news_count / 10.0)
    score += clamp(bundle.news_credibility) * 0.3
    return clamp(score)


def compute_factors(snapshot: MarketSnapshot, bundle: SignalBundle) -> ScoringFactors:
    return ScoringFactors(
        sentiment_edge=sentiment_edge(snapshot, bundle),
        technical_momentum=technical_momentum(bundle),
        liquidity_quality=liquidity_quality(snapshot),
        timing_urgency=timing_urgency(snapshot),
        catalyst_strength=catalyst_strength(bundle),
    )


class DecisionEngine:
    """
    Rule-based scoring with optional language-model refinement.
    """

    def __init__(
        self,
        advisor: Optional[LLMAdvisor] = None,
        use_llm: Optional[bool] = None,
        confidence_threshold: Optional[int] = None,
        kelly_fraction: Optional[float] = None,
        max_single_trade: Optional[float] = None,
        min_liquidity: Optional[float] = None,
        min_daily_volume: Optional[float] = None,
        max_time_to_close_hours: Optional[float] = None,
        max_spread: Optional[float] = None
    ):
        """
        Initialize the engine. Every None argument falls back to Config.

        Args:
            advisor: Language-model advisor. If None and LLM decisions are
                enabled, a default LLMAdvisor is created
            use_llm: Whether to consult the advisor (Config.LLM_DECISIONS_ENABLED)
            confidence_threshold: Minimum confidence to trade (Config.CONFIDENCE_THRESHOLD)
            kelly_fraction: Position size multiplier (Config.KELLY_FRACTION)
            max_single_trade: Global per-trade cap (Config.MAX_SINGLE_TRADE)
            min_liquidity: Eligibility filter (Config.MIN_LIQUIDITY_USD)
            min_daily_volume: Eligibility filter (Config.MIN_VOLUME_24H_USD)
            max_time_to_close_hours: Eligibility filter (Config.MAX_TIME_TO_CLOSE_HOURS)
            max_spread: Eligibility filter (Config.MAX_SPREAD)
        """
        self.use_llm = Config.LLM_DECISIONS_ENABLED if use_llm is None else use_llm
        self.advisor = advisor if advisor is not None else (LLMAdvisor() if self.use_llm else None)
        self.confidence_threshold = Config.CONFIDENCE_THRESHOLD if confidence_threshold is None else confidence_threshold
        self.kelly_fraction = Config.KELLY_FRACTION if kelly_fraction is None else kelly_fraction
        self.max_single_trade = Config.MAX_SINGLE_TRADE if max_single_trade is None else max_single_trade
        self.min_liquidity = Config.MIN_LIQUIDITY_USD if min_liquidity is None else min_liquidity
        self.min_daily_volume = Config.MIN_VOLUME_24H_USD if min_daily_volume is None else min_daily_volume
        self.max_time_to_close_hours = (
            Config.MAX_TIME_TO_CLOSE_HOURS if max_time_to_close_hours is None else max_time_to_close_hours
        )
        self.max_spread = Config.MAX_SPREAD if max_spread is None else max_spread

    def decide(self, snapshot: MarketSnapshot, bundle: SignalBundle) -> Decision:
        """
        Produce the final decision for a market.

        Raises:
            InvalidSnapshotError: If the snapshot is structurally invalid
        """
        decision = self.rule_decision(snapshot, bundle)
        if decision.action == ACTION_NONE or not self.use_llm or self.advisor is None:
            return decision

        refined = self._refine_with_advisor(snapshot, bundle, decision)
        return refined if refined is not None else decision

    def check_filters(self, snapshot: MarketSnapshot) -> list[tuple[str, str]]:
        """
        Evaluate every eligibility filter.

        Returns:
            List of (filter_name, description) for each failed filter
        """
        failures: list[tuple[str, str]] = []

        if snapshot.liquidity < self.min_liquidity:
            failures.append((
                "liquidity",
                f"liquidity {format_currency(snapshot.liquidity)} below minimum {format_currency(self.min_liquidity)}",
            ))

        hours = snapshot.hours_to_close
        if hours <= 0 or hours > self.max_time_to_close_hours:
            failures.append((
                "time_to_close",
                f"time to close {hours:.1f}h outside (0, {self.max_time_to_close_hours:.0f}h]",
            ))

        if snapshot.volume_24h < self.min_daily_volume:
            failures.append((
                "daily_volume",
                f"daily volume {format_currency(snapshot.volume_24h)} below minimum "
                f"{format_currency(self.min_daily_volume)}",
            ))

        if snapshot.spread > self.max_spread:
            failures.append((
                "spread",
                f"spread {snapshot.spread:.3f} above maximum {self.max_spread:.3f}",
            ))

        if not snapshot.order_book_enabled:
            failures.append(("order_book", "order book not enabled"))

        return failures

    def ensure_eligible(self, snapshot: MarketSnapshot) -> None:
        """
        Raises:
            IneligibilityError: Listing every failed filter
        """
        failures = self.check_filters(snapshot)
        if failures:
            raise IneligibilityError(
                [name for name, _ in failures],
                [text for _, text in failures],
            )

    def rule_decision(self, snapshot: MarketSnapshot, bundle: SignalBundle) -> Decision:
        """
        Deterministic decision from filters, factors and strategy rules.

        Raises:
            InvalidSnapshotError: If the snapshot is structurally invalid
        """
        snapshot.validate()

        try:
            self.ensure_eligible(snapshot)
        except IneligibilityError as e:
            logger.info(f"Market {snapshot.id} ineligible: {', '.join(e.failed_filters)}")
            return Decision(
                market_id=snapshot.id,
                action=ACTION_NONE,
                confidence=0,
                position_size=0.0,
                strategy=STRATEGY_NONE,
                rationale="Market ineligible: " + "; ".join(e.details),
                failed_filters=tuple(e.failed_filters),
            )

        factors = compute_factors(snapshot, bundle)
        confidence = factors.confidence()
        strategy = self.select_strategy(snapshot, bundle, factors)
        direction = aggregated_sentiment(bundle)

        # Non-tradeable markets stay NONE; HOLD only once the trade gate is passed
        action = ACTION_NONE
        outcome: Optional[str] = None
        if strategy != STRATEGY_NONE and confidence >= self.confidence_threshold:
            action = ACTION_HOLD
            if direction > DIRECTION_THRESHOLD or direction < -DIRECTION_THRESHOLD:
                action = ACTION_BUY
                outcome = self.select_outcome(snapshot, bundle, direction)

        size = self.position_size(strategy, confidence) if action in TRADE_ACTIONS else 0.0
        if action in TRADE_ACTIONS and (size <= 0 or outcome is None):
            action, outcome, size = ACTION_HOLD, None, 0.0

        decision = Decision(
            market_id=snapshot.id,
            action=action,
            outcome=outcome,
            confidence=confidence,
            position_size=size,
            strategy=strategy,
            rationale=self._rationale(snapshot, factors, strategy, direction, action, outcome, confidence),
            risk_factors=tuple(self.risk_factors(snapshot, confidence)),
            factors=factors,
            execution_urgency=self.execution_urgency(strategy, confidence, factors),
            stop_loss_price=self._stop_loss(snapshot, strategy, action, outcome),
        )

        logger.info(
            f"Rule decision for {snapshot.id}: {decision.action} {decision.outcome or ''} "
            f"confidence={confidence} strategy={strategy} size={size:.2f}"
        )
        return decision

    def select_strategy(self, snapshot: MarketSnapshot, bundle: SignalBundle, factors: ScoringFactors) -> str:
        if (
            bundle.breaking_news
            and factors.catalyst_strength > BREAKING_NEWS_MIN_CATALYST
            and factors.sentiment_edge > BREAKING_NEWS_MIN_EDGE
        ):
            return STRATEGY_BREAKING_NEWS

        if (
            factors.sentiment_edge > ARBITRAGE_MIN_EDGE
            and snapshot.liquidity >= ARBITRAGE_MIN_LIQUIDITY
            and snapshot.hours_to_close >= ARBITRAGE_MIN_HOURS
        ):
            return STRATEGY_SENTIMENT_ARBITRAGE

        return STRATEGY_NONE

    def eligible_outcomes(self, snapshot: MarketSnapshot) -> list[str]:
        """Outcomes that are still tradeable (not priced near 0 or 1)."""
        if not snapshot.outcome_prices:
            return list(snapshot.outcomes)
        return [
            label for label, price in zip(snapshot.outcomes, snapshot.outcome_prices)
            if 0.01 < price < 0.99
        ]

    def select_outcome(self, snapshot: MarketSnapshot, bundle: SignalBundle, direction: float) -> Optional[str]:
        """
        Pick the outcome that matches the sentiment direction.

        Binary markets: positive -> "Yes", negative -> "No". Multi-outcome
        markets rank outcomes by mentions in trending topics, then by price;
        positive picks the leader, negative the strongest alternative.
        """
        eligible = self.eligible_outcomes(snapshot)
        if not eligible:
            return None

        if snapshot.is_binary:
            wanted = "yes" if direction > 0 else "no"
            for label in eligible:
                if label.strip().lower() == wanted:
                    return label
            return None

        topics = " ".join(bundle.trending_topics).lower()
        prices = dict(zip(snapshot.outcomes, snapshot.outcome_prices))

        def rank(label: str) -> tuple[int, float]:
            tokens = [t for t in label.lower().split() if len(t) > 2]
            mentions = sum(topics.count(token) for token in tokens)
            return (mentions, prices.get(label, 0.0))

        ranked = sorted(eligible, key=rank, reverse=True)
        if direction > 0:
            return ranked[0]
        return ranked[1] if len(ranked) > 1 else None

    def position_size(self, strategy: str, confidence: int) -> float:
        """
        base * clamp((confidence - 50) / 50) * kelly, capped by the strategy
        maximum and the global per-trade cap.
        """
        profile = STRATEGIES.get(strategy)
        if profile is None:
            return 0.0

        scale = clamp((confidence - 50) / 50.0)
        size = profile.base_size * scale * self.kelly_fraction
        return round(min(size, profile.max_size, self.max_single_trade), 2)

    def risk_factors(self, snapshot: MarketSnapshot, confidence: int) -> list[str]:
        risks: list[str] = []
        if snapshot.liquidity < 5000:
            risks.append("Low liquidity")
        if snapshot.spread > 0.03:
            risks.append("High spread")
        if snapshot.hours_to_close < 24:
            risks.append("Short time to close")
        if confidence < self.confidence_threshold:
            risks.append("Moderate confidence")
        return risks

    @staticmethod
    def execution_urgency(strategy: str, confidence: int, factors: ScoringFactors) -> str:
        if strategy == STRATEGY_BREAKING_NEWS:
            return URGENCY_IMMEDIATE
        if confidence > 85 and factors.timing_urgency < 0.5:
            return URGENCY_IMMEDIATE
        if confidence < 75:
            return URGENCY_PATIENT
        return URGENCY_NORMAL

    @staticmethod
    def _stop_loss(snapshot: MarketSnapshot, strategy: str, action: str, outcome: Optional[str]) -> Optional[float]:
        if strategy != STRATEGY_BREAKING_NEWS or action not in TRADE_ACTIONS or outcome is None:
            return None
        price = snapshot.outcome_price(outcome)
        if price is None:
            price = snapshot.price
        return round(price * (1.0 - STOP_LOSS_PCT), 4)

    @staticmethod
    def _rationale(
        snapshot: MarketSnapshot,
        factors: ScoringFactors,
        strategy: str,
        direction: float,
        action: str,
        outcome: Optional[str],
        confidence: int
    ) -> str:
        parts = [
            f"Composite confidence {confidence}/100 "
            f"(edge {factors.sentiment_edge:.2f}, momentum {factors.technical_momentum:.2f}, "
            f"liquidity {factors.liquidity_quality:.2f}, timing {factors.timing_urgency:.2f}, "
            f"catalyst {factors.catalyst_strength:.2f}).",
            f"Aggregated sentiment {direction:+.2f} vs market {market_sentiment(snapshot):+.2f}.",
        ]
        if strategy == STRATEGY_NONE:
            parts.append("No strategy conditions met.")
        else:
            parts.append(f"Strategy: {strategy}.")
        if action in TRADE_ACTIONS:
            parts.append(f"{action} {outcome}.")
        elif action == ACTION_HOLD:
            parts.append("Holding.")
        else:
            parts.append("Below the trade threshold; no action.")
        return " ".join(parts)

    def _refine_with_advisor(
        self,
        snapshot: MarketSnapshot,
        bundle: SignalBundle,
        rule: Decision
    ) -> Optional[Decision]:
        """
        Ask the advisor for a refinement and validate it against the market.

        Returns:
            Refined Decision, or None to keep the rule decision
        """
        eligible = self.eligible_outcomes(snapshot)
        context = {
            "market": {
                "id": snapshot.id,
                "question": snapshot.question,
                "price": snapshot.price,
                "liquidity": snapshot.liquidity,
                "volume_24h": snapshot.volume_24h,
                "spread": snapshot.spread,
                "hours_to_close": snapshot.hours_to_close,
                "outcomes": list(snapshot.outcomes),
                "outcome_prices": list(snapshot.outcome_prices),
            },
            "signals": {name: fragment for name, fragment in bundle.to_dict().items()},
            "factors": rule.factors.as_dict() if rule.factors else {},
            "rule_decision": rule.to_dict(),
            "eligible_outcomes": eligible,
            "max_amount": self.max_single_trade,
        }

        try:
            proposal = self.advisor.propose(context)
        except Exception as e:
            logger.warning(f"Decision advisor failed for {snapshot.id}: {e}", exc_info=True)
            return None

        if not proposal:
            logger.info(f"Using rule-based decision for {snapshot.id}")
            return None

        action = proposal["action"]
        outcome = proposal.get("outcome")
        confidence = proposal["confidence"]
        amount = min(proposal["amount"], self.max_single_trade)
        profile = STRATEGIES.get(rule.strategy)
        if profile is not None:
            amount = min(amount, profile.max_size)

        if action in TRADE_ACTIONS:
            if outcome not in eligible:
                logger.warning(f"Advisor proposed ineligible outcome '{outcome}' for {snapshot.id}; ignoring proposal")
                return None
            if amount <= 0:
                logger.warning(f"Advisor proposed non-positive amount for {snapshot.id}; ignoring proposal")
                return None
            if rule.strategy == STRATEGY_NONE or confidence < self.confidence_threshold:
                action, outcome, amount = ACTION_HOLD, None, 0.0
        else:
            outcome, amount = None, 0.0

        rationale = proposal.get("rationale") or rule.rationale
        refined = replace(
            rule,
            action=action,
            outcome=outcome,
            confidence=confidence,
            position_size=round(amount, 2),
            rationale=rationale,
            risk_factors=tuple(self.risk_factors(snapshot, confidence)),
            source="llm",
            stop_loss_price=self._stop_loss(snapshot, rule.strategy, action, outcome),
        )
        logger.info(
            f"Advisor decision for {snapshot.id}: {refined.action} {refined.outcome or ''} "
            f"confidence={refined.confidence} size={refined.position_size:.2f}"
        )
        return refined
