"""
Signal aggregator.

Queries every intelligence source for a market and assembles a complete
SignalBundle. Each source goes through the signal cache, its own circuit
breaker and a short retry with backoff; any failure is replaced by a
neutral reading so the aggregator never raises.
"""

import logging
import time
from typing import Callable, Iterable, Optional

from trader.circuit_breaker import CircuitBreaker
from trader.config import Config
from trader.errors import SourceUnavailableError
from trader.models import MarketSnapshot, SignalBundle, SignalFragment, SOURCE_NAMES
from trader.signal_cache import SignalCache, canonical_query_key
from trader.sources import IntelligenceSource, default_sources
from trader.utils import backoff_delay, clamp, extract_keywords

# Configure module logger
logger = logging.getLogger(__name__)

# Sentinel returned by an open breaker
_SHORT_CIRCUITED = object()


class SignalAggregator:
    """
    Owns the sources, one circuit breaker per source, and the signal cache.

    Sources are queried sequentially; the result never depends on order.
    """

    def __init__(
        self,
        sources: Optional[Iterable[IntelligenceSource]] = None,
        cache: Optional[SignalCache] = None,
        breakers: Optional[dict[str, CircuitBreaker]] = None,
        max_retries: Optional[int] = None,
        retry_delay: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep
    ):
        """
        Initialize the aggregator.

        Args:
            sources: Intelligence sources. If None, uses the production sources
            cache: Signal cache. If None, a cache with Config defaults is created
            breakers: Pre-built breakers keyed by source name. Missing ones are
                created with Config defaults
            max_retries: Retries per source call. If None, uses Config.SOURCE_MAX_RETRIES
            retry_delay: Initial backoff delay. If None, uses Config.SOURCE_RETRY_DELAY
            sleep: Sleep function (injectable for tests)
        """
        self.sources: dict[str, IntelligenceSource] = {
            source.name: source for source in (sources if sources is not None else default_sources())
        }
        self.cache = cache if cache is not None else SignalCache()
        self.breakers: dict[str, CircuitBreaker] = dict(breakers) if breakers is not None else {}
        for name in self.sources:
            if name not in self.breakers:
                self.breakers[name] = CircuitBreaker(name)

        self.max_retries = max_retries if max_retries is not None else Config.SOURCE_MAX_RETRIES
        self.retry_delay = retry_delay if retry_delay is not None else Config.SOURCE_RETRY_DELAY
        self._sleep = sleep

    def aggregate(self, snapshot: MarketSnapshot, keywords: Optional[list[str]] = None) -> SignalBundle:
        """
        Build a SignalBundle for a market.

        Args:
            snapshot: Market to research
            keywords: Search keywords. If None, extracted from the question

        Returns:
            SignalBundle with a fragment for every known source name
        """
        if keywords is None:
            keywords = extract_keywords(snapshot.question)

        bundle = SignalBundle(market_id=snapshot.id)
        for name in SOURCE_NAMES:
            source = self.sources.get(name)
            if source is None or not source.available:
                bundle.fragments[name] = SignalFragment.neutral(name, "source not configured")
                continue
            bundle.fragments[name] = self._collect(source, snapshot, keywords)

        degraded = bundle.degraded_sources
        if degraded:
            logger.info(f"Signals for {snapshot.id} degraded for: {', '.join(degraded)}")
        return bundle

    def _collect(self, source: IntelligenceSource, snapshot: MarketSnapshot, keywords: list[str]) -> SignalFragment:
        params = {"market_id": snapshot.id}
        query_key = canonical_query_key(source.name, keywords, params)

        cached = self.cache.get(snapshot.id, query_key)
        if cached is not None:
            logger.debug(f"{source.name}: cache hit for {snapshot.id}")
            return cached

        breaker = self.breakers[source.name]
        try:
            result = breaker.call(
                lambda: _normalize(source.name, self._query_with_retry(source, snapshot.question, keywords, params)),
                _SHORT_CIRCUITED,
            )
        except Exception as e:
            logger.warning(f"{source.name}: unavailable for {snapshot.id}: {e}")
            return SignalFragment.neutral(source.name, str(e))

        if result is _SHORT_CIRCUITED:
            logger.info(f"{source.name}: circuit open, using neutral signal for {snapshot.id}")
            return SignalFragment.neutral(source.name, "circuit open")

        fragment = result
        self.cache.put(snapshot.id, query_key, fragment)
        logger.debug(
            f"{source.name}: sentiment={fragment.sentiment:+.2f} confidence={fragment.confidence:.2f}"
        )
        return fragment

    def _query_with_retry(
        self,
        source: IntelligenceSource,
        market_title: str,
        keywords: list[str],
        params: dict
    ) -> SignalFragment:
        last_error: Optional[Exception] = None
        for attempt in range(self.max_retries + 1):
            try:
                return source.query(market_title, keywords, params)
            except Exception as e:
                last_error = e
                if attempt < self.max_retries:
                    delay = backoff_delay(attempt, self.retry_delay, max_delay=10.0)
                    logger.debug(
                        f"{source.name}: attempt {attempt + 1}/{self.max_retries + 1} failed ({e}); "
                        f"retrying in {delay:.2f}s"
                    )
                    self._sleep(delay)

        raise SourceUnavailableError(source.name, f"failed after {self.max_retries + 1} attempts: {last_error}")

    def get_status(self) -> dict:
        return {
            "breakers": {name: breaker.get_state() for name, breaker in self.breakers.items()},
            "cache": self.cache.get_stats(),
        }


def _normalize(source_name: str, result) -> SignalFragment:
    """Coerce a source result into a clamped, non-degraded fragment."""
    if isinstance(result, SignalFragment):
        sentiment, confidence, metadata = result.sentiment, result.confidence, result.metadata
    elif isinstance(result, dict):
        sentiment = result.get("sentiment", 0.0)
        confidence = result.get("confidence", 0.0)
        metadata = result.get("metadata") or {}
    else:
        raise SourceUnavailableError(source_name, f"unexpected result type {type(result).__name__}")

    return SignalFragment(
        source=source_name,
        sentiment=clamp(float(sentiment or 0.0), -1.0, 1.0),
        confidence=clamp(float(confidence or 0.0)),
        metadata=dict(metadata),
    )
