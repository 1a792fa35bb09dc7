"""
Autonomous trading loop.

One iteration discovers markets, prefilters and ranks them, and runs the
top candidates through the trading pipeline one at a time. A failure on one
market is logged and never aborts the batch.
"""

import logging
import time
from typing import Callable, Optional

from trader import scanner
from trader.config import Config
from trader.models import MarketSnapshot, PipelineResult
from trader.pipeline import TradingPipeline
from trader.telegram_notifier import format_iteration_summary, send_notification

# Configure module logger
logger = logging.getLogger(__name__)

# Discovery prefilter thresholds
PREFILTER_MIN_LIQUIDITY = 1000.0
PREFILTER_MIN_VOLUME = 100.0
PREFILTER_MIN_HOURS_TO_CLOSE = 24.0
BINARY_MIN_PRICE = 0.05
BINARY_MAX_PRICE = 0.95
MULTI_MAX_PRICE = 0.98
MULTI_MIN_LIVE_PRICE = 0.01
MULTI_MIN_LIVE_OUTCOMES = 2


def passes_prefilter(snapshot: MarketSnapshot) -> bool:
    """
    Cheap discovery filter applied before any intelligence is gathered.

    Multi-outcome markets are kept only while at least two outcomes are
    still priced and none is close to certain.
    """
    if not snapshot.active:
        return False
    if snapshot.liquidity < PREFILTER_MIN_LIQUIDITY:
        return False
    if snapshot.volume_24h < PREFILTER_MIN_VOLUME:
        return False
    if snapshot.hours_to_close < PREFILTER_MIN_HOURS_TO_CLOSE:
        return False

    if snapshot.is_binary:
        return BINARY_MIN_PRICE <= snapshot.price <= BINARY_MAX_PRICE

    prices = list(snapshot.outcome_prices)
    if not prices or max(prices) > MULTI_MAX_PRICE:
        return False
    return sum(1 for p in prices if p > MULTI_MIN_LIVE_PRICE) >= MULTI_MIN_LIVE_OUTCOMES


class AutonomousLoop:
    """
    Discovery, ranking and sequential processing of markets.
    """

    def __init__(
        self,
        pipeline: TradingPipeline,
        fetch_markets: Optional[Callable[[int], list[MarketSnapshot]]] = None,
        markets_to_discover: Optional[int] = None,
        top_n: Optional[int] = None,
        inter_market_delay: Optional[float] = None,
        notifier: Optional[Callable[[str], bool]] = send_notification,
        sleep: Callable[[float], None] = time.sleep
    ):
        """
        Initialize the loop.

        Args:
            pipeline: Per-market trading pipeline
            fetch_markets: Market discovery function. If None, uses scanner.fetch_markets
            markets_to_discover: Discovery limit. If None, uses Config.MARKETS_TO_DISCOVER
            top_n: Markets processed per iteration. If None, uses Config.MARKETS_PER_ITERATION
            inter_market_delay: Pause between markets. If None, uses Config.INTER_MARKET_DELAY
            notifier: Receives the iteration summary; None disables it
            sleep: Sleep function (injectable for tests)
        """
        self.pipeline = pipeline
        self.fetch_markets = fetch_markets or scanner.fetch_markets
        self.markets_to_discover = markets_to_discover or Config.MARKETS_TO_DISCOVER
        self.top_n = top_n or Config.MARKETS_PER_ITERATION
        self.inter_market_delay = (
            Config.INTER_MARKET_DELAY if inter_market_delay is None else inter_market_delay
        )
        self.notifier = notifier
        self._sleep = sleep

    @staticmethod
    def prefilter(snapshots: list[MarketSnapshot]) -> list[MarketSnapshot]:
        return [s for s in snapshots if passes_prefilter(s)]

    @staticmethod
    def rank(snapshots: list[MarketSnapshot]) -> list[MarketSnapshot]:
        """Order by volume x liquidity, highest first."""
        return sorted(snapshots, key=lambda s: s.volume_24h * s.liquidity, reverse=True)

    def select_candidates(self) -> list[MarketSnapshot]:
        markets = self.fetch_markets(self.markets_to_discover)
        if not markets:
            logger.warning("Market discovery returned no markets")
            return []

        filtered = self.prefilter(markets)
        logger.info(f"Discovered {len(markets)} markets, {len(filtered)} passed prefilter")
        return self.rank(filtered)[:self.top_n]

    def run_iteration(self) -> list[PipelineResult]:
        """
        Run one discovery-and-trade iteration.

        Returns:
            One PipelineResult per processed market, in processing order
        """
        start = time.monotonic()
        logger.info("Trading loop iteration started")

        try:
            candidates = self.select_candidates()
        except Exception as e:
            logger.error(f"Market discovery failed: {e}", exc_info=True)
            return []

        results: list[PipelineResult] = []
        for index, snapshot in enumerate(candidates):
            if index > 0 and self.inter_market_delay > 0:
                self._sleep(self.inter_market_delay)

            try:
                results.append(self.pipeline.process_market(snapshot))
            except Exception as e:
                logger.error(f"Error processing market {snapshot.id}: {e}", exc_info=True)
                results.append(PipelineResult(market_id=snapshot.id, error=str(e)))

        traded = sum(1 for r in results if r.traded)
        logger.info(
            f"Trading loop iteration finished: {len(results)} markets analyzed, "
            f"{traded} trades placed in {time.monotonic() - start:.2f}s"
        )

        if self.notifier is not None and traded:
            self.notifier(format_iteration_summary(results))

        return results
