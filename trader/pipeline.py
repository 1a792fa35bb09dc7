"""
Per-market trading pipeline.

One market goes through: snapshot validation -> signal aggregation ->
decision -> intelligence record -> execution (BUY/SELL only).
"""

import logging
import time
from typing import Optional

from trader.aggregator import SignalAggregator
from trader.decision_engine import DecisionEngine
from trader.errors import InvalidSnapshotError
from trader.execution_engine import ExecutionEngine
from trader.models import MarketSnapshot, PipelineResult
from trader.storage import Storage

# Configure module logger
logger = logging.getLogger(__name__)


class TradingPipeline:
    """Wires the aggregator, decision engine and execution engine together."""

    def __init__(
        self,
        aggregator: SignalAggregator,
        decision_engine: DecisionEngine,
        executor: Optional[ExecutionEngine],
        storage: Storage
    ):
        self.aggregator = aggregator
        self.decision_engine = decision_engine
        self.executor = executor
        self.storage = storage

    def process_market(self, snapshot: MarketSnapshot) -> PipelineResult:
        """
        Run one market through the full pipeline.

        Args:
            snapshot: Market snapshot to analyze

        Returns:
            PipelineResult. An invalid snapshot yields a result with `error`
            set and no decision.
        """
        start = time.monotonic()
        result = PipelineResult(market_id=snapshot.id)

        try:
            snapshot.validate()
        except InvalidSnapshotError as e:
            logger.warning(f"Skipping market {snapshot.id}: {e}")
            result.error = str(e)
            result.duration_seconds = time.monotonic() - start
            return result

        logger.info(f"Analyzing market {snapshot.id}: {snapshot.question[:80]}")

        bundle = self.aggregator.aggregate(snapshot)
        if bundle.degraded_sources:
            logger.info(f"Degraded sources for {snapshot.id}: {', '.join(bundle.degraded_sources)}")

        decision = self.decision_engine.decide(snapshot, bundle)
        result.decision = decision
        logger.info(
            f"Decision for {snapshot.id}: {decision.action} {decision.outcome or ''} "
            f"confidence={decision.confidence} size={decision.position_size:.2f} strategy={decision.strategy}"
        )

        result.intelligence_record_id = self.storage.create_market_intelligence_record(snapshot, bundle, decision)

        if decision.is_trade:
            if self.executor is None:
                logger.info(f"Execution disabled; not trading {snapshot.id}")
            else:
                result.execution = self.executor.execute(decision, snapshot)

        result.duration_seconds = time.monotonic() - start
        return result
