"""
Tests for the autonomous loop and the per-market pipeline.
"""

from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from trader.aggregator import SignalAggregator
from trader.autonomous_loop import AutonomousLoop, passes_prefilter
from trader.decision_engine import DecisionEngine
from trader.execution_engine import ExecutionEngine
from trader.models import (
    ACTION_NONE,
    ExecutionResult,
    PipelineResult,
    SignalFragment,
    SOURCE_NAMES,
    STATUS_EXECUTED,
)
from trader.pipeline import TradingPipeline
from trader.security import SecurityManager
from trader.sources import IntelligenceSource


class TestPrefilter:
    def test_liquid_binary_market_passes(self, make_snapshot):
        assert passes_prefilter(make_snapshot(time_to_close=timedelta(hours=30)))

    @pytest.mark.parametrize("overrides", [
        {"active": False},
        {"liquidity": 999.0},
        {"volume_24h": 99.0},
        {"time_to_close": timedelta(hours=23)},
        {"price": 0.97, "outcome_prices": (0.97, 0.03)},
        {"price": 0.02, "outcome_prices": (0.02, 0.98)},
    ])
    def test_rejections(self, make_snapshot, overrides):
        fields = {"time_to_close": timedelta(hours=30)}
        fields.update(overrides)
        assert not passes_prefilter(make_snapshot(**fields))

    def test_multi_outcome_needs_two_live_outcomes(self, make_snapshot):
        live = make_snapshot(
            outcomes=("A", "B", "C"), outcome_prices=(0.6, 0.3, 0.1), price=0.6, time_to_close=timedelta(hours=30)
        )
        decided = make_snapshot(
            outcomes=("A", "B", "C"), outcome_prices=(0.985, 0.01, 0.005), price=0.985,
            time_to_close=timedelta(hours=30),
        )
        lopsided = make_snapshot(
            outcomes=("A", "B", "C"), outcome_prices=(0.9, 0.005, 0.005), price=0.9,
            time_to_close=timedelta(hours=30),
        )

        assert passes_prefilter(live)
        assert not passes_prefilter(decided)
        assert not passes_prefilter(lopsided)


class TestRanking:
    def test_rank_by_volume_times_liquidity(self, make_snapshot):
        small = make_snapshot(id="small", volume_24h=100.0, liquidity=1000.0)
        big = make_snapshot(id="big", volume_24h=5000.0, liquidity=20000.0)
        mid = make_snapshot(id="mid", volume_24h=2000.0, liquidity=5000.0)

        assert [s.id for s in AutonomousLoop.rank([small, big, mid])] == ["big", "mid", "small"]


class TestRunIteration:
    def _markets(self, make_snapshot, count):
        return [
            make_snapshot(id=f"m{i}", volume_24h=1000.0 + i, time_to_close=timedelta(hours=30))
            for i in range(count)
        ]

    def test_processes_top_n_in_rank_order(self, make_snapshot):
        pipeline = MagicMock()
        pipeline.process_market.side_effect = lambda s: PipelineResult(market_id=s.id)
        fetch = MagicMock(return_value=self._markets(make_snapshot, 8))
        sleep = MagicMock()
        loop = AutonomousLoop(pipeline, fetch_markets=fetch, markets_to_discover=50, top_n=5,
                              inter_market_delay=2, notifier=None, sleep=sleep)

        results = loop.run_iteration()

        fetch.assert_called_once_with(50)
        assert [r.market_id for r in results] == ["m7", "m6", "m5", "m4", "m3"]
        assert sleep.call_count == 4
        sleep.assert_called_with(2)

    def test_one_failing_market_does_not_stop_the_batch(self, make_snapshot):
        def process(snapshot):
            if snapshot.id == "m2":
                raise RuntimeError("unexpected")
            return PipelineResult(market_id=snapshot.id)

        pipeline = MagicMock()
        pipeline.process_market.side_effect = process
        loop = AutonomousLoop(pipeline, fetch_markets=MagicMock(return_value=self._markets(make_snapshot, 3)),
                              top_n=5, inter_market_delay=0, notifier=None, sleep=MagicMock())

        results = loop.run_iteration()

        assert len(results) == 3
        failed = [r for r in results if r.error]
        assert [r.market_id for r in failed] == ["m2"]

    def test_discovery_failure_returns_empty(self):
        loop = AutonomousLoop(MagicMock(), fetch_markets=MagicMock(side_effect=RuntimeError("api down")),
                              notifier=None, sleep=MagicMock())

        assert loop.run_iteration() == []

    def test_summary_sent_when_trades_placed(self, make_snapshot, make_decision):
        pipeline = MagicMock()
        pipeline.process_market.side_effect = lambda s: PipelineResult(
            market_id=s.id, decision=make_decision(market_id=s.id), execution=ExecutionResult(success=True)
        )
        notifier = MagicMock()
        loop = AutonomousLoop(pipeline, fetch_markets=MagicMock(return_value=self._markets(make_snapshot, 1)),
                              top_n=5, inter_market_delay=0, notifier=notifier, sleep=MagicMock())

        loop.run_iteration()

        notifier.assert_called_once()
        assert "Trades placed: 1" in notifier.call_args.args[0]


def fixed_sources(sentiment: float):
    sources = []
    for name in SOURCE_NAMES:
        source = MagicMock(spec=IntelligenceSource)
        source.name = name
        metadata = {"news_count": 5, "source_credibility": 0.8} if name == "news" else {}
        if name == "market":
            metadata = {"technicals": {"price_momentum": 0.4, "volume_trend": 1.0, "market_efficiency": 0.99}}
            source.query.return_value = SignalFragment(name, 0.0, 0.9, metadata)
        else:
            source.query.return_value = SignalFragment(name, sentiment, 0.8, metadata)
        sources.append(source)
    return sources


@pytest.fixture
def pipeline_factory(storage):
    def _make(sentiment: float = 0.8, executor=None) -> TradingPipeline:
        aggregator = SignalAggregator(sources=fixed_sources(sentiment), max_retries=0, sleep=MagicMock())
        engine = DecisionEngine(use_llm=False, confidence_threshold=70, kelly_fraction=0.25,
                                max_single_trade=100.0, min_liquidity=1000.0, min_daily_volume=500.0,
                                max_time_to_close_hours=72.0, max_spread=0.05)
        if executor is None:
            executor = ExecutionEngine(
                storage=storage,
                security=SecurityManager(max_single_trade=100.0, max_daily_spend=300.0, max_concurrent_trades=3),
                dry_run=True,
                notifier=None,
            )
        return TradingPipeline(aggregator, engine, executor, storage)

    return _make


class TestTradingPipeline:
    def test_trade_flows_to_executed_record(self, pipeline_factory, make_snapshot, storage):
        result = pipeline_factory(sentiment=0.8).process_market(make_snapshot())

        assert result.error is None
        assert result.traded
        assert result.execution.status == STATUS_EXECUTED
        assert result.intelligence_record_id is not None
        assert storage.get_trades_for_market("m1")[0].status == STATUS_EXECUTED
        assert storage.get_recent_intelligence("m1")[0]["action"] == "BUY"

    def test_non_tradeable_decision_is_recorded_but_not_executed(self, pipeline_factory, make_snapshot, storage):
        executor = MagicMock()
        result = pipeline_factory(sentiment=0.05, executor=executor).process_market(
            make_snapshot(price=0.5, outcome_prices=(0.5, 0.5))
        )

        assert result.decision.action == ACTION_NONE
        executor.execute.assert_not_called()
        assert len(storage.get_recent_intelligence("m1")) == 1

    def test_ineligible_market_is_not_executed(self, pipeline_factory, make_snapshot):
        executor = MagicMock()
        result = pipeline_factory(executor=executor).process_market(make_snapshot(liquidity=200.0))

        assert result.decision.action == ACTION_NONE
        executor.execute.assert_not_called()

    def test_invalid_snapshot_yields_error_result(self, pipeline_factory, make_snapshot):
        executor = MagicMock()
        result = pipeline_factory(executor=executor).process_market(make_snapshot(question=""))

        assert result.error is not None
        assert result.decision is None
        executor.execute.assert_not_called()
