"""
Tests for the SQLite storage repository.
"""

import uuid

import pytest

from trader.decision_engine import DecisionEngine
from trader.models import (
    STATUS_EXECUTED,
    STATUS_FAILED,
    STATUS_PENDING,
    TradeRecord,
)


def make_record(market_id: str = "m1", **overrides) -> TradeRecord:
    fields = {
        "id": str(uuid.uuid4()),
        "market_id": market_id,
        "action": "BUY",
        "outcome": "Yes",
        "planned_amount": 25.0,
        "confidence": 78,
        "rationale": "Momentum and sentiment agree",
        "strategy": "sentiment-arbitrage",
    }
    fields.update(overrides)
    return TradeRecord(**fields)


class TestTradeRecords:
    def test_create_and_fetch(self, storage):
        record = make_record()

        assert storage.create_trade_record(record)

        stored = storage.get_trade_record(record.id)
        assert stored.market_id == "m1"
        assert stored.status == STATUS_PENDING
        assert stored.planned_amount == 25.0
        assert stored.actual_amount is None
        assert stored.strategy == "sentiment-arbitrage"

    def test_duplicate_id_is_rejected(self, storage):
        record = make_record()
        storage.create_trade_record(record)

        assert storage.create_trade_record(record) is False

    def test_terminal_update_sets_execution_fields(self, storage):
        record = make_record()
        storage.create_trade_record(record)

        updated = storage.update_trade_record_status(
            record.id,
            STATUS_EXECUTED,
            expected_status=STATUS_PENDING,
            actual_amount=24.5,
            transaction_ref="0xabc",
            execution_price=0.42,
        )

        stored = storage.get_trade_record(record.id)
        assert updated
        assert stored.status == STATUS_EXECUTED
        assert stored.actual_amount == 24.5
        assert stored.transaction_ref == "0xabc"
        assert stored.execution_price == 0.42
        assert stored.is_terminal

    def test_only_one_terminal_write(self, storage):
        record = make_record()
        storage.create_trade_record(record)
        storage.update_trade_record_status(record.id, STATUS_EXECUTED, expected_status=STATUS_PENDING)

        second = storage.update_trade_record_status(
            record.id, STATUS_FAILED, expected_status=STATUS_PENDING, error_message="late timeout"
        )

        assert second is False
        assert storage.get_trade_record(record.id).status == STATUS_EXECUTED

    def test_unknown_field_is_refused(self, storage):
        record = make_record()
        storage.create_trade_record(record)

        with pytest.raises(ValueError):
            storage.update_trade_record_status(record.id, STATUS_FAILED, market_id="other")

    def test_pending_trades(self, storage):
        pending = make_record()
        done = make_record()
        storage.create_trade_record(pending)
        storage.create_trade_record(done)
        storage.update_trade_record_status(done.id, STATUS_FAILED, error_message="rejected")

        assert [r.id for r in storage.get_pending_trades()] == [pending.id]

    def test_daily_stats(self, storage):
        executed = make_record(planned_amount=20.0)
        failed = make_record(planned_amount=30.0)
        pending = make_record(planned_amount=10.0)
        for record in (executed, failed, pending):
            storage.create_trade_record(record)
        storage.update_trade_record_status(executed.id, STATUS_EXECUTED, actual_amount=19.5)
        storage.update_trade_record_status(failed.id, STATUS_FAILED)

        stats = storage.get_daily_stats()

        assert stats["total_trades"] == 3
        assert stats["executed"] == 1
        assert stats["failed"] == 1
        assert stats["pending"] == 1
        assert stats["planned_amount"] == pytest.approx(60.0)
        assert stats["executed_amount"] == pytest.approx(19.5)


class TestMarketIntelligence:
    def test_intelligence_record_keeps_signals_and_decision(self, storage, make_snapshot, make_bundle):
        snapshot, bundle = make_snapshot(), make_bundle()
        decision = DecisionEngine(use_llm=False).rule_decision(snapshot, bundle)

        record_id = storage.create_market_intelligence_record(snapshot, bundle, decision)

        records = storage.get_recent_intelligence("m1")
        assert record_id is not None
        assert len(records) == 1
        stored = records[0]
        assert stored["action"] == decision.action
        assert stored["confidence"] == decision.confidence
        assert stored["signals"]["news"]["sentiment"] == 0.8
        assert stored["factors"]["sentiment_edge"] == pytest.approx(decision.factors.sentiment_edge)
        assert stored["decision"]["strategy"] == decision.strategy
        assert stored["sentiment_score"] == pytest.approx(0.8)
