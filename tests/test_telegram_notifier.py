"""
Tests for Telegram message formatting and delivery guards.
"""

from unittest.mock import AsyncMock, MagicMock, patch

from trader import telegram_notifier
from trader.config import Config
from trader.models import (
    ExecutionResult,
    PipelineResult,
    STATUS_EXECUTED,
    STATUS_FAILED,
    TradeRecord,
)


def make_record(**overrides) -> TradeRecord:
    fields = {
        "id": "t1",
        "market_id": "m1",
        "action": "BUY",
        "outcome": "Yes",
        "planned_amount": 12.0,
        "confidence": 81,
        "rationale": "Sentiment ahead of price",
        "strategy": "sentiment-arbitrage",
    }
    fields.update(overrides)
    return TradeRecord(**fields)


class TestFormatting:
    def test_executed_trade(self):
        message = telegram_notifier.format_trade_message(
            make_record(status=STATUS_EXECUTED, actual_amount=11.5, transaction_ref="0xabc"),
            "Will *it* rain?",
        )

        assert "Trade Executed" in message
        assert "*Will it rain?*" in message
        assert "$11.50" in message
        assert "`0xabc`" in message

    def test_failed_trade_shows_error(self):
        message = telegram_notifier.format_trade_message(
            make_record(status=STATUS_FAILED, error_message="Transaction 0x1 not confirmed within 300s")
        )

        assert "Trade Failed" in message
        assert "$12.00" in message
        assert "not confirmed within 300s" in message

    def test_iteration_summary(self, make_decision):
        results = [
            PipelineResult(market_id="m1", decision=make_decision(), execution=ExecutionResult(success=True)),
            PipelineResult(market_id="m2", error="Invalid snapshot"),
        ]

        summary = telegram_notifier.format_iteration_summary(results)

        assert "Markets analyzed: 2" in summary
        assert "Trades placed: 1" in summary
        assert "Errors: 1" in summary

    def test_empty_iteration_summary(self):
        assert "no candidate markets" in telegram_notifier.format_iteration_summary([])


class TestDelivery:
    def test_not_configured_is_a_noop(self):
        assert telegram_notifier.notify_trade_result(make_record(status=STATUS_EXECUTED)) is False
        assert telegram_notifier.notify_emergency_stop("daily limit") is False
        assert telegram_notifier.send_notification("hello") is False

    @patch("trader.telegram_notifier.Bot")
    def test_sends_with_markdown(self, mock_bot_cls, monkeypatch):
        monkeypatch.setattr(Config, "TELEGRAM_BOT_TOKEN", "token")
        monkeypatch.setattr(Config, "TELEGRAM_CHAT_ID", "12345")
        bot = MagicMock()
        bot.send_message = AsyncMock()
        mock_bot_cls.return_value = bot

        assert telegram_notifier.send_telegram_message("hello") is True

        kwargs = bot.send_message.call_args.kwargs
        assert kwargs["chat_id"] == 12345
        assert kwargs["parse_mode"] == "Markdown"

    def test_empty_message_is_not_sent(self, monkeypatch):
        monkeypatch.setattr(Config, "TELEGRAM_BOT_TOKEN", "token")
        monkeypatch.setattr(Config, "TELEGRAM_CHAT_ID", "12345")

        assert telegram_notifier.send_telegram_message("   ") is False
