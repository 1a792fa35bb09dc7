"""
Telegram notifier for trade alerts.

Sends trade outcomes, emergency-stop alerts and loop summaries to a
Telegram chat using python-telegram-bot. Every function is a no-op that
returns False when Telegram is not configured.
"""

import asyncio
import logging
from typing import Optional

from telegram import Bot
from telegram.error import TelegramError, TimedOut, NetworkError

from trader.config import Config
from trader.models import PipelineResult, STATUS_EXECUTED, TradeRecord
from trader.utils import format_currency

# Configure module logger
logger = logging.getLogger(__name__)


def is_configured() -> bool:
    return bool(Config.TELEGRAM_BOT_TOKEN and Config.TELEGRAM_CHAT_ID)


def send_telegram_message(message: str) -> bool:
    """
    Send a message to Telegram safely with error handling.

    Handles network errors, timeouts, and other Telegram API errors.

    Args:
        message: Message text (Markdown)

    Returns:
        True if message sent successfully, False otherwise
    """
    if not is_configured():
        logger.debug("Telegram not configured (missing token or chat_id)")
        return False

    if not message or not message.strip():
        logger.warning("Empty message, not sending")
        return False

    try:
        chat_id = int(Config.TELEGRAM_CHAT_ID)
    except ValueError:
        chat_id = Config.TELEGRAM_CHAT_ID

    try:
        bot = Bot(token=Config.TELEGRAM_BOT_TOKEN)
        asyncio.run(bot.send_message(
            chat_id=chat_id,
            text=message,
            parse_mode="Markdown",
            disable_web_page_preview=True,
        ))
        logger.info("Telegram message sent successfully")
        return True

    except TimedOut:
        logger.error("Telegram API request timed out")
        return False

    except NetworkError as e:
        logger.error(f"Network error sending Telegram message: {e}")
        return False

    except TelegramError as e:
        logger.error(f"Telegram API error: {e}")
        return False

    except RuntimeError as e:
        logger.error(f"Could not run Telegram request: {e}")
        return False


def _escape(text: str) -> str:
    for char in ("*", "_", "[", "]", "`"):
        text = text.replace(char, "")
    return text


def format_trade_message(record: TradeRecord, question: Optional[str] = None) -> str:
    """
    Format a terminal trade record for Telegram.
    """
    succeeded = record.status == STATUS_EXECUTED
    header = "✅ *Trade Executed*" if succeeded else "❌ *Trade Failed*"
    lines = [header, ""]
    if question:
        lines.append(f"*{_escape(question)}*")
    lines.append(f"Market: `{record.market_id}`")
    lines.append(f"Action: {record.action} {_escape(record.outcome or '')}".rstrip())
    lines.append(f"Amount: {format_currency(record.actual_amount if record.actual_amount is not None else record.planned_amount)}")
    lines.append(f"Confidence: {record.confidence}/100")
    if record.strategy:
        lines.append(f"Strategy: {record.strategy}")
    if record.transaction_ref:
        lines.append(f"Tx: `{record.transaction_ref}`")
    if record.error_message and not succeeded:
        lines.append(f"Error: {_escape(record.error_message[:200])}")
    return "\n".join(lines)


def notify_trade_result(record: TradeRecord, question: Optional[str] = None) -> bool:
    if not is_configured():
        return False
    return send_telegram_message(format_trade_message(record, question))


def notify_emergency_stop(reason: str) -> bool:
    if not is_configured():
        return False
    return send_telegram_message(
        f"🚨 *EMERGENCY STOP ACTIVATED*\n\n{_escape(reason)}\n\nAll trading is blocked until cleared by an operator."
    )


def format_iteration_summary(results: list[PipelineResult]) -> str:
    """Summarize one autonomous loop iteration."""
    if not results:
        return "🔍 Trading loop ran: no candidate markets."

    traded = [r for r in results if r.traded]
    errors = [r for r in results if r.error]
    lines = [
        "📊 *Trading Loop Summary*",
        f"Markets analyzed: {len(results)}",
        f"Trades placed: {len(traded)}",
    ]
    if errors:
        lines.append(f"Errors: {len(errors)}")
    for result in traded:
        decision = result.decision
        lines.append(
            f"  • `{result.market_id}` {decision.action} {_escape(decision.outcome or '')} "
            f"{format_currency(decision.position_size)} ({decision.confidence}/100)"
        )
    return "\n".join(lines)


def send_notification(text: str) -> bool:
    """
    Send a plain text notification to Telegram.

    Returns:
        True if sent successfully, False otherwise
    """
    if not text or not text.strip():
        logger.warning("Empty notification text, not sending")
        return False

    return send_telegram_message(text)
