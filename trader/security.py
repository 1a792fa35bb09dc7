"""
Risk and security manager.

Holds the process-wide trading ledger (daily spend, open trade count,
emergency stop) and gates every trade before it reaches the execution
backend. All ledger operations serialize on a single lock.

Validation order: emergency stop, day rollover, per-trade cap, daily cap,
concurrent trade cap. The first failing check is the rejection reason.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable, Optional

from trader.config import Config
from trader.errors import SecurityRejection
from trader.telegram_notifier import notify_emergency_stop
from trader.utils import format_currency

# Configure module logger
logger = logging.getLogger(__name__)


@dataclass
class SecurityState:
    """Mutable ledger state guarded by SecurityManager's lock."""
    daily_spent: float
    concurrent_trades: int
    last_reset_date: date
    emergency_stop_active: bool = False
    emergency_stop_reason: Optional[str] = None


@dataclass(frozen=True)
class ValidationResult:
    ok: bool
    reason: Optional[str] = None

    def __bool__(self) -> bool:
        return self.ok

    def raise_if_rejected(self) -> None:
        if not self.ok:
            raise SecurityRejection(self.reason or "rejected")


class SecurityManager:
    """
    Spend and position limits for live trading.

    Usage per trade: reserve(amount) (or validate + record_start), then
    exactly one record_end() when the trade finishes.
    """

    def __init__(
        self,
        max_single_trade: Optional[float] = None,
        max_daily_spend: Optional[float] = None,
        max_concurrent_trades: Optional[int] = None,
        today: Callable[[], date] = lambda: datetime.utcnow().date(),
        on_emergency_stop: Optional[Callable[[str], None]] = None
    ):
        """
        Initialize the manager.

        Args:
            max_single_trade: Per-trade cap. If None, uses Config.MAX_SINGLE_TRADE
            max_daily_spend: Daily cap. If None, uses Config.MAX_DAILY_SPEND
            max_concurrent_trades: Open trade cap. If None, uses Config.MAX_CONCURRENT_TRADES
            today: Date provider (injectable for tests)
            on_emergency_stop: Callback invoked with the reason when the stop activates
        """
        self.max_single_trade = Config.MAX_SINGLE_TRADE if max_single_trade is None else max_single_trade
        self.max_daily_spend = Config.MAX_DAILY_SPEND if max_daily_spend is None else max_daily_spend
        self.max_concurrent_trades = (
            Config.MAX_CONCURRENT_TRADES if max_concurrent_trades is None else max_concurrent_trades
        )
        self._today = today
        self._on_emergency_stop = on_emergency_stop
        self._lock = threading.RLock()
        self.state = SecurityState(daily_spent=0.0, concurrent_trades=0, last_reset_date=today())

    def validate(self, amount: float) -> ValidationResult:
        """
        Check whether a trade of `amount` may proceed.

        Returns:
            ValidationResult(ok=True) or ValidationResult(ok=False, reason=...)
        """
        with self._lock:
            if self.state.emergency_stop_active:
                return self._reject(f"Emergency stop active: {self.state.emergency_stop_reason}")

            self._rollover_if_new_day()

            if amount <= 0:
                return self._reject(f"Trade amount must be positive, got {format_currency(amount)}")

            if amount > self.max_single_trade:
                return self._reject(
                    f"Trade amount {format_currency(amount)} exceeds single trade limit "
                    f"{format_currency(self.max_single_trade)}"
                )

            if self.state.daily_spent + amount > self.max_daily_spend:
                return self._reject(
                    f"Trade would exceed daily spending limit. Daily spent: {format_currency(self.state.daily_spent)}, "
                    f"Trade: {format_currency(amount)}, Limit: {format_currency(self.max_daily_spend)}"
                )

            if self.state.concurrent_trades >= self.max_concurrent_trades:
                return self._reject(
                    f"Maximum concurrent trades reached ({self.state.concurrent_trades}/{self.max_concurrent_trades})"
                )

            return ValidationResult(ok=True)

    def record_start(self, amount: float) -> None:
        """Count a trade against the daily spend and open trade count."""
        with self._lock:
            self._rollover_if_new_day()
            self.state.daily_spent += amount
            self.state.concurrent_trades += 1
            logger.info(
                f"Trade started: {format_currency(amount)}; daily spent {format_currency(self.state.daily_spent)}, "
                f"open trades {self.state.concurrent_trades}"
            )

    def reserve(self, amount: float) -> ValidationResult:
        """
        Validate and record the start of a trade in one step.

        No other ledger operation can run between the check and the update.
        """
        with self._lock:
            result = self.validate(amount)
            if result.ok:
                self.record_start(amount)
            return result

    def record_end(self) -> None:
        """Release an open trade slot. Never drops below zero."""
        with self._lock:
            if self.state.concurrent_trades <= 0:
                logger.warning("record_end called with no open trades")
                self.state.concurrent_trades = 0
                return
            self.state.concurrent_trades -= 1
            logger.debug(f"Trade ended; open trades {self.state.concurrent_trades}")

    def activate_emergency_stop(self, reason: str) -> None:
        """Block all further trades until clear_emergency_stop() is called."""
        with self._lock:
            already_active = self.state.emergency_stop_active
            self.state.emergency_stop_active = True
            self.state.emergency_stop_reason = reason

        if already_active:
            return

        logger.critical(f"EMERGENCY STOP ACTIVATED: {reason}")
        if self._on_emergency_stop is not None:
            try:
                self._on_emergency_stop(reason)
            except Exception as e:
                logger.error(f"Emergency stop callback failed: {e}", exc_info=True)

    def clear_emergency_stop(self) -> None:
        """Operator action: lift the emergency stop."""
        with self._lock:
            if self.state.emergency_stop_active:
                logger.warning(f"Emergency stop cleared (was: {self.state.emergency_stop_reason})")
            self.state.emergency_stop_active = False
            self.state.emergency_stop_reason = None

    def get_status(self) -> dict:
        with self._lock:
            self._rollover_if_new_day()
            return {
                "daily_spent": self.state.daily_spent,
                "daily_limit": self.max_daily_spend,
                "daily_remaining": max(0.0, self.max_daily_spend - self.state.daily_spent),
                "concurrent_trades": self.state.concurrent_trades,
                "max_concurrent_trades": self.max_concurrent_trades,
                "max_single_trade": self.max_single_trade,
                "last_reset_date": self.state.last_reset_date.isoformat(),
                "emergency_stop_active": self.state.emergency_stop_active,
                "emergency_stop_reason": self.state.emergency_stop_reason,
            }

    def _rollover_if_new_day(self) -> None:
        current = self._today()
        if current != self.state.last_reset_date:
            logger.info(
                f"New trading day {current.isoformat()}: resetting daily spend "
                f"(was {format_currency(self.state.daily_spent)})"
            )
            self.state.daily_spent = 0.0
            self.state.last_reset_date = current

    @staticmethod
    def _reject(reason: str) -> ValidationResult:
        logger.warning(f"Trade rejected: {reason}")
        return ValidationResult(ok=False, reason=reason)


# Global security manager instance
_security_manager: Optional[SecurityManager] = None
_security_manager_lock = threading.Lock()


def get_security_manager() -> SecurityManager:
    """
    Get the process-wide security manager, creating it on first use.

    Returns:
        SecurityManager instance
    """
    global _security_manager

    with _security_manager_lock:
        if _security_manager is None:
            _security_manager = SecurityManager(on_emergency_stop=notify_emergency_stop)
        return _security_manager


def reset_security_manager() -> None:
    """Drop the process-wide instance (used by tests and operator tooling)."""
    global _security_manager

    with _security_manager_lock:
        _security_manager = None
