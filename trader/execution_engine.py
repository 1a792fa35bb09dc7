"""
Execution engine.

Drives a trade decision through the on-chain execution backend:

    reserve limits -> balance check -> PENDING record -> approve + submit
    (bounded retries, fixed delay) -> detached confirmation watcher ->
    EXECUTED or FAILED

The security manager's record_end() runs exactly once for every reserved
trade, whichever path ends it. In dry-run mode no backend call is made and
the trade is recorded as EXECUTED with a synthetic transaction reference.
"""

import logging
import threading
import time
import uuid
from datetime import datetime
from typing import Callable, Optional

from trader.config import Config
from trader.errors import ConfirmationTimeout, ExecutionError, InsufficientBalanceError, SecurityRejection
from trader.execution_backend import ExecutionBackend, JsonRpcExecutionBackend, TradeOrder
from trader.models import (
    STATUS_EXECUTED,
    STATUS_FAILED,
    STATUS_PENDING,
    TRADE_ACTIONS,
    Decision,
    ExecutionResult,
    MarketSnapshot,
    TradeRecord,
)
from trader.security import SecurityManager, get_security_manager
from trader.storage import Storage
from trader.telegram_notifier import notify_trade_result
from trader.utils import format_currency

# Configure module logger
logger = logging.getLogger(__name__)


class ExecutionEngine:
    """
    Executes trade decisions with limits, retries and confirmation tracking.
    """

    def __init__(
        self,
        storage: Storage,
        backend: Optional[ExecutionBackend] = None,
        security: Optional[SecurityManager] = None,
        dry_run: Optional[bool] = None,
        max_retries: Optional[int] = None,
        retry_delay: Optional[float] = None,
        confirmation_timeout: Optional[float] = None,
        poll_interval: Optional[float] = None,
        error_poll_interval: Optional[float] = None,
        collateral_token: Optional[str] = None,
        notifier: Optional[Callable[[TradeRecord, Optional[str]], bool]] = notify_trade_result,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Initialize the engine. Every None argument falls back to Config.

        Args:
            storage: Trade record repository
            backend: Execution backend. Created from Config when live and None
            security: Security manager. If None, uses the process-wide instance
            dry_run: Skip backend calls and record synthetic fills (Config.DRY_RUN)
            max_retries: Retries after the first submission attempt (Config.EXECUTION_MAX_RETRIES)
            retry_delay: Fixed delay between attempts (Config.EXECUTION_RETRY_DELAY)
            confirmation_timeout: Seconds to wait for confirmation (Config.CONFIRMATION_TIMEOUT)
            poll_interval: Seconds between status polls (Config.CONFIRMATION_POLL_INTERVAL)
            error_poll_interval: Seconds to wait after a failed poll (Config.CONFIRMATION_ERROR_INTERVAL)
            collateral_token: Token whose balance is checked (Config.COLLATERAL_TOKEN)
            notifier: Called with each terminal trade record; None disables alerts
            sleep: Sleep function (injectable for tests)
            clock: Monotonic time source (injectable for tests)
        """
        self.storage = storage
        self.dry_run = Config.DRY_RUN if dry_run is None else dry_run
        self.security = security or get_security_manager()
        self.max_retries = Config.EXECUTION_MAX_RETRIES if max_retries is None else max_retries
        self.retry_delay = Config.EXECUTION_RETRY_DELAY if retry_delay is None else retry_delay
        self.confirmation_timeout = (
            Config.CONFIRMATION_TIMEOUT if confirmation_timeout is None else confirmation_timeout
        )
        self.poll_interval = Config.CONFIRMATION_POLL_INTERVAL if poll_interval is None else poll_interval
        self.error_poll_interval = (
            Config.CONFIRMATION_ERROR_INTERVAL if error_poll_interval is None else error_poll_interval
        )
        self.collateral_token = collateral_token or Config.COLLATERAL_TOKEN
        self.notifier = notifier
        self._sleep = sleep
        self._clock = clock

        if backend is None and not self.dry_run:
            backend = JsonRpcExecutionBackend()
        self.backend = backend

        self._watchers: list[threading.Thread] = []
        self._watchers_lock = threading.Lock()

    def execute(self, decision: Decision, snapshot: MarketSnapshot) -> ExecutionResult:
        """
        Execute a BUY/SELL decision.

        Args:
            decision: Decision from the decision engine
            snapshot: Market snapshot the decision was made on

        Returns:
            ExecutionResult. A successful live result has status PENDING and
            monitoring_active=True until the watcher writes the final status.
        """
        if decision.action not in TRADE_ACTIONS or decision.position_size <= 0:
            logger.debug(f"Decision {decision.action} for {decision.market_id} is not executable")
            return ExecutionResult(success=False, error=f"Action {decision.action} is not executable")

        if decision.outcome not in snapshot.outcomes:
            logger.warning(f"Outcome '{decision.outcome}' not offered by market {snapshot.id}")
            return ExecutionResult(success=False, error=f"Unknown outcome '{decision.outcome}'")

        amount = round(decision.position_size, 2)
        try:
            self.security.reserve(amount).raise_if_rejected()
        except SecurityRejection as e:
            logger.info(f"Trade on {snapshot.id} rejected: {e.reason}")
            return ExecutionResult(success=False, rejected=True, rejection_reason=e.reason)

        try:
            if self.dry_run:
                return self._execute_dry_run(decision, snapshot, amount)
            return self._execute_live(decision, snapshot, amount)

        except Exception as e:
            logger.error(f"Unexpected error executing trade on {snapshot.id}: {e}", exc_info=True)
            return ExecutionResult(success=False, status=STATUS_FAILED, error=str(e))

        finally:
            self.security.record_end()

    def _new_record(self, decision: Decision, amount: float) -> TradeRecord:
        return TradeRecord(
            id=str(uuid.uuid4()),
            market_id=decision.market_id,
            action=decision.action,
            outcome=decision.outcome,
            planned_amount=amount,
            confidence=decision.confidence,
            rationale=decision.rationale,
            strategy=decision.strategy,
            status=STATUS_PENDING,
        )

    def _execute_dry_run(self, decision: Decision, snapshot: MarketSnapshot, amount: float) -> ExecutionResult:
        record = self._new_record(decision, amount)
        self.storage.create_trade_record(record)

        tx_ref = f"dry-run-{uuid.uuid4().hex[:16]}"
        price = _outcome_price(snapshot, decision.outcome)
        logger.info(
            f"[DRY RUN] {decision.action} {decision.outcome} {format_currency(amount)} on {snapshot.id} "
            f"at {price:.3f}"
        )
        self._finalize(
            record,
            STATUS_EXECUTED,
            snapshot.question,
            actual_amount=amount,
            transaction_ref=tx_ref,
            execution_price=price,
        )
        return ExecutionResult(
            success=True,
            status=STATUS_EXECUTED,
            trade_id=record.id,
            transaction_ref=tx_ref,
            dry_run=True,
        )

    def _execute_live(self, decision: Decision, snapshot: MarketSnapshot, amount: float) -> ExecutionResult:
        try:
            balance = self.backend.get_balance(self.collateral_token)
        except InsufficientBalanceError as e:
            self.security.activate_emergency_stop(f"Balance check failed: {e}")
            return ExecutionResult(success=False, error=str(e))
        except ExecutionError as e:
            logger.error(f"Balance check failed for {snapshot.id}: {e}")
            return ExecutionResult(success=False, error=f"Balance check failed: {e}")

        if balance < amount:
            reason = (
                f"Insufficient balance: {format_currency(balance)} {self.collateral_token} "
                f"available, {format_currency(amount)} required"
            )
            self.security.activate_emergency_stop(reason)
            return ExecutionResult(success=False, error=reason)

        record = self._new_record(decision, amount)
        if not self.storage.create_trade_record(record):
            return ExecutionResult(success=False, error="Could not create trade record")

        order = TradeOrder(
            market_id=snapshot.id,
            outcome=decision.outcome,
            outcome_index=snapshot.outcomes.index(decision.outcome),
            side=decision.action,
            amount=amount,
            price=_outcome_price(snapshot, decision.outcome),
        )

        tx_ref: Optional[str] = None
        last_error: Optional[str] = None
        total_attempts = self.max_retries + 1
        attempts = 0

        for attempt in range(1, total_attempts + 1):
            attempts = attempt
            try:
                logger.info(f"Submitting trade {record.id} (attempt {attempt}/{total_attempts})")
                self.backend.approve(self.backend_spender, amount)
                tx_ref = self.backend.submit(order)
                break

            except InsufficientBalanceError as e:
                last_error = str(e)
                self.security.activate_emergency_stop(f"Execution rejected by backend: {e}")
                break

            except Exception as e:
                last_error = str(e)
                logger.warning(f"Trade {record.id} attempt {attempt}/{total_attempts} failed: {e}")
                if attempt < total_attempts:
                    self._sleep(self.retry_delay)

        if tx_ref is None:
            logger.error(f"Trade {record.id} failed after {attempts} attempts: {last_error}")
            self._finalize(record, STATUS_FAILED, snapshot.question, error_message=last_error)
            return ExecutionResult(
                success=False,
                status=STATUS_FAILED,
                trade_id=record.id,
                attempts=attempts,
                error=last_error,
            )

        record.transaction_ref = tx_ref
        self.storage.update_trade_record_status(
            record.id, STATUS_PENDING, expected_status=STATUS_PENDING, transaction_ref=tx_ref
        )
        logger.info(f"Trade {record.id} submitted: {tx_ref}")

        self._spawn_watcher(record, tx_ref, order.price, snapshot.question)
        return ExecutionResult(
            success=True,
            status=STATUS_PENDING,
            trade_id=record.id,
            transaction_ref=tx_ref,
            attempts=attempts,
            monitoring_active=True,
        )

    @property
    def backend_spender(self) -> str:
        return getattr(self.backend, "contract_address", None) or Config.EXCHANGE_CONTRACT_ADDRESS

    def _spawn_watcher(self, record: TradeRecord, tx_ref: str, price: Optional[float], question: str) -> None:
        watcher = threading.Thread(
            target=self._watch_confirmation,
            args=(record, tx_ref, price, question),
            name=f"confirm-{record.id[:8]}",
            daemon=True,
        )
        with self._watchers_lock:
            self._watchers = [w for w in self._watchers if w.is_alive()]
            self._watchers.append(watcher)
        watcher.start()

    def _watch_confirmation(
        self,
        record: TradeRecord,
        tx_ref: str,
        price: Optional[float],
        question: str
    ) -> None:
        """
        Poll the backend until the transaction confirms, fails, or times out.

        Writes exactly one terminal status. Never raises.
        """
        deadline = self._clock() + self.confirmation_timeout
        try:
            while self._clock() < deadline:
                try:
                    status = self.backend.get_status(tx_ref)
                except Exception as e:
                    logger.warning(f"Status check for {tx_ref} failed: {e}")
                    self._sleep(self.error_poll_interval)
                    continue

                if status.error:
                    logger.error(f"Transaction {tx_ref} failed: {status.error}")
                    self._finalize(record, STATUS_FAILED, question, error_message=status.error)
                    return

                if status.confirmed:
                    logger.info(f"Transaction {tx_ref} confirmed ({status.confirmations} confirmations)")
                    self._finalize(
                        record,
                        STATUS_EXECUTED,
                        question,
                        actual_amount=status.filled_amount if status.filled_amount is not None else record.planned_amount,
                        execution_price=status.execution_price if status.execution_price is not None else price,
                    )
                    return

                self._sleep(self.poll_interval)

            raise ConfirmationTimeout(
                f"Transaction {tx_ref} not confirmed within {self.confirmation_timeout:.0f}s"
            )

        except ConfirmationTimeout as e:
            logger.error(str(e))
            self._finalize(record, STATUS_FAILED, question, error_message=str(e))

        except Exception as e:
            logger.error(f"Confirmation watcher for {tx_ref} crashed: {e}", exc_info=True)
            self._finalize(record, STATUS_FAILED, question, error_message=f"Confirmation monitoring error: {e}")

    def _finalize(self, record: TradeRecord, status: str, question: Optional[str], **fields) -> None:
        """Write a terminal status once and send the alert."""
        updated = self.storage.update_trade_record_status(
            record.id, status, expected_status=STATUS_PENDING, **fields
        )
        if not updated:
            return

        record.status = status
        record.updated_at = datetime.utcnow()
        for name, value in fields.items():
            setattr(record, name, value)

        if self.notifier is not None:
            try:
                self.notifier(record, question)
            except Exception as e:
                logger.error(f"Trade notification failed for {record.id}: {e}", exc_info=True)

    def wait_for_watchers(self, timeout: Optional[float] = None) -> bool:
        """
        Join outstanding confirmation watchers.

        Args:
            timeout: Maximum seconds to wait in total (None waits indefinitely)

        Returns:
            True if every watcher finished
        """
        with self._watchers_lock:
            watchers = list(self._watchers)

        deadline = None if timeout is None else time.monotonic() + timeout
        for watcher in watchers:
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            watcher.join(remaining)

        with self._watchers_lock:
            self._watchers = [w for w in self._watchers if w.is_alive()]
            return not self._watchers

    @property
    def active_watchers(self) -> int:
        with self._watchers_lock:
            return sum(1 for w in self._watchers if w.is_alive())


def _outcome_price(snapshot: MarketSnapshot, outcome: Optional[str]) -> float:
    price = snapshot.outcome_price(outcome) if outcome else None
    return price if price is not None else snapshot.price
