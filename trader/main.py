"""
Main entry point for the autonomous prediction-market trader.

Modes:
- Single iteration (default): discover, analyze and trade once, then exit
- Scheduled: run an iteration every LOOP_INTERVAL_MINUTES
- Status: print the security ledger, pending trades and today's stats
- Single market: run one market through the pipeline
"""

import argparse
import logging
import signal
import sys
import time
from typing import Optional

from trader.aggregator import SignalAggregator
from trader.autonomous_loop import AutonomousLoop
from trader.config import Config
from trader.decision_engine import DecisionEngine
from trader.execution_engine import ExecutionEngine
from trader.models import PipelineResult
from trader.pipeline import TradingPipeline
from trader.scanner import fetch_market
from trader.scheduler import start_scheduler, stop_scheduler, get_scheduler_status
from trader.security import get_security_manager
from trader.storage import Storage


# Configure logging
def setup_logging() -> None:
    """Configure logging for the application."""
    log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    log_level = getattr(logging, Config.LOG_LEVEL.upper(), logging.INFO)

    handlers = [logging.StreamHandler(sys.stdout)]

    if Config.LOG_FILE:
        Config.ensure_directories()
        handlers.append(logging.FileHandler(Config.LOG_FILE))

    logging.basicConfig(
        level=log_level,
        format=log_format,
        handlers=handlers
    )


logger = logging.getLogger(__name__)


def build_pipeline(storage: Optional[Storage] = None) -> TradingPipeline:
    """
    Assemble the production pipeline from Config.

    Args:
        storage: Storage to use. If None, opens Config.DB_PATH

    Returns:
        TradingPipeline wired with the default sources, decision engine and
        execution engine
    """
    storage = storage or Storage()
    executor = ExecutionEngine(storage=storage)
    return TradingPipeline(
        aggregator=SignalAggregator(),
        decision_engine=DecisionEngine(),
        executor=executor,
        storage=storage,
    )


def _log_result(result: PipelineResult) -> None:
    if result.error:
        logger.warning(f"{result.market_id}: error: {result.error}")
        return

    decision = result.decision
    line = f"{result.market_id}: {decision.action} confidence={decision.confidence} strategy={decision.strategy}"
    if result.execution is not None:
        execution = result.execution
        if execution.rejected:
            line += f" rejected ({execution.rejection_reason})"
        else:
            line += f" status={execution.status} tx={execution.transaction_ref}"
    logger.info(line)


def _prepare() -> bool:
    is_valid, errors = Config.validate()
    if not is_valid:
        logger.error("Configuration validation failed:")
        for error in errors:
            logger.error(f"  - {error}")
        return False

    Config.ensure_directories()
    mode = "DRY RUN" if Config.DRY_RUN else "LIVE"
    logger.info(f"Trading mode: {mode}")
    return True


def main() -> int:
    """
    Main entry point.

    Returns:
        Exit code (0 for success, 1 for failure)
    """
    parser = argparse.ArgumentParser(
        description="Autonomous Prediction Market Trader",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run one iteration in dry-run mode
  python -m trader.main

  # Run every 30 minutes (default interval)
  python -m trader.main --schedule

  # Run every 15 minutes, trading for real
  python -m trader.main --schedule --interval 15 --live

  # Analyze a single market
  python -m trader.main --market 12345
        """
    )
    parser.add_argument(
        "--schedule",
        action="store_true",
        help="Run in scheduled mode (continuous execution at intervals)"
    )
    parser.add_argument(
        "--interval",
        type=int,
        default=None,
        help="Minutes between iterations (overrides LOOP_INTERVAL_MINUTES config)"
    )
    parser.add_argument(
        "--status",
        action="store_true",
        help="Show security ledger, pending trades and today's stats, then exit"
    )
    parser.add_argument(
        "--market",
        type=str,
        default=None,
        help="Run a single market through the pipeline"
    )
    parser.add_argument(
        "--live",
        action="store_true",
        help="Disable dry-run and submit real trades"
    )

    args = parser.parse_args()

    setup_logging()

    if args.live:
        Config.DRY_RUN = False

    if args.status:
        return _show_status()

    if not _prepare():
        return 1

    if args.market:
        return _run_single_market(args.market)

    if args.schedule:
        return _run_scheduled_mode(args.interval)

    return _run_single_mode()


def _show_status() -> int:
    storage = Storage()
    ledger = get_security_manager().get_status()
    stats = storage.get_daily_stats()
    pending = storage.get_pending_trades()
    scheduler_status = get_scheduler_status()

    print("\nSecurity Ledger:")
    print(f"  Daily Spent: ${ledger['daily_spent']:.2f} / ${ledger['daily_limit']:.2f}")
    print(f"  Open Trades: {ledger['concurrent_trades']} / {ledger['max_concurrent_trades']}")
    print(f"  Emergency Stop: {'ACTIVE - ' + str(ledger['emergency_stop_reason']) if ledger['emergency_stop_active'] else 'off'}")

    print(f"\nToday ({stats['date']}):")
    print(f"  Trades: {stats['total_trades']} (executed {stats['executed']}, failed {stats['failed']}, pending {stats['pending']})")
    print(f"  Executed Amount: ${stats['executed_amount']:.2f}")

    print(f"\nPending Trades: {len(pending)}")
    for record in pending:
        print(f"  {record.id} {record.market_id} {record.action} {record.outcome} ${record.planned_amount:.2f} tx={record.transaction_ref}")

    print("\nScheduler:")
    print(f"  Running: {scheduler_status['is_running']}")
    return 0


def _run_single_market(market_id: str) -> int:
    snapshot = fetch_market(market_id)
    if snapshot is None:
        logger.error(f"Market {market_id} not found")
        return 1

    pipeline = build_pipeline()
    try:
        result = pipeline.process_market(snapshot)
        _log_result(result)
        if pipeline.executor is not None:
            pipeline.executor.wait_for_watchers(timeout=Config.CONFIRMATION_TIMEOUT + 30)
        return 0 if result.error is None else 1

    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130


def _run_single_mode() -> int:
    pipeline = build_pipeline()
    loop = AutonomousLoop(pipeline)
    try:
        results = loop.run_iteration()
        for result in results:
            _log_result(result)

        executor = pipeline.executor
        if executor is not None and executor.active_watchers:
            logger.info(f"Waiting for {executor.active_watchers} pending confirmations")
            executor.wait_for_watchers(timeout=Config.CONFIRMATION_TIMEOUT + 30)

        if not results:
            logger.warning("Iteration completed with no markets analyzed")
        return 0

    except KeyboardInterrupt:
        logger.info("Iteration interrupted by user")
        return 130

    except Exception as e:
        logger.error(f"Fatal error in trading loop: {e}", exc_info=True)
        return 1


def _run_scheduled_mode(interval_minutes: Optional[int] = None) -> int:
    """
    Run iterations at a fixed interval until interrupted.

    Args:
        interval_minutes: Minutes between iterations. If None, uses Config.LOOP_INTERVAL_MINUTES
    """
    logger.info("Starting in scheduled mode")
    loop = AutonomousLoop(build_pipeline())

    def signal_handler(signum, frame):
        logger.info(f"Received signal {signum}, shutting down gracefully...")
        stop_scheduler(wait=True)
        sys.exit(0)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        if not start_scheduler(loop.run_iteration, interval_minutes=interval_minutes, run_immediately=True):
            logger.error("Failed to start scheduler")
            return 1

        status = get_scheduler_status()
        logger.info(f"Interval: {status['interval_minutes']} minutes")
        logger.info("Scheduler is running. Press Ctrl+C to stop.")

        try:
            while True:
                time.sleep(1)

        except KeyboardInterrupt:
            logger.info("Received keyboard interrupt")
            stop_scheduler(wait=True)
            return 0

    except Exception as e:
        logger.error(f"Fatal error in scheduled mode: {e}", exc_info=True)
        stop_scheduler(wait=False)
        return 1


if __name__ == "__main__":
    sys.exit(main())
