"""
Interval scheduler for the autonomous trading loop.

Wraps an APScheduler BackgroundScheduler that fires one loop iteration every
N minutes. A second guard, the iteration lock, skips a run outright when the
previous iteration is still going, so two iterations never touch the ledger
at the same time.
"""

import logging
import threading
import time
from datetime import datetime
from typing import Any, Callable, Optional

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED, EVENT_JOB_MISSED
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
import pytz

from trader.config import Config

# Configure module logger
logger = logging.getLogger(__name__)

LOOP_JOB_ID = "autonomous_trading_loop"


class Scheduler:
    """
    Runs a loop iteration callable on a fixed interval.

    Besides starting and stopping the job it keeps a small run history
    (last start, duration, markets processed, consecutive failures) for the
    status command.
    """

    def __init__(self, job_id: str = LOOP_JOB_ID):
        self.job_id = job_id
        self.scheduler: Optional[BackgroundScheduler] = None
        self.iteration_function: Optional[Callable[[], Any]] = None
        self.interval_minutes: Optional[int] = None
        self._iteration_lock = threading.Lock()

        self.runs_completed = 0
        self.runs_skipped = 0
        self.consecutive_failures = 0
        self.last_run_started: Optional[datetime] = None
        self.last_run_duration: Optional[float] = None
        self.last_markets_processed: Optional[int] = None

    @property
    def is_running(self) -> bool:
        return self.scheduler is not None

    def start(
        self,
        iteration_function: Callable[[], Any],
        interval_minutes: Optional[int] = None,
        run_immediately: bool = False
    ) -> bool:
        """
        Schedule `iteration_function` every `interval_minutes`.

        Args:
            iteration_function: Runs one loop iteration; may return the list
                of per-market results
            interval_minutes: Minutes between runs. If None, uses Config.LOOP_INTERVAL_MINUTES
            run_immediately: Fire the first run now instead of after one interval

        Returns:
            True if the job was scheduled, False otherwise
        """
        if self.is_running:
            logger.warning(f"Scheduler already running job '{self.job_id}'")
            return False

        if not callable(iteration_function):
            logger.error(f"Cannot schedule non-callable {iteration_function!r}")
            return False

        minutes = Config.LOOP_INTERVAL_MINUTES if interval_minutes is None else interval_minutes
        if minutes < 1:
            logger.error(f"Loop interval must be at least 1 minute, got {minutes}")
            return False

        tz = pytz.timezone(Config.SCHEDULER_TIMEZONE)
        scheduler = BackgroundScheduler(timezone=tz)
        scheduler.add_listener(self._on_job_event, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR | EVENT_JOB_MISSED)

        extra = {"next_run_time": datetime.now(tz)} if run_immediately else {}
        try:
            scheduler.add_job(
                func=self._run_guarded,
                trigger=IntervalTrigger(minutes=minutes, timezone=tz),
                id=self.job_id,
                name="Autonomous trading loop",
                replace_existing=True,
                max_instances=1,
                coalesce=True,
                **extra
            )
            scheduler.start()
        except Exception as e:
            logger.error(f"Could not start scheduler: {e}", exc_info=True)
            return False

        self.scheduler = scheduler
        self.iteration_function = iteration_function
        self.interval_minutes = minutes
        when = "now" if run_immediately else f"in {minutes} minutes"
        logger.info(f"Trading loop scheduled every {minutes} minutes; first run {when}")
        return True

    def stop(self, wait: bool = True) -> bool:
        """
        Shut the scheduler down.

        Args:
            wait: Block until a running iteration finishes
        """
        if self.scheduler is None:
            logger.warning("Scheduler is not running")
            return False

        scheduler, self.scheduler = self.scheduler, None
        try:
            scheduler.shutdown(wait=wait)
        except Exception as e:
            logger.error(f"Scheduler shutdown raised: {e}", exc_info=True)
            return False

        logger.info(
            f"Scheduler stopped after {self.runs_completed} iterations "
            f"({self.runs_skipped} skipped)"
        )
        return True

    def _run_guarded(self) -> None:
        """One scheduled run; skipped when an iteration is already in flight."""
        if not self._iteration_lock.acquire(blocking=False):
            self.runs_skipped += 1
            logger.warning("Previous loop iteration still running; skipping this run")
            return

        started = time.monotonic()
        self.last_run_started = datetime.utcnow()
        try:
            if self.iteration_function is None:
                logger.error("No iteration function registered")
                return

            logger.info(f"Loop iteration #{self.runs_completed + 1} starting")
            results = self.iteration_function()
            self.last_markets_processed = len(results) if results is not None else None
            self.consecutive_failures = 0
            self.runs_completed += 1

        except Exception as e:
            self.consecutive_failures += 1
            logger.error(
                f"Loop iteration failed ({self.consecutive_failures} in a row): {e}",
                exc_info=True
            )

        finally:
            self.last_run_duration = time.monotonic() - started
            logger.info(f"Loop iteration finished in {self.last_run_duration:.2f}s")
            self._iteration_lock.release()

    def _on_job_event(self, event) -> None:
        if getattr(event, "exception", None):
            logger.error(f"Job {event.job_id} raised: {event.exception}")
        elif event.code == EVENT_JOB_MISSED:
            logger.warning(f"Job {event.job_id} missed its run time")

    def is_job_running(self) -> bool:
        """True while an iteration holds the iteration lock."""
        acquired = self._iteration_lock.acquire(blocking=False)
        if acquired:
            self._iteration_lock.release()
        return not acquired

    def next_run_time(self) -> Optional[datetime]:
        if self.scheduler is None:
            return None
        job = self.scheduler.get_job(self.job_id)
        return getattr(job, "next_run_time", None) if job else None

    def get_status(self) -> dict:
        next_run = self.next_run_time() if self.is_running else None
        return {
            "is_running": self.is_running,
            "job_running": self.is_job_running(),
            "interval_minutes": self.interval_minutes if self.is_running else None,
            "next_run_time": next_run.isoformat() if isinstance(next_run, datetime) else None,
            "runs_completed": self.runs_completed,
            "runs_skipped": self.runs_skipped,
            "consecutive_failures": self.consecutive_failures,
            "last_run_started": self.last_run_started.isoformat() if self.last_run_started else None,
            "last_run_duration": self.last_run_duration,
            "last_markets_processed": self.last_markets_processed,
        }


_scheduler: Optional[Scheduler] = None


def start_scheduler(
    iteration_callable: Callable[[], Any],
    interval_minutes: Optional[int] = None,
    run_immediately: bool = False
) -> bool:
    """Start the process-wide scheduler, creating it on first use."""
    global _scheduler
    if _scheduler is None:
        _scheduler = Scheduler()
    return _scheduler.start(iteration_callable, interval_minutes, run_immediately)


def stop_scheduler(wait: bool = True) -> bool:
    if _scheduler is None:
        logger.warning("Scheduler was never started")
        return False
    return _scheduler.stop(wait)


def get_scheduler_status() -> dict:
    if _scheduler is None:
        return Scheduler().get_status()
    return _scheduler.get_status()
