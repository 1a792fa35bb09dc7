"""
Per-source circuit breaker.

After `failure_threshold` consecutive failures the breaker opens and calls
are short-circuited to a fallback value without invoking the wrapped
operation. Once `recovery_timeout` has passed since the last failure, the
next call is let through: success closes the breaker, failure keeps it open
and restarts the recovery window.
"""

import logging
import threading
import time
from typing import Callable, Optional, TypeVar

from trader.config import Config

# Configure module logger
logger = logging.getLogger(__name__)

T = TypeVar('T')


class CircuitBreaker:
    """
    Fail-fast guard around one external dependency.

    Thread-safe; the clock is injectable for tests.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: Optional[int] = None,
        recovery_timeout: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Initialize the breaker.

        Args:
            name: Name of the guarded source (used in logs)
            failure_threshold: Consecutive failures that open the breaker.
                If None, uses Config.BREAKER_FAILURE_THRESHOLD
            recovery_timeout: Seconds after the last failure before a call is
                let through again. If None, uses Config.BREAKER_RECOVERY_SECONDS
            clock: Monotonic time source in seconds
        """
        self.name = name
        self.failure_threshold = failure_threshold if failure_threshold is not None else Config.BREAKER_FAILURE_THRESHOLD
        self.recovery_timeout = recovery_timeout if recovery_timeout is not None else Config.BREAKER_RECOVERY_SECONDS
        if self.failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")

        self._clock = clock
        self._lock = threading.Lock()
        self.failures = 0
        self.last_failure_time: Optional[float] = None

    def _is_open_locked(self) -> bool:
        if self.failures < self.failure_threshold or self.last_failure_time is None:
            return False
        return self._clock() - self.last_failure_time < self.recovery_timeout

    @property
    def is_open(self) -> bool:
        with self._lock:
            return self._is_open_locked()

    def call(self, operation: Callable[[], T], fallback: T) -> T:
        """
        Invoke `operation` unless the breaker is open.

        Args:
            operation: Zero-argument callable performing the external call
            fallback: Value returned immediately while the breaker is open

        Returns:
            The operation's result, or fallback when short-circuited

        Raises:
            Exception: Whatever the operation raised; the failure is recorded first
        """
        with self._lock:
            if self._is_open_locked():
                logger.debug(f"Circuit '{self.name}' open, returning fallback")
                return fallback

        try:
            result = operation()
        except Exception:
            self._record_failure()
            raise

        self._record_success()
        return result

    def _record_failure(self) -> None:
        with self._lock:
            self.failures += 1
            self.last_failure_time = self._clock()
            if self.failures == self.failure_threshold:
                logger.warning(
                    f"Circuit '{self.name}' opened after {self.failures} consecutive failures; "
                    f"cooling down for {self.recovery_timeout:.0f}s"
                )
            elif self.failures > self.failure_threshold:
                logger.warning(f"Circuit '{self.name}' recovery attempt failed; staying open")

    def _record_success(self) -> None:
        with self._lock:
            if self.failures >= self.failure_threshold:
                logger.info(f"Circuit '{self.name}' closed after successful recovery attempt")
            self.failures = 0
            self.last_failure_time = None

    def reset(self) -> None:
        with self._lock:
            self.failures = 0
            self.last_failure_time = None

    def get_state(self) -> dict:
        with self._lock:
            return {
                "name": self.name,
                "open": self._is_open_locked(),
                "failures": self.failures,
                "failure_threshold": self.failure_threshold,
                "recovery_timeout": self.recovery_timeout,
            }
