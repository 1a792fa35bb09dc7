"""
Error types raised across the trading pipeline.

Most of these are recovered locally by the component that sees them first;
only InvalidSnapshotError aborts processing of a single market.
"""

from typing import Optional


class TraderError(Exception):
    """Base class for trader errors."""


class InvalidSnapshotError(TraderError):
    """A market snapshot is missing required fields or is structurally invalid."""


class IneligibilityError(TraderError):
    """A market failed the eligibility filters."""

    def __init__(self, failed_filters: list[str], details: Optional[list[str]] = None):
        self.failed_filters = failed_filters
        self.details = details or list(failed_filters)
        super().__init__(f"Market failed filters: {', '.join(failed_filters)}")


class SourceUnavailableError(TraderError):
    """An intelligence source is unconfigured, erroring, or short-circuited."""

    def __init__(self, source: str, message: str):
        self.source = source
        super().__init__(f"{source}: {message}")


class SecurityRejection(TraderError):
    """A trade was blocked by spend or position limits."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class ExecutionError(TraderError):
    """The execution backend failed to approve or submit a trade."""


class InsufficientBalanceError(ExecutionError):
    """The wallet cannot cover the trade."""


class ConfirmationTimeout(TraderError):
    """A submitted transaction was not confirmed in time."""


class DecisionServiceError(TraderError):
    """The language-model decision service returned nothing usable."""
