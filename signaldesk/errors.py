"""SignalDesk error kinds.

``ValidationError`` never leaves a strategy's ``analyze`` call; the other
kinds reach the supervisor and are surfaced as error events.
"""

from datetime import datetime, timezone


class SignalDeskError(Exception):
    """Base class for all SignalDesk errors.

    Carries the UTC time at which the error was raised so it can be shown
    next to the message in the dashboard.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message
        self.time = datetime.now(timezone.utc)


class ValidationError(SignalDeskError):
    """Malformed quote or candle input."""


class DataUnavailableError(SignalDeskError):
    """A connection call kept failing after all retries."""


class ExecutionError(SignalDeskError):
    """Order placement failed."""


class FatalThresholdError(SignalDeskError):
    """Consecutive error count reached the configured maximum."""


class SupervisorError(SignalDeskError):
    """Invalid supervisor lifecycle call (double start, missing connection)."""
