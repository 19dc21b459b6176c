"""Error taxonomy for the timer core.

Only InvalidDurationError reaches callers. Signal and store failures are
recovered where they happen and surface as log records.
"""


class VidyutTimerError(Exception):
    """Base class for timer errors."""


class SignalUnavailableError(VidyutTimerError):
    """The activity detector could not be acquired (no battery, no mic, denied)."""


class StoreWriteError(VidyutTimerError):
    """A session merge could not be applied."""


class InvalidDurationError(VidyutTimerError, ValueError):
    """Requested countdown duration is not positive."""

    def __init__(self, duration):
        super().__init__(f"Timer duration must be greater than zero, got {duration!r}")
        self.duration = duration
