"""
Job tracker error types.
"""


class TrackerError(Exception):
    """Base exception for job tracker failures."""
    pass


class PollTimeoutError(TrackerError):
    """The tracked job did not resolve within the allowed poll attempts."""

    def __init__(self, attempts: int, interval: float):
        self.attempts = attempts
        self.interval = interval
        super().__init__(
            f"Project did not complete processing within the expected time "
            f"({attempts} attempts at {interval:g}s)"
        )
