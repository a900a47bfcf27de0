"""
Token refresh scheduling.

Tokens are rotated proactively once a fixed fraction of their lifetime has
passed, leaving the rest as a safety margin before hard expiry. Every check
is pushed back by a small buffer so an overdue token is retried promptly
without spinning.
"""

from datetime import datetime, timedelta

from ..constants import DEFAULT_REFRESH_BUFFER_SECONDS, DEFAULT_REFRESH_FRACTION


class RefreshScheduler:
    """Computes when a credential has to be looked at again."""

    def __init__(
        self,
        refresh_fraction: float = DEFAULT_REFRESH_FRACTION,
        poll_buffer: timedelta = timedelta(seconds=DEFAULT_REFRESH_BUFFER_SECONDS),
    ):
        if not 0 < refresh_fraction <= 1:
            raise ValueError("refresh_fraction must be in (0, 1]")
        if poll_buffer <= timedelta(0):
            raise ValueError("poll_buffer must be positive")
        self.refresh_fraction = refresh_fraction
        self.poll_buffer = poll_buffer

    def remaining(
        self, now: datetime, expiring: datetime, last_refresh: datetime
    ) -> timedelta:
        """Time left until the refresh threshold, never negative."""
        validity = expiring - last_refresh
        threshold = last_refresh + validity * self.refresh_fraction
        return max(timedelta(0), threshold - now)

    def next_check(
        self, now: datetime, expiring: datetime, last_refresh: datetime
    ) -> timedelta:
        """
        Delay until the credential must be re-evaluated.

        Args:
            now: Current time
            expiring: Absolute expiry of the credential
            last_refresh: When the credential was issued

        Returns:
            Remaining time before the refresh threshold plus the poll buffer
        """
        return self.remaining(now, expiring, last_refresh) + self.poll_buffer

    def is_due(self, now: datetime, expiring: datetime, last_refresh: datetime) -> bool:
        """Whether the refresh threshold has been reached."""
        return self.remaining(now, expiring, last_refresh) == timedelta(0)
