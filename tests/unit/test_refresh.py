"""Unit tests for refresh scheduling."""

from datetime import UTC, datetime, timedelta

import pytest

from managed_identity_agent.utils.refresh import RefreshScheduler

NOW = datetime(2024, 1, 1, 1, 0, 0, tzinfo=UTC)
MIDNIGHT = datetime(2024, 1, 1, 0, 0, 0, tzinfo=UTC)


def next_check(now, expiring, last_refresh):
    return RefreshScheduler().next_check(now, expiring, last_refresh)


class TestNextCheck:
    """Delay computation with the default 80% threshold and 5s buffer."""

    def test_expired_token_is_rechecked_after_buffer(self):
        expiring = MIDNIGHT + timedelta(seconds=10)

        assert next_check(NOW, expiring, MIDNIGHT) == timedelta(seconds=5)

    def test_token_before_threshold(self):
        expiring = MIDNIGHT + timedelta(hours=10)

        # Threshold at 08:00, one hour in
        assert next_check(NOW, expiring, MIDNIGHT) == timedelta(hours=7, seconds=5)

    def test_never_shorter_than_buffer(self):
        for offset in (0, 1, 3600, 86400):
            now = NOW + timedelta(seconds=offset)
            assert next_check(now, NOW, MIDNIGHT) >= timedelta(seconds=5)

    def test_exactly_at_threshold(self):
        expiring = MIDNIGHT + timedelta(seconds=100)
        now = MIDNIGHT + timedelta(seconds=80)

        assert next_check(now, expiring, MIDNIGHT) == timedelta(seconds=5)


class TestRefreshScheduler:
    """Configurable fraction and buffer."""

    def test_is_due_at_and_after_threshold(self):
        scheduler = RefreshScheduler()
        expiring = MIDNIGHT + timedelta(seconds=100)

        assert not scheduler.is_due(MIDNIGHT + timedelta(seconds=79), expiring, MIDNIGHT)
        assert scheduler.is_due(MIDNIGHT + timedelta(seconds=80), expiring, MIDNIGHT)
        assert scheduler.is_due(MIDNIGHT + timedelta(seconds=120), expiring, MIDNIGHT)

    def test_custom_fraction_and_buffer(self):
        scheduler = RefreshScheduler(
            refresh_fraction=0.5, poll_buffer=timedelta(seconds=30)
        )
        expiring = MIDNIGHT + timedelta(hours=4)

        assert scheduler.next_check(MIDNIGHT, expiring, MIDNIGHT) == timedelta(
            hours=2, seconds=30
        )

    def test_remaining_is_never_negative(self):
        scheduler = RefreshScheduler()

        assert scheduler.remaining(NOW, MIDNIGHT, MIDNIGHT) == timedelta(0)

    @pytest.mark.parametrize("fraction", [0, -0.1, 1.5])
    def test_rejects_invalid_fraction(self, fraction):
        with pytest.raises(ValueError, match="refresh_fraction"):
            RefreshScheduler(refresh_fraction=fraction)

    def test_rejects_non_positive_buffer(self):
        with pytest.raises(ValueError, match="poll_buffer"):
            RefreshScheduler(poll_buffer=timedelta(0))
