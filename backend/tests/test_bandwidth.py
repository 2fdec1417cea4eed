"""
Tests for the bandwidth governor.
"""

from datetime import datetime, timezone

from worker.bandwidth import BandwidthGovernor, BYTES_PER_GB

from conftest import FakeClock


class TestRecording:
    """Test byte accounting."""

    def test_sizes_accumulate_and_unknown_sizes_are_ignored(self, governor):
        """Responses without a size contribute nothing."""
        governor.record_response(1_000_000)
        governor.record_response(2_000_000)
        governor.record_response(None)

        assert governor.session_bytes == 3_000_000
        assert governor.daily_bytes == 3_000_000
        assert governor.monthly_bytes == 3_000_000

    def test_invalid_sizes_are_ignored(self, governor):
        governor.record_response(0)
        governor.record_response(-50)
        governor.record_response("not a number")

        assert governor.session_bytes == 0

    def test_record_headers_reads_content_length(self, governor):
        """Header names are matched case-insensitively."""
        governor.record_headers({'Content-Length': '2048'})
        governor.record_headers({'content-length': '1024'})
        governor.record_headers({'content-type': 'text/html'})
        governor.record_headers({'content-length': 'abc'})

        assert governor.session_bytes == 3072

    def test_usage_stats_shape(self, governor):
        governor.record_response(BYTES_PER_GB // 2)

        stats = governor.usage_stats()

        assert stats['session']['bytes'] == BYTES_PER_GB // 2
        assert stats['session']['gb'] == 0.5
        assert stats['daily']['gb'] == 0.5
        assert stats['daily']['budget_gb'] == 2.0
        assert stats['daily']['remaining'] == 1.5
        assert stats['monthly']['budget_gb'] == 30.0
        assert stats['monthly']['remaining'] == 29.5

    def test_gb_values_are_rounded_to_three_decimals(self, governor):
        governor.record_response(1_000_000)

        assert governor.usage_stats()['session']['gb'] == 0.001


class TestBudgets:
    """Test budget checks."""

    def test_under_budget(self, governor):
        governor.record_response(BYTES_PER_GB)
        assert governor.is_over_budget() is False

    def test_over_daily_budget(self):
        governor = BandwidthGovernor(daily_budget_gb=1.0, monthly_budget_gb=30.0)
        governor.record_response(BYTES_PER_GB + 1)

        assert governor.is_over_budget() is True

    def test_over_monthly_budget(self):
        governor = BandwidthGovernor(daily_budget_gb=100.0, monthly_budget_gb=1.0)
        governor.record_response(2 * BYTES_PER_GB)

        assert governor.is_over_budget() is True

    def test_remaining_never_negative(self):
        governor = BandwidthGovernor(daily_budget_gb=1.0, monthly_budget_gb=1.0)
        governor.record_response(3 * BYTES_PER_GB)

        assert governor.remaining() == {'daily': 0.0, 'monthly': 0.0}
        stats = governor.usage_stats()
        assert stats['daily']['remaining'] == 0.0
        assert stats['monthly']['remaining'] == 0.0


class TestResets:
    """Test counter resets."""

    def test_reset_session_keeps_daily_and_monthly(self, governor):
        governor.record_response(5000)
        governor.reset_session()

        assert governor.session_bytes == 0
        assert governor.daily_bytes == 5000
        assert governor.monthly_bytes == 5000

    def test_manual_daily_and_monthly_resets(self, governor):
        governor.record_response(5000)
        governor.reset_daily()
        assert governor.daily_bytes == 0
        assert governor.monthly_bytes == 5000

        governor.reset_monthly()
        assert governor.monthly_bytes == 0

    def test_daily_counter_rolls_over_at_utc_midnight(self):
        clock = FakeClock(datetime(2026, 3, 14, 23, 59, tzinfo=timezone.utc))
        governor = BandwidthGovernor(clock=clock)
        governor.record_response(4000)

        clock.advance(minutes=2)

        assert governor.daily_bytes == 0
        assert governor.monthly_bytes == 4000
        assert governor.session_bytes == 4000

    def test_monthly_counter_rolls_over_on_new_month(self):
        clock = FakeClock(datetime(2026, 3, 31, 23, 0, tzinfo=timezone.utc))
        governor = BandwidthGovernor(clock=clock)
        governor.record_response(4000)

        clock.advance(hours=2)
        governor.record_response(1000)

        assert governor.daily_bytes == 1000
        assert governor.monthly_bytes == 1000
