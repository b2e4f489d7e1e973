"""
Tests for cron_refresh.py - scheduled data refresh functionality.
"""

import pytest
from datetime import datetime, timezone
from unittest.mock import patch, MagicMock

import cron_refresh
from services import ExchangeRateUnavailable

RATES = {'EUR': 1.0, 'USD': 1.09, 'source': 'ECB'}
SNAPSHOT_OK = {'success': True, 'totalInstruments': 2, 'successCount': 2,
               'errorCount': 0, 'errors': [], 'duration': 10}


class TestIsWeekend:
    """Test weekend detection."""

    def test_saturday_and_sunday(self):
        # January 6, 2024 was a Saturday
        assert cron_refresh.is_weekend(datetime(2024, 1, 6, 12, 0, tzinfo=timezone.utc)) is True
        assert cron_refresh.is_weekend(datetime(2024, 1, 7, 12, 0, tzinfo=timezone.utc)) is True

    def test_weekday(self):
        assert cron_refresh.is_weekend(datetime(2024, 1, 8, 12, 0, tzinfo=timezone.utc)) is False


@pytest.fixture
def cron_app(app):
    """The test app with a mocked portfolio manager, as create_app() returns it."""
    pm = MagicMock()
    pm.refresh_exchange_rate.return_value = RATES
    pm.take_price_snapshots.return_value = SNAPSHOT_OK
    with patch.object(app, 'portfolio_manager', pm), \
            patch('cron_refresh.create_app', return_value=app):
        yield app


class TestMain:
    """Test the cron entry point."""

    def test_weekday_runs_everything(self, cron_app):
        with patch('cron_refresh.is_weekend', return_value=False):
            cron_refresh.main([])

        cron_app.portfolio_manager.refresh_exchange_rate.assert_called_once()
        cron_app.portfolio_manager.take_price_snapshots.assert_called_once()

    def test_weekend_skips_snapshots(self, cron_app):
        with patch('cron_refresh.is_weekend', return_value=True):
            cron_refresh.main([])

        cron_app.portfolio_manager.refresh_exchange_rate.assert_called_once()
        cron_app.portfolio_manager.take_price_snapshots.assert_not_called()

    def test_force_on_weekend(self, cron_app):
        with patch('cron_refresh.is_weekend', return_value=True):
            cron_refresh.main(['--force'])

        cron_app.portfolio_manager.take_price_snapshots.assert_called_once()

    def test_rates_only(self, cron_app):
        with patch('cron_refresh.is_weekend', return_value=False):
            cron_refresh.main(['--rates-only'])

        cron_app.portfolio_manager.take_price_snapshots.assert_not_called()

    def test_rate_failure_exits_nonzero(self, cron_app):
        cron_app.portfolio_manager.refresh_exchange_rate.side_effect = ExchangeRateUnavailable('offline')

        with patch('cron_refresh.is_weekend', return_value=True):
            with pytest.raises(SystemExit) as exc:
                cron_refresh.main([])
        assert exc.value.code == 1

    def test_snapshots_saving_nothing_exits_nonzero(self, cron_app):
        cron_app.portfolio_manager.take_price_snapshots.return_value = dict(
            SNAPSHOT_OK, success=False, successCount=0, errorCount=2,
            errors=[{'identifier': 'A', 'error': 'No price available'},
                    {'identifier': 'B', 'error': 'No price available'}],
        )

        with patch('cron_refresh.is_weekend', return_value=False):
            with pytest.raises(SystemExit):
                cron_refresh.main([])

    def test_partial_snapshot_failure_is_ok(self, cron_app):
        cron_app.portfolio_manager.take_price_snapshots.return_value = dict(
            SNAPSHOT_OK, success=False, successCount=1, errorCount=1,
            errors=[{'identifier': 'B', 'error': 'No price available'}],
        )

        with patch('cron_refresh.is_weekend', return_value=False):
            cron_refresh.main([])
