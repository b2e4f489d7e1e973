"""
Tests for price snapshots and history.
"""

from datetime import datetime, timedelta
from unittest.mock import MagicMock, patch

import pytest

from models import PriceSnapshot, db
from providers import Quote
from services import SnapshotService


@pytest.fixture
def quote_service():
    return MagicMock()


@pytest.fixture
def service(quote_service):
    return SnapshotService(quote_service)


def add_snapshots(identifier, prices, start=datetime(2024, 3, 1, 9, 0)):
    for i, price in enumerate(prices):
        db.session.add(PriceSnapshot(
            identifier=identifier,
            price=price,
            source='yahoo',
            snapshot_at=start + timedelta(hours=i),
        ))
    db.session.commit()


class TestSavePriceSnapshots:
    """Test the snapshot job."""

    def test_active_identifiers(self, app, sample_trades, service):
        """Open trades only, ISIN preferred over ticker."""
        identifiers = service.get_active_identifiers()
        assert sorted(identifiers) == ['DE0007164600', 'DE000HG0ABC1', 'US0378331005']

    def test_saves_one_snapshot_per_instrument(self, app, sample_trades, service, quote_service):
        quote_service.fetch_batch.return_value = {
            'US0378331005': Quote(price=121.5, provider='yahoo'),
            'DE0007164600': Quote(price=181.0, provider='ing'),
            'DE000HG0ABC1': Quote(price=3.1, provider='ing'),
        }

        result = service.save_price_snapshots()

        assert result['success'] is True
        assert result['totalInstruments'] == 3
        assert result['successCount'] == 3
        assert result['errorCount'] == 0
        assert PriceSnapshot.query.count() == 3
        assert quote_service.fetch_batch.call_args.kwargs['force'] is True
        snapshot = PriceSnapshot.query.filter_by(identifier='DE0007164600').one()
        assert snapshot.price == 181.0
        assert snapshot.source == 'ing'
        assert snapshot.snapshot_at.second == 0

    def test_missing_prices_are_reported(self, app, sample_trades, service, quote_service):
        quote_service.fetch_batch.return_value = {
            'US0378331005': Quote(price=121.5, provider='yahoo'),
            'DE0007164600': Quote(price=0, provider='ing'),
        }

        result = service.save_price_snapshots()

        assert result['success'] is False
        assert result['successCount'] == 1
        assert result['errorCount'] == 2
        assert {e['identifier'] for e in result['errors']} == {'DE0007164600', 'DE000HG0ABC1'}
        assert PriceSnapshot.query.count() == 1

    def test_failed_batch_does_not_stop_the_run(self, app, sample_trades, service, quote_service):
        prices = {
            'US0378331005': Quote(price=121.5, provider='yahoo'),
            'DE0007164600': Quote(price=181.0, provider='ing'),
            'DE000HG0ABC1': Quote(price=3.1, provider='ing'),
        }
        quote_service.fetch_batch.side_effect = [RuntimeError('provider down'), prices]

        result = service.save_price_snapshots(batch_size=2)

        assert quote_service.fetch_batch.call_count == 2
        assert result['errorCount'] == 2
        assert result['successCount'] == 1

    def test_same_minute_is_not_duplicated(self, app, sample_trades, service, quote_service):
        quote_service.fetch_batch.return_value = {'US0378331005': Quote(price=121.5, provider='yahoo')}

        with patch('services.snapshot_service.utcnow', return_value=datetime(2024, 3, 1, 9, 30, 12)):
            service.save_price_snapshots()
            result = service.save_price_snapshots()

        assert result['successCount'] == 1
        snapshot = PriceSnapshot.query.filter_by(identifier='US0378331005').one()
        assert snapshot.snapshot_at == datetime(2024, 3, 1, 9, 30)

    def test_nothing_to_snapshot(self, app, service, quote_service):
        result = service.save_price_snapshots()

        assert result['totalInstruments'] == 0
        assert result['success'] is True
        quote_service.fetch_batch.assert_not_called()


class TestHistory:
    """Test history queries and stats."""

    def test_history_is_chronological(self, app, service):
        add_snapshots('US0378331005', [100.0, 110.0, 99.0, 105.0])

        history = service.get_history('US0378331005')

        assert history['count'] == 4
        assert [p['price'] for p in history['prices']] == [100.0, 110.0, 99.0, 105.0]
        summary = history['summary']
        assert summary['min'] == 99.0
        assert summary['max'] == 110.0
        assert summary['mean'] == 103.5
        assert summary['changePct'] == 5.0
        assert summary['volatility'] > 0

    def test_history_range_and_limit(self, app, service):
        add_snapshots('US0378331005', [100.0, 110.0, 99.0, 105.0])

        history = service.get_history(
            'US0378331005',
            start=datetime(2024, 3, 1, 10, 0),
            end=datetime(2024, 3, 1, 11, 0),
        )
        assert [p['price'] for p in history['prices']] == [110.0, 99.0]
        assert history['summary']['volatility'] is None

        latest = service.get_history('US0378331005', limit=1)
        assert [p['price'] for p in latest['prices']] == [105.0]

    def test_empty_history(self, app, service):
        history = service.get_history('NOPE')
        assert history['count'] == 0
        assert history['summary'] is None

    def test_stats(self, app, service):
        add_snapshots('US0378331005', [100.0, 110.0, 99.0, 105.0])
        add_snapshots('DE0007164600', [180.0, 181.0])

        stats = service.get_stats()

        assert stats['totalSnapshots'] == 6
        assert stats['uniqueInstruments'] == 2
        assert stats['avgSnapshotsPerInstrument'] == 3.0
        assert stats['oldestSnapshot'] == '2024-03-01T09:00:00'
        assert stats['newestSnapshot'] == '2024-03-01T12:00:00'

    def test_stats_empty(self, app, service):
        stats = service.get_stats()
        assert stats['totalSnapshots'] == 0
        assert stats['avgSnapshotsPerInstrument'] == 0
        assert stats['oldestSnapshot'] is None
