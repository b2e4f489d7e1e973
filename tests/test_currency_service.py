"""
Tests for exchange rates and currency formatting.
"""

import pytest
import requests
from unittest.mock import MagicMock, patch

from models import AppSetting
from services.currency_service import (
    ExchangeRateService,
    ExchangeRateUnavailable,
    RATE_SOURCES,
    format_currency,
)

ECB_XML = """<?xml version="1.0" encoding="UTF-8"?>
<gesmes:Envelope><Cube><Cube time='2024-03-15'>
<Cube currency='USD' rate='1.0892'/><Cube currency='JPY' rate='161.5'/>
</Cube></Cube></gesmes:Envelope>"""


def ok_response(text='', payload=None):
    response = MagicMock()
    response.text = text
    response.json.return_value = payload or {}
    response.raise_for_status.return_value = None
    return response


def failing_response(status=503):
    response = MagicMock()
    response.raise_for_status.side_effect = requests.HTTPError(f"{status} Service Unavailable")
    return response


class TestFormatCurrency:
    """Test money formatting."""

    def test_usd(self):
        assert format_currency(1234.5, 'USD') == '$1,234.50'
        assert format_currency(-1.5, 'USD') == '-$1.50'

    def test_eur(self):
        assert format_currency(1234.5) == '1,234.50 €'
        assert format_currency(-1.5, 'EUR') == '-1.50 €'


class TestFetchUsdRate:
    """Test the exchange-rate source fallback chain."""

    def test_source_order(self):
        assert [name for name, _, _ in RATE_SOURCES] == [
            'ECB', 'Fawaz Ahmed API', 'Exchangerate.host', 'Frankfurter'
        ]

    @patch('services.currency_service.requests.get')
    def test_ecb_first(self, mock_get):
        mock_get.return_value = ok_response(text=ECB_XML)

        rates = ExchangeRateService().fetch_usd_rate()

        assert rates['EUR'] == 1.0
        assert rates['USD'] == 1.0892
        assert rates['source'] == 'ECB'
        assert mock_get.call_count == 1
        assert mock_get.call_args.kwargs['timeout'] == 8

    @patch('services.currency_service.requests.get')
    def test_falls_through_failed_sources(self, mock_get):
        """ECB down, Fawaz returns junk, exchangerate.host answers."""
        mock_get.side_effect = [
            failing_response(),
            ok_response(payload={'eur': {'usd': 'n/a'}}),
            ok_response(payload={'rates': {'USD': 1.1}}),
        ]

        rates = ExchangeRateService().fetch_usd_rate()

        assert rates['USD'] == 1.1
        assert rates['source'] == 'Exchangerate.host'

    @patch('services.currency_service.requests.get')
    def test_all_sources_fail(self, mock_get):
        mock_get.side_effect = requests.ConnectionError('offline')

        with pytest.raises(ExchangeRateUnavailable):
            ExchangeRateService().fetch_usd_rate()
        assert mock_get.call_count == 4


class TestGetRates:
    """Test caching and degradation of the EUR/USD rate."""

    def test_refresh_persists_rate(self, app):
        service = ExchangeRateService(sources=[('Test', 'http://rates', lambda r: 1.2)])
        with patch('services.currency_service.requests.get', return_value=ok_response()):
            service.refresh()

        assert AppSetting.get_value('usd_per_eur') == '1.2'
        assert AppSetting.get_value('usd_per_eur_source') == 'Test'

    def test_cached_within_ttl(self, app):
        service = ExchangeRateService(ttl=3600, sources=[('Test', 'http://rates', lambda r: 1.2)])
        with patch('services.currency_service.requests.get', return_value=ok_response()) as mock_get:
            service.get_rates()
            service.get_rates()
            service.usd_per_eur()
        assert mock_get.call_count == 1

    def test_stale_cached_rate_on_failure(self, app):
        service = ExchangeRateService(ttl=0, sources=[('Test', 'http://rates', lambda r: 1.2)])
        with patch('services.currency_service.requests.get', return_value=ok_response()):
            service.get_rates()
        with patch('services.currency_service.requests.get', side_effect=requests.Timeout('slow')):
            rates = service.get_rates()

        assert rates['USD'] == 1.2
        assert rates['stale'] is True

    def test_persisted_rate_when_cache_empty(self, app):
        AppSetting.set_value('usd_per_eur', '1.15')
        service = ExchangeRateService()
        with patch('services.currency_service.requests.get', side_effect=requests.Timeout('slow')):
            rates = service.get_rates()

        assert rates['USD'] == 1.15
        assert rates['stale'] is True

    def test_configured_fallback_last(self, app):
        service = ExchangeRateService(fallback_rate=1.08)
        with patch('services.currency_service.requests.get', side_effect=requests.Timeout('slow')):
            rates = service.get_rates()

        assert rates == {**rates, 'USD': 1.08, 'source': 'fallback', 'stale': True}

    def test_live_rates_raise_when_unavailable(self, app):
        service = ExchangeRateService()
        with patch('services.currency_service.requests.get', side_effect=requests.Timeout('slow')):
            with pytest.raises(ExchangeRateUnavailable):
                service.get_live_rates()


class TestConversions:
    """Test EUR/USD conversions."""

    @pytest.fixture
    def service(self):
        service = ExchangeRateService()
        service.get_rates = lambda: {'EUR': 1.0, 'USD': 1.25}
        return service

    def test_usd_to_eur(self, service):
        assert service.usd_to_eur(125.0) == 100.0
        assert service.usd_to_eur_rate() == 0.8

    def test_eur_to_usd(self, service):
        assert service.eur_to_usd(100.0) == 125.0

    def test_to_eur(self, service):
        assert service.to_eur(50.0, 'EUR') == 50.0
        assert service.to_eur(125.0, 'USD') == 100.0
        with pytest.raises(ValueError):
            service.to_eur(10.0, 'GBP')
