"""
Tests for the quote cache, provider budgets and the provider waterfall.
"""

import pytest
from unittest.mock import patch

from providers import BaseQuoteProvider, MarketIndex, Quote
from services.quote_cache import ProviderRateLimiter, QuoteCache
from services.quote_service import INDICES_CACHE_KEY, QuoteService, quote_cache_key


class FakeProvider(BaseQuoteProvider):
    """Provider answering from a fixed price table."""

    def __init__(self, name, prices=None, supported=None, error=None):
        super().__init__({})
        self.name = name
        self.prices = prices or {}
        self.supported = supported
        self.error = error
        self.calls = []
        self.batch_calls = []

    def supports(self, symbol):
        return self.supported is None or symbol in self.supported

    def fetch_quote(self, symbol):
        self.calls.append(symbol)
        if self.error:
            raise self.error
        price = self.prices.get(symbol)
        return Quote(price=price, ticker=symbol) if price is not None else None

    def fetch_batch(self, symbols):
        self.batch_calls.append(list(symbols))
        return super().fetch_batch(symbols)


class FakeYahoo(FakeProvider):
    def __init__(self, indices=None, **kwargs):
        super().__init__('yahoo', **kwargs)
        self.indices = indices
        self.index_calls = 0

    def fetch_indices(self):
        self.index_calls += 1
        if self.error:
            raise self.error
        return self.indices


class TestQuoteCache:
    """Test the LRU quote cache."""

    def test_fresh_and_expired_entries(self):
        """Entries older than max_age are misses but remain available stale."""
        cache = QuoteCache(max_size=10, default_ttl=300)
        with patch('services.quote_cache.time.time', return_value=1000.0):
            cache.set('quote:AAPL', 'data', 'yahoo')
        with patch('services.quote_cache.time.time', return_value=1200.0):
            assert cache.get('quote:AAPL') == 'data'
        with patch('services.quote_cache.time.time', return_value=1400.0):
            assert cache.get('quote:AAPL') is None
            assert cache.get_stale('quote:AAPL') == 'data'

    def test_lru_eviction(self):
        """The least recently used entry is dropped first."""
        cache = QuoteCache(max_size=2)
        cache.set('a', 1, 'p')
        cache.set('b', 2, 'p')
        cache.get('a')
        cache.set('c', 3, 'p')

        assert len(cache) == 2
        assert cache.get_stale('b') is None
        assert cache.get('a') == 1
        assert cache.get('c') == 3

    def test_stats(self):
        cache = QuoteCache()
        cache.set('a', 1, 'p')
        cache.get('a')
        cache.get('missing')
        stats = cache.stats()
        assert stats['size'] == 1
        assert stats['hits'] == 1
        assert stats['misses'] == 1
        assert stats['hit_rate'] == 50.0


class TestProviderRateLimiter:
    """Test per-provider call budgets."""

    def test_budget_exhausted_within_window(self):
        limiter = ProviderRateLimiter({'coingecko': 2})
        assert limiter.check('coingecko') is True
        assert limiter.check('coingecko') is True
        assert limiter.check('coingecko') is False
        assert limiter.status('coingecko')['available'] is False
        assert limiter.status('coingecko')['remaining'] == 0

    def test_window_resets(self):
        limiter = ProviderRateLimiter({'ing': 1}, window_seconds=60)
        with patch('services.quote_cache.time.time', return_value=0.0):
            assert limiter.check('ing') is True
            assert limiter.check('ing') is False
        with patch('services.quote_cache.time.time', return_value=61.0):
            assert limiter.check('ing') is True

    def test_unknown_provider_is_unlimited(self):
        limiter = ProviderRateLimiter({})
        assert all(limiter.check('other') for _ in range(100))

    def test_default_budgets(self):
        """Default budgets are yahoo 100, ing 50, finnhub 60, coingecko 10 per minute."""
        limiter = ProviderRateLimiter()
        assert limiter.limits == {'yahoo': 100, 'ing': 50, 'finnhub': 60, 'coingecko': 10}


class TestFetchQuote:
    """Test the single-identifier waterfall."""

    def test_first_provider_with_price_wins(self):
        """Later providers are not asked once one succeeds."""
        first = FakeProvider('yahoo', prices={})
        second = FakeProvider('ing', prices={'DE0007164600': 120.5})
        third = FakeProvider('finnhub', prices={'DE0007164600': 999})
        service = QuoteService([first, second, third])

        quote = service.fetch_quote('DE0007164600')

        assert quote.price == 120.5
        assert quote.provider == 'ing'
        assert first.calls == ['DE0007164600']
        assert third.calls == []

    def test_provider_errors_fall_through(self):
        failing = FakeProvider('yahoo', error=RuntimeError('boom'))
        working = FakeProvider('finnhub', prices={'AAPL': 180.0})
        service = QuoteService([failing, working])

        assert service.fetch_quote('AAPL').provider == 'finnhub'

    def test_non_positive_prices_are_ignored(self):
        zero = FakeProvider('yahoo', prices={'AAPL': 0})
        working = FakeProvider('ing', prices={'AAPL': 10.0})
        service = QuoteService([zero, working])

        assert service.fetch_quote('AAPL').provider == 'ing'

    def test_cache_hit_skips_providers(self):
        provider = FakeProvider('yahoo', prices={'AAPL': 180.0})
        service = QuoteService([provider])

        service.fetch_quote('AAPL')
        service.fetch_quote('AAPL')

        assert provider.calls == ['AAPL']

    def test_rate_limited_provider_is_skipped(self):
        limited = FakeProvider('coingecko', prices={'BTC': 50000.0})
        fallback = FakeProvider('finnhub', prices={'BTC': 51000.0})
        service = QuoteService([limited, fallback], rate_limiter=ProviderRateLimiter({'coingecko': 0}))

        quote = service.fetch_quote('BTC')

        assert quote.provider == 'finnhub'
        assert limited.calls == []

    def test_stale_cache_when_all_fail(self):
        """An expired entry is returned when every provider fails."""
        cache = QuoteCache()
        old = Quote(price=99.0, ticker='AAPL', provider='yahoo')
        with patch('services.quote_cache.time.time', return_value=0.0):
            cache.set(quote_cache_key('AAPL'), old, 'yahoo')
        service = QuoteService([FakeProvider('yahoo', error=RuntimeError('down'))], cache=cache)

        assert service.fetch_quote('AAPL') is old

    def test_none_when_nothing_available(self):
        service = QuoteService([FakeProvider('yahoo')])
        assert service.fetch_quote('AAPL') is None


class TestFetchBatch:
    """Test batched quote fetching."""

    def test_groups_by_best_provider(self):
        yahoo = FakeProvider('yahoo', prices={'AAPL': 1.0, 'MSFT': 2.0}, supported={'AAPL', 'MSFT'})
        coingecko = FakeProvider('coingecko', prices={'BTC': 3.0}, supported={'BTC'})
        service = QuoteService([yahoo, coingecko])

        results = service.fetch_batch(['AAPL', 'MSFT', 'BTC'])

        assert {s: q.provider for s, q in results.items()} == {
            'AAPL': 'yahoo', 'MSFT': 'yahoo', 'BTC': 'coingecko'
        }
        assert yahoo.batch_calls == [['AAPL', 'MSFT']]
        assert coingecko.batch_calls == [['BTC']]

    def test_preferred_provider_is_used_first(self):
        yahoo = FakeProvider('yahoo', prices={'DE000HG0ABC1': 1.0})
        ing = FakeProvider('ing', prices={'DE000HG0ABC1': 2.0})
        service = QuoteService([yahoo, ing])

        results = service.fetch_batch(['DE000HG0ABC1'], preferred={'DE000HG0ABC1': 'ing'})

        assert results['DE000HG0ABC1'].provider == 'ing'
        assert yahoo.calls == []

    def test_misses_fall_back_sequentially(self):
        """Identifiers the grouped provider missed try the remaining providers."""
        yahoo = FakeProvider('yahoo', prices={'AAPL': 1.0})
        finnhub = FakeProvider('finnhub', prices={'XYZ': 5.0})
        service = QuoteService([yahoo, finnhub])

        results = service.fetch_batch(['AAPL', 'XYZ'])

        assert results['XYZ'].provider == 'finnhub'
        assert finnhub.calls == ['XYZ']

    def test_unresolved_identifiers_are_omitted(self):
        service = QuoteService([FakeProvider('yahoo')])
        assert service.fetch_batch(['NOPE']) == {}

    def test_force_bypasses_cache(self):
        provider = FakeProvider('yahoo', prices={'AAPL': 1.0})
        service = QuoteService([provider])

        service.fetch_batch(['AAPL'])
        service.fetch_batch(['AAPL'])
        service.fetch_batch(['AAPL'], force=True)

        assert provider.batch_calls == [['AAPL'], ['AAPL']]

    def test_duplicates_fetched_once(self):
        provider = FakeProvider('yahoo', prices={'AAPL': 1.0})
        service = QuoteService([provider])

        service.fetch_batch(['AAPL', 'AAPL'])

        assert provider.batch_calls == [['AAPL']]


class TestIndicesAndSearch:
    """Test market indices and merged search."""

    def test_indices_cached(self):
        yahoo = FakeYahoo(indices=[MarketIndex('DAX', '^GDAXI', 18000.0, 0.5)])
        service = QuoteService([yahoo])

        first = service.fetch_indices()
        second = service.fetch_indices()

        assert first == second
        assert yahoo.index_calls == 1
        assert service.cache.get(INDICES_CACHE_KEY) == first

    def test_indices_stale_then_empty(self):
        yahoo = FakeYahoo(error=RuntimeError('down'))
        service = QuoteService([yahoo])
        assert service.fetch_indices() == []

        stale = [MarketIndex('S&P 500', '^GSPC', 5000.0, 1.0)]
        service.cache.set(INDICES_CACHE_KEY, stale, 'yahoo')
        assert service.fetch_indices(force=True) == stale

    def test_search_deduplicates_by_isin_then_symbol(self):
        yahoo = FakeProvider('yahoo')
        yahoo.search = lambda q: [
            {'symbol': 'AAPL', 'name': 'Apple Inc.', 'provider': 'yahoo'},
            {'symbol': 'SAP.DE', 'name': 'SAP', 'provider': 'yahoo'},
        ]
        finnhub = FakeProvider('finnhub')
        finnhub.search = lambda q: [
            {'symbol': 'aapl', 'name': 'APPLE INC', 'isin': None, 'provider': 'finnhub'},
            {'symbol': 'SAP.DE', 'name': 'SAP SE', 'isin': None, 'provider': 'finnhub'},
        ]
        service = QuoteService([yahoo, finnhub])

        results = service.search('apple')

        assert [r['symbol'] for r in results] == ['AAPL', 'SAP.DE']
        assert results[0]['provider'] == 'yahoo'

    def test_search_survives_provider_failure(self):
        broken = FakeProvider('yahoo')

        def fail(q):
            raise RuntimeError('search down')

        broken.search = fail
        coingecko = FakeProvider('coingecko')
        coingecko.search = lambda q: [{'symbol': 'BTC', 'name': 'Bitcoin', 'provider': 'coingecko'}]
        service = QuoteService([broken, coingecko])

        assert [r['symbol'] for r in service.search('bitcoin')] == ['BTC']

    def test_empty_search(self):
        assert QuoteService([]).search('  ') == []
