# services/quote_service.py
"""
Quote aggregation across providers with caching and a stale fallback.
"""

import logging
from typing import Dict, List, Optional

from providers import BaseQuoteProvider, MarketIndex, Quote, is_isin
from services.quote_cache import ProviderRateLimiter, QuoteCache

logger = logging.getLogger(__name__)

INDICES_CACHE_KEY = 'indices:all'


def quote_cache_key(symbol: str) -> str:
    return f"quote:{symbol}"


class QuoteService:
    """
    Fetches quotes by walking providers in priority order.

    Providers are tried one after another, never in parallel. The first
    positive price wins and is cached; rate-limited providers are skipped.
    """

    def __init__(self, providers: List[BaseQuoteProvider], cache: QuoteCache = None,
                 rate_limiter: ProviderRateLimiter = None):
        self.providers = list(providers)
        self.cache = cache or QuoteCache()
        self.rate_limiter = rate_limiter or ProviderRateLimiter()

    def get_provider(self, name: str) -> Optional[BaseQuoteProvider]:
        return next((p for p in self.providers if p.name == name), None)

    def providers_for(self, symbol: str) -> List[BaseQuoteProvider]:
        return [p for p in self.providers if p.supports(symbol)]

    def fetch_quote(self, symbol: str) -> Optional[Quote]:
        key = quote_cache_key(symbol)
        cached = self.cache.get(key)
        if cached:
            logger.debug(f"Cache hit: {symbol}")
            return cached

        candidates = self.providers_for(symbol)
        if not candidates:
            logger.warning(f"No provider supports {symbol}")
            return self.cache.get_stale(key)

        quote = self._waterfall(symbol, candidates)
        if quote is not None:
            return quote

        stale = self.cache.get_stale(key)
        if stale:
            return stale
        logger.error(f"All providers failed for {symbol}")
        return None

    def _waterfall(self, symbol: str, candidates: List[BaseQuoteProvider]) -> Optional[Quote]:
        for provider in candidates:
            if not self.rate_limiter.check(provider.name):
                logger.warning(f"Skipping {provider.name} for {symbol} (rate limit)")
                continue
            try:
                quote = provider.fetch_quote(symbol)
            except Exception as e:
                logger.warning(f"{provider.name} failed for {symbol}: {e}")
                continue

            if quote is not None and quote.price > 0:
                quote.provider = provider.name
                self.cache.set(quote_cache_key(symbol), quote, provider.name)
                logger.info(f"{provider.name} succeeded for {symbol}")
                return quote
            logger.info(f"{provider.name} returned no data for {symbol}")
        return None

    def fetch_batch(self, symbols: List[str], force: bool = False,
                    preferred: Optional[Dict[str, str]] = None) -> Dict[str, Quote]:
        """
        Fetch many identifiers, grouped into one batch call per provider.

        Args:
            symbols: ISINs or tickers
            force: Skip the fresh-cache lookup
            preferred: identifier -> provider name to try first

        Returns:
            Dict mapping identifier -> Quote for every identifier that resolved
        """
        preferred = preferred or {}
        results: Dict[str, Quote] = {}
        by_provider: Dict[str, List[str]] = {}

        for symbol in dict.fromkeys(symbols):
            if not force:
                cached = self.cache.get(quote_cache_key(symbol))
                if cached:
                    results[symbol] = cached
                    continue

            best = None
            wanted = preferred.get(symbol)
            if wanted:
                best = next((p for p in self.providers if p.name == wanted and p.supports(symbol)), None)
                if best:
                    logger.info(f"Using preferred provider {wanted} for {symbol}")
            if best is None:
                candidates = self.providers_for(symbol)
                best = candidates[0] if candidates else None
            if best is None:
                continue
            by_provider.setdefault(best.name, []).append(symbol)

        attempted: Dict[str, str] = {}
        for name, group in by_provider.items():
            provider = self.get_provider(name)
            for symbol in group:
                attempted[symbol] = name
            if not self.rate_limiter.check(name):
                logger.warning(f"Skipping batch of {len(group)} for {name} (rate limit)")
                continue
            try:
                logger.info(f"Batch fetching {len(group)} symbols from {name}{' (forced)' if force else ''}")
                quotes = provider.fetch_batch(group)
            except Exception as e:
                logger.error(f"Batch fetch failed for {name}: {e}")
                continue

            for symbol, quote in quotes.items():
                if quote is not None and quote.price > 0:
                    quote.provider = name
                    results[symbol] = quote
                    self.cache.set(quote_cache_key(symbol), quote, name)

        # Symbols the first provider missed go through the remaining ones
        for symbol, tried in attempted.items():
            if symbol in results:
                continue
            remaining = [p for p in self.providers_for(symbol) if p.name != tried]
            quote = self._waterfall(symbol, remaining)
            if quote is None:
                quote = self.cache.get_stale(quote_cache_key(symbol))
            if quote is not None:
                results[symbol] = quote

        return results

    def fetch_indices(self, force: bool = False) -> List[MarketIndex]:
        if not force:
            cached = self.cache.get(INDICES_CACHE_KEY)
            if cached:
                return cached

        yahoo = self.get_provider('yahoo')
        if yahoo is not None and self.rate_limiter.check('yahoo'):
            try:
                indices = yahoo.fetch_indices()
                self.cache.set(INDICES_CACHE_KEY, indices, 'yahoo')
                return indices
            except Exception as e:
                logger.error(f"Failed to fetch indices: {e}")

        return self.cache.get_stale(INDICES_CACHE_KEY) or []

    def search(self, query: str) -> List[Dict]:
        """Merge search hits from every provider that can search, deduplicated."""
        query = (query or '').strip()
        if not query:
            return []

        merged: Dict[str, Dict] = {}
        for provider in self.providers:
            if not hasattr(provider, 'search'):
                continue
            try:
                hits = provider.search(query)
            except Exception as e:
                logger.warning(f"{provider.name} search failed for {query!r}: {e}")
                continue
            for hit in hits:
                isin = hit.get('isin')
                key = isin if isin and is_isin(isin) else (hit.get('symbol') or '').upper()
                if not key:
                    continue
                existing = merged.get(key)
                if existing is None or (isin and not existing.get('isin')):
                    merged[key] = hit
        return list(merged.values())

    def status(self) -> Dict:
        return {
            'providers': {p.name: self.rate_limiter.status(p.name) for p in self.providers},
            'cache': self.cache.stats(),
        }
