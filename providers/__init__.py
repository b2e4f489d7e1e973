# providers/__init__.py
"""
Provider factory and exports.
Builds the ordered quote-provider waterfall from configuration.
"""

import logging
from typing import Dict, List

from constants import PROVIDER_PRIORITY
from .base_provider import BaseQuoteProvider, MarketIndex, ProviderError, Quote, is_isin
from .yahoo_provider import YahooQuoteProvider
from .ing_provider import INGQuoteProvider
from .finnhub_provider import (
    FinnhubQuoteProvider,
    FinnhubError,
    FinnhubRateLimitError,
    FinnhubNotFoundError,
    FinnhubInvalidKeyError
)
from .coingecko_provider import CoinGeckoQuoteProvider

logger = logging.getLogger(__name__)


class QuoteProviderFactory:
    """
    Factory for the quote providers used by the quote service.
    Providers that cannot be configured are left out of the waterfall.
    """

    @staticmethod
    def create_providers(config: Dict) -> List[BaseQuoteProvider]:
        """
        Create every available provider in waterfall order.

        Order: yahoo, ing, finnhub (only with FINNHUB_API_KEY), coingecko

        Args:
            config: Application configuration

        Returns:
            Providers sorted by priority
        """
        base = {
            'timeout': config.get('PROVIDER_TIMEOUT', 10),
            'max_retries': config.get('PROVIDER_MAX_RETRIES', 3),
            'retry_delay': config.get('PROVIDER_RETRY_DELAY', 1),
        }

        providers = [
            YahooQuoteProvider(base),
            INGQuoteProvider(base),
            CoinGeckoQuoteProvider(base),
        ]

        finnhub = QuoteProviderFactory.create_finnhub(config)
        if finnhub is not None:
            providers.append(finnhub)
        else:
            logger.info("No FINNHUB_API_KEY set, Finnhub left out of the quote waterfall")

        return sorted(providers, key=lambda p: PROVIDER_PRIORITY.index(p.name))

    @staticmethod
    def create_finnhub(config: Dict):
        api_key = config.get('FINNHUB_API_KEY')
        if not api_key:
            return None
        return FinnhubQuoteProvider({
            'api_key': api_key,
            'timeout': min(config.get('PROVIDER_TIMEOUT', 10), 5),
            'max_retries': config.get('PROVIDER_MAX_RETRIES', 3),
            'retry_delay': config.get('PROVIDER_RETRY_DELAY', 1),
        })


# Exports
__all__ = [
    'BaseQuoteProvider',
    'Quote',
    'MarketIndex',
    'ProviderError',
    'is_isin',
    'YahooQuoteProvider',
    'INGQuoteProvider',
    'FinnhubQuoteProvider',
    'FinnhubError',
    'FinnhubRateLimitError',
    'FinnhubNotFoundError',
    'FinnhubInvalidKeyError',
    'CoinGeckoQuoteProvider',
    'QuoteProviderFactory'
]
