"""
Service layer for trade tracking.
Separates concerns into distinct service classes.
"""

from services.quote_cache import QuoteCache, ProviderRateLimiter
from services.quote_service import QuoteService
from services.currency_service import ExchangeRateService, ExchangeRateUnavailable
from services.trade_service import TradeService
from services.sankey_service import SankeyService
from services.snapshot_service import SnapshotService

__all__ = [
    'QuoteCache', 'ProviderRateLimiter', 'QuoteService', 'ExchangeRateService',
    'ExchangeRateUnavailable', 'TradeService', 'SankeyService', 'SnapshotService'
]
