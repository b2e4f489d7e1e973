# portfolio_manager.py
"""
Facade over the quote, currency, trade, Sankey and snapshot services.
Attached to the Flask app as ``app.portfolio_manager``.
"""

import logging
from dataclasses import replace
from typing import Dict, List, Optional

from providers import Quote, QuoteProviderFactory
from services import (
    ExchangeRateService,
    ProviderRateLimiter,
    QuoteCache,
    QuoteService,
    SankeyService,
    SnapshotService,
    TradeService,
)
from services.calculations import apply_filters, calculate_full_portfolio_summary, enrich_trade_with_pnl
from services.position_service import aggregate_positions

logger = logging.getLogger(__name__)


class PortfolioManager:
    """Wires services together and exposes the operations routes need"""

    def __init__(self, app=None):
        self.app = app
        if app:
            self.init_app(app)

    def init_app(self, app):
        """Build services from the Flask app config"""
        self.app = app
        config = app.config

        self.quote_service = QuoteService(
            QuoteProviderFactory.create_providers(config),
            cache=QuoteCache(max_size=config['QUOTE_CACHE_SIZE'], default_ttl=config['QUOTE_CACHE_TTL']),
            rate_limiter=ProviderRateLimiter(),
        )
        # Shared with the waterfall so both draw on one quota
        self.finnhub = self.quote_service.get_provider('finnhub')
        self.exchange_rates = ExchangeRateService(
            ttl=config['EXCHANGE_RATE_TTL'],
            timeout=config['EXCHANGE_RATE_TIMEOUT'],
            fallback_rate=config['FALLBACK_USD_PER_EUR'],
        )
        self.trades = TradeService()
        self.sankey = SankeyService()
        self.snapshots = SnapshotService(self.quote_service)

    # ========================================
    # QUOTES
    # ========================================

    def get_quotes(self, identifiers: List[str], force: bool = False,
                   preferred: Optional[Dict[str, str]] = None) -> Dict:
        quotes = self.quote_service.fetch_batch(identifiers, force=force, preferred=preferred) if identifiers else {}
        indices = self.quote_service.fetch_indices(force=force)
        return {
            'quotes': {symbol: quote.to_dict() for symbol, quote in quotes.items()},
            'indices': [index.to_dict() for index in indices],
        }

    def _in_currency(self, quote: Quote, currency: str) -> Optional[Quote]:
        """Quote price expressed in the trade's currency (EUR/USD only), None when not convertible."""
        if quote.currency == currency:
            return quote
        if quote.currency == 'USD' and currency == 'EUR':
            return replace(quote, price=round(self.exchange_rates.usd_to_eur(quote.price), 4), currency='EUR')
        if quote.currency == 'EUR' and currency == 'USD':
            return replace(quote, price=round(self.exchange_rates.eur_to_usd(quote.price), 4), currency='USD')
        logger.warning(f"No conversion from {quote.currency} to {currency} for {quote.ticker or quote.isin}, "
                       f"keeping the stored price")
        return None

    def refresh_trade_prices(self, user_id: int, force: bool = False) -> Dict[str, Quote]:
        """
        Fetch quotes for the user's open trades and persist them on the trades.

        Each trade stores the price in its own currency. The returned quotes
        are keyed by identifier in the currency of the first trade listed for
        it, which is the currency its aggregated position reports.
        """
        open_trades = self.trades.list_trades(user_id, include_closed=False)
        identifiers = list(dict.fromkeys(trade.isin or trade.ticker for trade in open_trades))
        if not identifiers:
            return {}

        quotes = self.quote_service.fetch_batch(identifiers, force=force)
        changed = self.trades.apply_quotes(user_id, quotes, convert=self._in_currency)

        position_currency = {}
        for trade in self.trades.list_trades(user_id):
            position_currency.setdefault(trade.isin or trade.ticker, trade.currency)
        converted = {}
        for symbol, quote in quotes.items():
            in_currency = self._in_currency(quote, position_currency.get(symbol, quote.currency))
            if in_currency is not None:
                converted[symbol] = in_currency
        logger.info(f"Refreshed {len(quotes)} quotes for user {user_id} ({changed} trades updated)")
        return converted

    # ========================================
    # TRADES, POSITIONS, SUMMARY
    # ========================================

    def get_trades_with_pnl(self, user_id: int) -> List[Dict]:
        """Open trades enriched with P/L plus closed trades as stored"""
        result = []
        for trade in self.trades.list_trades(user_id):
            data = trade.to_dict()
            if not trade.is_closed:
                data = enrich_trade_with_pnl(data, data['currentPrice'] or data['buyPrice'])
            result.append(data)
        return result

    def get_positions(self, user_id: int, refresh: bool = False) -> List[Dict]:
        quotes = self.refresh_trade_prices(user_id) if refresh else {}
        trades = [t.to_dict() for t in self.trades.list_trades(user_id)]
        return aggregate_positions(trades, quotes)

    def get_summary(self, user_id: int, filters: Optional[Dict] = None) -> Dict:
        all_trades = self.get_trades_with_pnl(user_id)
        open_trades = [t for t in all_trades if not t['isClosed']]
        summary = calculate_full_portfolio_summary(open_trades, all_trades)
        filtered = apply_filters(open_trades, filters or {})
        return {
            'summary': summary,
            'trades': filtered,
            'closedTrades': [t for t in all_trades if t['isClosed']],
        }

    # ========================================
    # JOBS
    # ========================================

    def refresh_exchange_rate(self) -> Dict:
        return self.exchange_rates.refresh()

    def take_price_snapshots(self) -> Dict:
        return self.snapshots.save_price_snapshots()
