# providers/yahoo_provider.py
"""
yfinance implementation of the quote provider.
Free and unlimited, but Yahoo throttles shared IPs, so the waterfall
falls through to ING and Finnhub when it stops answering.
"""

import logging
import re
import time
from datetime import date, datetime, timezone
from typing import Dict, List, Optional

import pandas as pd
import yfinance as yf

from constants import MARKET_INDICES, SUFFIX_CURRENCIES, YAHOO_ISIN_COUNTRIES
from .base_provider import BaseQuoteProvider, MarketIndex, ProviderError, Quote, is_isin
from .coingecko_provider import is_crypto_symbol

logger = logging.getLogger(__name__)

KNOWN_ISIN_SYMBOLS = {
    'DE0007164600': 'SAP.DE',
    'DE0008469008': 'BMW.DE',
    'DE0005140008': 'DBK.DE',
    'DE000BASF111': 'BAS.DE',
    'DE0005557508': 'DTE.DE',
    'DE0008404005': 'ALV.DE',
    'DE0005785604': 'FME.DE',
    'DE0006048408': 'HEI.DE',
    'US0378331005': 'AAPL',
    'US5949181045': 'MSFT',
    'US88160R1014': 'TSLA',
}

# ISIN country -> Yahoo exchange suffix; US ISINs are not guessed
ISIN_COUNTRY_SUFFIX = {
    'DE': '.DE',
    'GB': '.L',
    'FR': '.PA',
    'IT': '.MI',
    'ES': '.MC',
    'NL': '.AS',
    'CH': '.SW',
    'CA': '.TO',
    'AU': '.AX',
    'JP': '.T',
}

SUFFIXED_SYMBOL_RE = re.compile(r'^[A-Z]+\.[A-Z]{1,2}$')
PLAIN_TICKER_RE = re.compile(r'^[A-Z]+$')


def isin_to_yahoo_symbol(isin: str) -> Optional[str]:
    if not isin or len(isin) != 12:
        return None
    if isin in KNOWN_ISIN_SYMBOLS:
        return KNOWN_ISIN_SYMBOLS[isin]
    suffix = ISIN_COUNTRY_SUFFIX.get(isin[:2])
    return f"{isin}{suffix}" if suffix else None


def should_try_yahoo(symbol: str) -> bool:
    if len(symbol) == 12:
        return symbol[:2] in YAHOO_ISIN_COUNTRIES
    if len(symbol) <= 5 and PLAIN_TICKER_RE.match(symbol):
        return True
    return bool(SUFFIXED_SYMBOL_RE.match(symbol))


def currency_for_symbol(yahoo_symbol: str) -> str:
    for suffix, currency in SUFFIX_CURRENCIES.items():
        if yahoo_symbol.endswith(suffix):
            return currency
    return 'USD'


def _is_rate_limited(error: Exception) -> bool:
    return "429" in str(error) or "Too Many Requests" in str(error)


def index_from_info(name: str, symbol: str, info: Dict) -> MarketIndex:
    """Build an index ticker from Yahoo's quote fields; zero when no price."""
    price = info.get('regularMarketPrice') or 0
    if not price:
        return MarketIndex(name=name, ticker=symbol)

    change_pct = 0.0
    if info.get('regularMarketChangePercent') is not None:
        change_pct = info['regularMarketChangePercent']
    elif info.get('regularMarketChange') is not None and info.get('previousClose'):
        change_pct = info['regularMarketChange'] / info['previousClose'] * 100
    elif info.get('chartPreviousClose'):
        previous = info['chartPreviousClose']
        change_pct = (price - previous) / previous * 100

    return MarketIndex(
        name=name,
        ticker=symbol,
        price=round(float(price), 2),
        change=round(float(change_pct), 2),
    )


class YahooQuoteProvider(BaseQuoteProvider):
    """Quotes, world indices, history and search through yfinance."""

    name = 'yahoo'

    def __init__(self, config: Dict):
        super().__init__(config)
        self.request_delay = config.get('request_delay', 0)
        logger.info(f"Initialized yfinance provider (delay: {self.request_delay}s)")

    def supports(self, symbol: str) -> bool:
        return should_try_yahoo(symbol) and not is_crypto_symbol(symbol)

    def resolve_symbol(self, symbol: str) -> Optional[str]:
        if is_isin(symbol):
            return isin_to_yahoo_symbol(symbol)
        return symbol

    def fetch_quote(self, symbol: str) -> Optional[Quote]:
        yahoo_symbol = self.resolve_symbol(symbol)
        if not yahoo_symbol:
            logger.info(f"Cannot convert ISIN {symbol} to Yahoo symbol")
            return None

        try:
            ticker = yf.Ticker(yahoo_symbol)

            # History is more reliable than info
            hist = ticker.history(period='1d')
            if not hist.empty:
                price = hist['Close'].iloc[-1]
            else:
                price = ticker.info.get('regularMarketPrice')
            price = self._assert_price(price, yahoo_symbol, "fetch_quote")
        except ValueError as e:
            logger.info(f"No price from Yahoo for {yahoo_symbol}: {e}")
            return None
        except Exception as e:
            if _is_rate_limited(e):
                raise ProviderError(f"Yahoo rate limited for {yahoo_symbol}", self.name, 429)
            logger.warning(f"Yahoo quote failed for {yahoo_symbol}: {e}")
            return None

        return Quote(
            price=round(price, 2),
            currency=currency_for_symbol(yahoo_symbol),
            isin=symbol if is_isin(symbol) else None,
            ticker=yahoo_symbol,
            provider=self.name,
        )

    def fetch_batch(self, symbols: List[str]) -> Dict[str, Quote]:
        results = {}
        for symbol in symbols:
            quote = self.fetch_quote(symbol)
            if quote is not None:
                results[symbol] = quote
            if self.request_delay:
                time.sleep(self.request_delay)
        return results

    def fetch_indices(self) -> List[MarketIndex]:
        indices = []
        for name, symbol in MARKET_INDICES:
            try:
                info = yf.Ticker(symbol).info or {}
                indices.append(index_from_info(name, symbol, info))
            except Exception as e:
                logger.warning(f"Yahoo index {name} ({symbol}) failed: {e}")
                indices.append(MarketIndex(name=name, ticker=symbol))
        return indices

    def search(self, query: str) -> List[Dict]:
        try:
            quotes = yf.Search(query, max_results=10, news_count=0).quotes
        except Exception as e:
            logger.warning(f"Yahoo search failed for {query!r}: {e}")
            return []

        return [
            {
                'symbol': q['symbol'],
                'name': q.get('shortname') or q.get('longname') or q['symbol'],
                'exchange': q.get('exchange'),
                'type': q.get('quoteType'),
                'provider': self.name,
            }
            for q in quotes if q.get('symbol')
        ]

    def get_historical_prices(self, symbol: str, start_date: date, end_date: date) -> pd.DataFrame:
        """
        Daily OHLCV history for one identifier.

        Returns:
            DataFrame with columns: timestamp, open, high, low, close, volume
        """
        columns = ['timestamp', 'open', 'high', 'low', 'close', 'volume']
        if start_date > end_date:
            raise ValueError(f"start_date ({start_date}) cannot be after end_date ({end_date})")

        yahoo_symbol = self.resolve_symbol(symbol)
        if not yahoo_symbol:
            return pd.DataFrame(columns=columns)

        hist = yf.Ticker(yahoo_symbol).history(
            start=start_date.strftime('%Y-%m-%d'),
            end=(end_date + pd.Timedelta(days=1)).strftime('%Y-%m-%d'),  # end is exclusive
            interval='1d',
            auto_adjust=False,
        )
        if hist.empty:
            logger.warning(f"No history returned for {yahoo_symbol}")
            return pd.DataFrame(columns=columns)

        df = pd.DataFrame({
            'timestamp': [ts.to_pydatetime().replace(tzinfo=timezone.utc) for ts in hist.index],
            'open': hist['Open'].values,
            'high': hist['High'].values,
            'low': hist['Low'].values,
            'close': hist['Close'].values,
            'volume': hist['Volume'].values,
        })
        return df[df['close'] > 0].reset_index(drop=True)

    def is_market_open(self) -> bool:
        """Rough US session check, Mon-Fri 13:30-21:00 UTC."""
        now = datetime.now(timezone.utc)
        if now.weekday() >= 5:
            return False
        minutes = now.hour * 60 + now.minute
        return 13 * 60 + 30 <= minutes <= 21 * 60
