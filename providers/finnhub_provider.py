# providers/finnhub_provider.py

import logging
import re
import threading
import time
from datetime import datetime, timezone
from typing import Dict, List, Optional

import requests

from constants import FINNHUB_UNSUPPORTED_SUFFIXES
from .base_provider import BaseQuoteProvider, ProviderError, Quote, is_isin
from .coingecko_provider import is_crypto_symbol

logger = logging.getLogger(__name__)

SYMBOL_RE = re.compile(r'^[A-Z]{1,5}(\.[A-Z]{1,2})?$')


class FinnhubError(ProviderError):
    def __init__(self, message: str, status_code: Optional[int] = None, retryable: bool = False):
        super().__init__(message, 'finnhub', status_code)
        self.retryable = retryable


class FinnhubRateLimitError(FinnhubError):
    def __init__(self, message: str, retry_after: Optional[int] = None):
        super().__init__(message, status_code=429, retryable=True)
        self.retry_after = retry_after


class FinnhubNotFoundError(FinnhubError):
    def __init__(self, message: str):
        super().__init__(message, status_code=404)


class FinnhubInvalidKeyError(FinnhubError):
    def __init__(self, message: str):
        super().__init__(message, status_code=401)


def currency_for_symbol(symbol: str) -> str:
    if symbol.endswith('.DE'):
        return 'EUR'
    if symbol.endswith('.L'):
        return 'GBP'
    return 'USD'


class FinnhubQuoteProvider(BaseQuoteProvider):
    name = 'finnhub'

    def __init__(self, config: Dict):
        super().__init__(config)
        self.api_key = config.get('api_key')
        if not self.api_key:
            raise ValueError("Finnhub API key is required")

        self.base_url = config.get('base_url', 'https://finnhub.io/api/v1')
        self._minute_limit = config.get('requests_per_minute', 60)
        self._window_start = time.monotonic()
        self._window_calls = 0
        self._lock = threading.Lock()
        self._isin_symbols: Dict[str, str] = {}
        logger.info("Finnhub provider initialized")

    def supports(self, symbol: str) -> bool:
        if any(suffix in symbol for suffix in FINNHUB_UNSUPPORTED_SUFFIXES):
            return False
        return not is_crypto_symbol(symbol)

    def get_quota_status(self) -> Dict:
        elapsed = time.monotonic() - self._window_start
        if elapsed >= 60:
            return {'minute_calls': 0, 'minute_limit': self._minute_limit, 'reset_in': 0}
        return {
            'minute_calls': self._window_calls,
            'minute_limit': self._minute_limit,
            'reset_in': int(60 - elapsed),
        }

    def _reserve_call(self) -> None:
        """Count one call against the per-minute window, raising when it is used up."""
        with self._lock:
            now = time.monotonic()
            elapsed = now - self._window_start
            if elapsed >= 60:
                self._window_start = now
                self._window_calls = 0
                elapsed = 0
            if self._window_calls >= self._minute_limit:
                wait_time = int(60 - elapsed)
                raise FinnhubRateLimitError(
                    f"Rate limit exceeded ({self._minute_limit} calls/min). Wait {wait_time}s.",
                    retry_after=wait_time
                )
            self._window_calls += 1

    def _make_request(self, endpoint: str, params: Dict) -> Dict:
        params = dict(params, token=self.api_key)

        for attempt in range(1, self.max_retries + 1):
            self._reserve_call()
            try:
                response = requests.get(
                    f"{self.base_url}{endpoint}",
                    params=params,
                    headers={'Accept': 'application/json'},
                    timeout=self.timeout,
                )

                if response.status_code == 429:
                    raise FinnhubRateLimitError("HTTP 429 rate limit", retry_after=60)
                if response.status_code == 401:
                    raise FinnhubInvalidKeyError("Invalid Finnhub API key")
                if response.status_code == 404:
                    raise FinnhubNotFoundError("Resource not found")
                if not response.ok:
                    raise FinnhubError(
                        f"API request failed: {response.status_code}",
                        status_code=response.status_code,
                        retryable=response.status_code >= 500
                    )
                return response.json()

            except FinnhubError as e:
                if not e.retryable or attempt >= self.max_retries:
                    raise
                logger.warning(f"Finnhub error ({e}), retrying ({attempt}/{self.max_retries})...")
            except requests.Timeout:
                if attempt >= self.max_retries:
                    raise FinnhubError("Request timeout", status_code=504)
                logger.warning(f"Finnhub timeout, retrying ({attempt}/{self.max_retries})...")
            except (requests.RequestException, ValueError) as e:
                raise FinnhubError(f"Request failed: {e}")

            time.sleep(self.retry_delay * attempt)

        raise FinnhubError(f"Failed after {self.max_retries} attempts")

    def resolve_isin(self, isin: str) -> Optional[str]:
        """Map an ISIN to a tradable symbol through /search, remembered per instance."""
        if isin in self._isin_symbols:
            return self._isin_symbols[isin]

        data = self._make_request('/search', {'q': isin})
        for item in data.get('result') or []:
            symbol = item.get('symbol')
            if symbol:
                self._isin_symbols[isin] = symbol
                return symbol
        return None

    def get_quote(self, identifier: str) -> Dict:
        """
        Detailed quote for an ISIN or ticker.

        Raises:
            FinnhubNotFoundError: unknown identifier or no price
            FinnhubError: transport or API failure
        """
        identifier = identifier.strip().upper()
        isin = None
        symbol = identifier
        if is_isin(identifier):
            isin = identifier
            symbol = self.resolve_isin(identifier)
            if not symbol:
                raise FinnhubNotFoundError(f"No symbol mapping found for ISIN: {identifier}")
        elif not SYMBOL_RE.match(identifier):
            raise FinnhubError(
                f"Invalid identifier: {identifier}. Must be ISIN or symbol.", status_code=400
            )

        data = self._make_request('/quote', {'symbol': symbol})
        price = data.get('c')
        if not price:
            raise FinnhubNotFoundError(f"No quote data available for symbol: {symbol}")

        as_of = datetime.fromtimestamp(data.get('t') or time.time(), tz=timezone.utc)
        return {
            'price': price,
            'currency': currency_for_symbol(symbol),
            'asOf': as_of.isoformat(),
            'symbol': symbol,
            'isin': isin,
            'previousClose': data.get('pc'),
            'change': data.get('d'),
            'changePercent': data.get('dp'),
            'high': data.get('h'),
            'low': data.get('l'),
            'open': data.get('o'),
        }

    def fetch_quote(self, symbol: str) -> Optional[Quote]:
        try:
            detail = self.get_quote(symbol)
        except FinnhubNotFoundError as e:
            logger.info(f"Finnhub has no quote for {symbol}: {e}")
            return None

        price = self._assert_price(detail['price'], symbol, "fetch_quote")
        return Quote(
            price=round(price, 2),
            currency=detail['currency'],
            isin=detail['isin'],
            ticker=detail['symbol'],
            provider=self.name,
        )

    def search(self, query: str) -> List[Dict]:
        data = self._make_request('/search', {'q': query})
        return [
            {
                'symbol': item['symbol'],
                'name': item.get('description'),
                'type': item.get('type'),
                'currency': currency_for_symbol(item['symbol']),
                'provider': self.name,
            }
            for item in data.get('result') or [] if item.get('symbol')
        ]
