# services/currency_service.py
"""
EUR/USD exchange rates with source fallback, a one-hour cache and
conversion helpers. EUR is the base currency everywhere.
"""

import logging
import re
import threading
import time
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple

import requests

from models import AppSetting

logger = logging.getLogger(__name__)

ECB_USD_RE = re.compile(r"currency='USD'[^>]*rate='([0-9.]+)'")

RATE_SETTING_KEY = 'usd_per_eur'
RATE_SOURCE_SETTING_KEY = 'usd_per_eur_source'


class ExchangeRateUnavailable(Exception):
    """Every exchange-rate source failed."""


def _parse_ecb(response: requests.Response):
    match = ECB_USD_RE.search(response.text)
    return match.group(1) if match else None


def _parse_fawaz(response: requests.Response):
    return (response.json().get('eur') or {}).get('usd')


def _parse_rates_usd(response: requests.Response):
    return (response.json().get('rates') or {}).get('USD')


# (name, url, parser) tried in order
RATE_SOURCES: List[Tuple[str, str, Callable]] = [
    ('ECB', 'https://www.ecb.europa.eu/stats/eurofxref/eurofxref-daily.xml', _parse_ecb),
    ('Fawaz Ahmed API',
     'https://cdn.jsdelivr.net/npm/@fawazahmed0/currency-api@latest/v1/currencies/eur.json',
     _parse_fawaz),
    ('Exchangerate.host', 'https://api.exchangerate.host/latest?base=EUR&symbols=USD', _parse_rates_usd),
    ('Frankfurter', 'https://api.frankfurter.app/latest?from=EUR&to=USD', _parse_rates_usd),
]


def _positive_number(value) -> Optional[float]:
    try:
        rate = float(value)
    except (TypeError, ValueError):
        return None
    return rate if rate > 0 else None


def format_currency(amount: float, currency: str = 'EUR') -> str:
    """USD as -$1,234.50; EUR as -1,234.50 €"""
    sign = '-' if amount < 0 else ''
    body = f"{abs(amount):,.2f}"
    if currency == 'USD':
        return f"{sign}${body}"
    return f"{sign}{body} €"


class ExchangeRateService:
    """Holds a single cached EUR->USD rate and refreshes it on expiry."""

    def __init__(self, ttl: int = 3600, timeout: int = 8, fallback_rate: float = 1.08,
                 sources: Optional[List[Tuple[str, str, Callable]]] = None):
        self.ttl = ttl
        self.timeout = timeout
        self.fallback_rate = fallback_rate
        self.sources = sources if sources is not None else RATE_SOURCES
        self._cached: Optional[Dict] = None
        self._expires_at = 0.0
        self._lock = threading.Lock()

    def fetch_usd_rate(self) -> Dict:
        """
        Ask each source in turn for USD per EUR.

        Returns:
            {'EUR': 1.0, 'USD': rate, 'timestamp': iso, 'source': name}

        Raises:
            ExchangeRateUnavailable: if no source produced a positive number
        """
        last_error = None
        for name, url, parse in self.sources:
            try:
                logger.info(f"Trying exchange rate source {name}...")
                response = requests.get(url, timeout=self.timeout)
                response.raise_for_status()
                rate = _positive_number(parse(response))
                if rate is None:
                    raise ValueError("Invalid rate data")
                logger.info(f"Exchange rate from {name}: 1 EUR = {rate} USD")
                return {
                    'EUR': 1.0,
                    'USD': rate,
                    'timestamp': datetime.now(timezone.utc).isoformat(),
                    'source': name,
                }
            except (requests.RequestException, ValueError) as e:
                last_error = e
                logger.warning(f"Exchange rate source {name} failed: {e}")

        raise ExchangeRateUnavailable(f"Failed to fetch exchange rates: {last_error or 'no sources'}")

    def refresh(self) -> Dict:
        """Fetch a fresh rate, store it in the cache slot and persist it."""
        rates = self.fetch_usd_rate()
        with self._lock:
            self._cached = rates
            self._expires_at = time.time() + self.ttl
        AppSetting.set_value(RATE_SETTING_KEY, rates['USD'])
        AppSetting.set_value(RATE_SOURCE_SETTING_KEY, rates['source'])
        return rates

    def get_live_rates(self) -> Dict:
        """Cached rate while fresh, else a refresh that raises when every source fails."""
        with self._lock:
            if self._cached and time.time() < self._expires_at:
                return self._cached
        return self.refresh()

    def get_rates(self) -> Dict:
        """Cached rate, refreshed hourly; degrades to the last known or fallback rate."""
        with self._lock:
            if self._cached and time.time() < self._expires_at:
                return self._cached
            cached = self._cached

        try:
            return self.refresh()
        except ExchangeRateUnavailable as e:
            logger.error(f"Using fallback exchange rate: {e}")

        if cached:
            return dict(cached, stale=True)

        persisted = _positive_number(AppSetting.get_value(RATE_SETTING_KEY))
        if persisted:
            return {
                'EUR': 1.0,
                'USD': persisted,
                'timestamp': datetime.now(timezone.utc).isoformat(),
                'source': AppSetting.get_value(RATE_SOURCE_SETTING_KEY, 'database'),
                'stale': True,
            }

        return {
            'EUR': 1.0,
            'USD': self.fallback_rate,
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'source': 'fallback',
            'stale': True,
        }

    def usd_per_eur(self) -> float:
        return self.get_rates()['USD']

    def usd_to_eur_rate(self) -> float:
        return 1 / self.usd_per_eur()

    def usd_to_eur(self, amount: float) -> float:
        return amount / self.usd_per_eur()

    def eur_to_usd(self, amount: float) -> float:
        return amount * self.usd_per_eur()

    def to_eur(self, amount: float, currency: str) -> float:
        if currency == 'EUR':
            return amount
        if currency == 'USD':
            return self.usd_to_eur(amount)
        raise ValueError(f"Unsupported currency: {currency}")
