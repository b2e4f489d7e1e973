# providers/base_provider.py
"""
Abstract base class for quote providers.
Enforces a consistent interface across Yahoo, ING, Finnhub and CoinGecko.
"""

import re
import time
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from typing import Dict, List, Optional

import pandas as pd

ISIN_RE = re.compile(r'^[A-Z]{2}[A-Z0-9]{9}[0-9]$')


def is_isin(identifier: str) -> bool:
    return bool(identifier) and bool(ISIN_RE.match(identifier.upper()))


def now_ms() -> int:
    return int(time.time() * 1000)


class ProviderError(Exception):
    """Raised by a provider when a quote cannot be produced."""

    def __init__(self, message: str, provider: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code


@dataclass
class Quote:
    price: float
    currency: str = 'EUR'
    timestamp: int = field(default_factory=now_ms)
    isin: Optional[str] = None
    ticker: Optional[str] = None
    provider: Optional[str] = None

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass
class MarketIndex:
    name: str
    ticker: str
    price: float = 0.0
    change: float = 0.0  # percent

    def to_dict(self) -> Dict:
        return asdict(self)


class BaseQuoteProvider(ABC):
    """
    Base class for quote providers taking part in the fetch waterfall.

    Subclasses declare which identifiers they understand through
    ``supports`` and return ``None`` from ``fetch_quote`` when they have no
    usable price. Transport failures may raise; the quote service logs them
    and moves on to the next provider.
    """

    name = 'base'

    def __init__(self, config: Dict):
        """
        Initialize provider with configuration.

        Args:
            config: Dictionary containing provider-specific settings
        """
        self.config = config
        self.timeout = config.get('timeout', 10)
        self.max_retries = config.get('max_retries', 3)
        self.retry_delay = config.get('retry_delay', 1)

    def _assert_price(self, price, symbol: str, context: str) -> float:
        """Validate a quoted price and return it as float"""
        if price is None or pd.isna(price):
            raise ValueError(f"[{symbol}] price is missing in {context}")
        try:
            p = float(price)
        except (TypeError, ValueError):
            raise ValueError(f"[{symbol}] invalid price in {context}")
        if p <= 0:
            raise ValueError(f"[{symbol}] price must be > 0 in {context}")
        return p

    @abstractmethod
    def supports(self, symbol: str) -> bool:
        """Whether this provider is worth asking for the identifier."""

    @abstractmethod
    def fetch_quote(self, symbol: str) -> Optional[Quote]:
        """
        Fetch the current quote for one identifier.

        Returns:
            Quote tagged with this provider's name, or None when no price exists
        """

    def fetch_batch(self, symbols: List[str]) -> Dict[str, Quote]:
        """Fetch several identifiers; default is one request per identifier."""
        results = {}
        for symbol in symbols:
            quote = self.fetch_quote(symbol)
            if quote is not None:
                results[symbol] = quote
        return results

    def __repr__(self):
        return f"<{self.__class__.__name__}(provider={self.name})>"
