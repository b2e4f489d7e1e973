# services/quote_cache.py
"""
In-process quote cache and per-provider call budgets.
"""

import logging
import threading
import time
from collections import OrderedDict
from typing import Any, Dict, Optional

from constants import PROVIDER_RATE_LIMITS

logger = logging.getLogger(__name__)


class QuoteCache:
    """
    LRU cache of (data, timestamp, provider) entries.

    Entries are never expired on read; ``get`` only hands out entries younger
    than the requested age while ``get_stale`` returns whatever is left, so a
    total provider outage can still be answered from old data.
    """

    def __init__(self, max_size: int = 500, default_ttl: int = 300):
        self.max_size = max_size
        self.default_ttl = default_ttl
        self._entries: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def get(self, key: str, max_age: Optional[int] = None):
        max_age = self.default_ttl if max_age is None else max_age
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or time.time() - entry['timestamp'] > max_age:
                self._misses += 1
                return None
            self._entries.move_to_end(key)
            self._hits += 1
            return entry['data']

    def get_stale(self, key: str):
        with self._lock:
            entry = self._entries.get(key)
        if entry is None:
            return None
        age_min = int((time.time() - entry['timestamp']) / 60)
        logger.warning(f"Using stale cache for {key} (age: {age_min}min, provider: {entry['provider']})")
        return entry['data']

    def set(self, key: str, data, provider: str) -> None:
        with self._lock:
            self._entries[key] = {'data': data, 'timestamp': time.time(), 'provider': provider}
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_size:
                self._entries.popitem(last=False)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._hits = 0
            self._misses = 0

    def stats(self) -> Dict:
        with self._lock:
            total = self._hits + self._misses
            return {
                'size': len(self._entries),
                'max_size': self.max_size,
                'hits': self._hits,
                'misses': self._misses,
                'hit_rate': round(self._hits / total * 100, 1) if total else 0.0,
            }

    def __len__(self):
        return len(self._entries)


class ProviderRateLimiter:
    """Fixed one-minute call windows per provider name."""

    def __init__(self, limits: Optional[Dict[str, int]] = None, window_seconds: int = 60):
        self.limits = dict(PROVIDER_RATE_LIMITS if limits is None else limits)
        self.window_seconds = window_seconds
        self._windows: Dict[str, Dict[str, float]] = {}
        self._lock = threading.Lock()

    def check(self, provider: str) -> bool:
        """Count one call; False once the provider's budget for this window is used."""
        limit = self.limits.get(provider)
        if limit is None:
            return True

        now = time.time()
        with self._lock:
            window = self._windows.get(provider)
            if window is None or now >= window['reset_at']:
                window = {'count': 0, 'reset_at': now + self.window_seconds}
                self._windows[provider] = window
            if window['count'] >= limit:
                return False
            window['count'] += 1
            return True

    def status(self, provider: str) -> Dict:
        limit = self.limits.get(provider)
        now = time.time()
        window = self._windows.get(provider)
        if limit is None or window is None or now >= window['reset_at']:
            return {'available': True, 'remaining': limit, 'reset_in': 0}
        return {
            'available': window['count'] < limit,
            'remaining': max(0, limit - int(window['count'])),
            'reset_in': int(window['reset_at'] - now),
        }
