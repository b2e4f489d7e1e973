# providers/coingecko_provider.py
"""
CoinGecko quote provider for crypto currencies.
No API key needed; free tier allows roughly 10-50 calls per minute.
"""

import logging
import re
from typing import Dict, List, Optional

import requests

from .base_provider import BaseQuoteProvider, Quote

logger = logging.getLogger(__name__)

BASE_URL = 'https://api.coingecko.com/api/v3'

CRYPTO_SYMBOL_TO_ID = {
    'BTC': 'bitcoin',
    'ETH': 'ethereum',
    'USDT': 'tether',
    'BNB': 'binancecoin',
    'XRP': 'ripple',
    'ADA': 'cardano',
    'SOL': 'solana',
    'DOGE': 'dogecoin',
    'TRX': 'tron',
    'MATIC': 'matic-network',
    'AVAX': 'avalanche-2',
    'DOT': 'polkadot',
    'LINK': 'chainlink',
    'UNI': 'uniswap',
    'ATOM': 'cosmos',
    'LTC': 'litecoin',
    'BCH': 'bitcoin-cash',
    'XLM': 'stellar',
    'ALGO': 'algorand',
    'VET': 'vechain',
    'FIL': 'filecoin',
    'SAND': 'the-sandbox',
    'MANA': 'decentraland',
    'APT': 'aptos',
    'ARB': 'arbitrum',
    'OP': 'optimism',
    'NEAR': 'near',
    'ICP': 'internet-computer',
    'HBAR': 'hedera-hashgraph',
    'QNT': 'quant-network',
    'GRT': 'the-graph',
    'AAVE': 'aave',
    'SNX': 'havven',
    'MKR': 'maker',
    'COMP': 'compound-governance-token',
    'SUSHI': 'sushi',
    'CRV': 'curve-dao-token',
}

CRYPTO_NAMES = [
    'bitcoin', 'ethereum', 'tether', 'binance', 'ripple', 'cardano',
    'solana', 'dogecoin', 'polkadot', 'avalanche', 'chainlink', 'uniswap',
    'litecoin', 'cosmos', 'stellar', 'algorand', 'vechain', 'filecoin',
    'sandbox', 'decentraland', 'aptos', 'arbitrum', 'optimism', 'near',
    'hedera', 'quant', 'graph', 'aave', 'maker', 'compound', 'sushi', 'curve',
]

_MAJOR = 'BTC|ETH|USDT|BNB|XRP|ADA|SOL|DOGE|TRX|MATIC|AVAX|DOT|LINK'
PAIR_RE = re.compile(rf'^({_MAJOR})(USD|EUR|USDT|BTC|ETH)$')
SEPARATED_PAIR_RE = re.compile(rf'^({_MAJOR})[-/](USD|EUR|USDT)$')
KEYWORD_RE = re.compile(r'\b(crypto|coin|token|defi|nft)\b')


def is_crypto_symbol(symbol: str) -> bool:
    """Heuristic crypto detection on a ticker, pair or free-text name."""
    if not symbol:
        return False
    upper = symbol.upper()
    lower = symbol.lower()

    if upper in CRYPTO_SYMBOL_TO_ID:
        return True
    if PAIR_RE.match(upper) or SEPARATED_PAIR_RE.match(upper):
        return True
    if any(name in lower for name in CRYPTO_NAMES):
        return True
    return bool(KEYWORD_RE.search(lower))


def extract_crypto_symbol(symbol: str) -> str:
    """BTC, BTCUSD, BTC-USD, BTC/EUR -> BTC"""
    upper = symbol.upper()
    upper = re.sub(r'[-/](USD|EUR|USDT|BTC|ETH)$', '', upper)
    return re.sub(r'(USD|EUR|USDT)$', '', upper)


def symbol_to_coingecko_id(symbol: str) -> Optional[str]:
    return CRYPTO_SYMBOL_TO_ID.get(extract_crypto_symbol(symbol))


class CoinGeckoQuoteProvider(BaseQuoteProvider):
    """Crypto prices in EUR from CoinGecko's simple/price endpoint."""

    name = 'coingecko'

    def supports(self, symbol: str) -> bool:
        return is_crypto_symbol(symbol)

    def fetch_quote(self, symbol: str) -> Optional[Quote]:
        return self.fetch_batch([symbol]).get(symbol)

    def fetch_batch(self, symbols: List[str]) -> Dict[str, Quote]:
        quotes = {}
        symbol_ids = {}
        for symbol in symbols:
            coin_id = symbol_to_coingecko_id(symbol)
            if coin_id:
                symbol_ids[symbol] = coin_id
            else:
                logger.info(f"Unknown crypto symbol: {symbol}")

        if not symbol_ids:
            return quotes

        ids = list(dict.fromkeys(symbol_ids.values()))
        try:
            response = requests.get(
                f"{BASE_URL}/simple/price",
                params={'ids': ','.join(ids), 'vs_currencies': 'eur'},
                headers={'Accept': 'application/json'},
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            logger.warning(f"CoinGecko batch request failed: {e}")
            return quotes

        for symbol, coin_id in symbol_ids.items():
            price = (data.get(coin_id) or {}).get('eur')
            if not price:
                logger.info(f"No EUR price for {coin_id}")
                continue
            quotes[symbol] = Quote(
                price=round(float(price), 2),
                currency='EUR',
                ticker=extract_crypto_symbol(symbol),
                provider=self.name,
            )
        return quotes

    def search(self, query: str) -> List[Dict]:
        try:
            response = requests.get(
                f"{BASE_URL}/search",
                params={'query': query},
                headers={'Accept': 'application/json'},
                timeout=self.timeout,
            )
            response.raise_for_status()
            coins = response.json().get('coins') or []
        except (requests.RequestException, ValueError) as e:
            logger.warning(f"CoinGecko search failed for {query!r}: {e}")
            return []

        return [
            {
                'symbol': coin['symbol'].upper(),
                'name': coin.get('name'),
                'id': coin.get('id'),
                'type': 'crypto',
                'provider': self.name,
            }
            for coin in coins[:10]
        ]
