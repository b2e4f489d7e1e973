# providers/ing_provider.py
"""
ING Wertpapiere instrument-header quotes.
Free, keyless, and the best source for German derivatives and certificates.
"""

import logging
import re
from typing import Dict, Optional

import requests

from constants import ING_ISIN_COUNTRIES
from .base_provider import BaseQuoteProvider, Quote

logger = logging.getLogger(__name__)

INSTRUMENT_HEADER_URL = 'https://component-api.wertpapiere.ing.de/api/v1/components/instrumentheader/{isin}'

REQUEST_HEADERS = {
    'User-Agent': 'Mozilla/5.0',
    'Origin': 'https://wertpapiere.ing.de',
    'Referer': 'https://wertpapiere.ing.de/',
    'Accept': 'application/json',
}

LEVERAGE_RE = re.compile(
    r'(?:hebel|leverage|faktor|factor)[\s:]*(\d+(?:[,.]\d+)?)|(\d+(?:[,.]\d+)?)\s*x',
    re.IGNORECASE,
)


def should_try_ing(isin: str) -> bool:
    return bool(isin) and len(isin) == 12 and isin[:2] in ING_ISIN_COUNTRIES


def is_likely_derivative(isin: str) -> bool:
    # German issuer derivatives mostly start with DE000
    return isin.startswith('DE000')


def _positive(value) -> bool:
    return isinstance(value, (int, float)) and value > 0


def extract_ing_price(data: Dict) -> Optional[float]:
    """Best price in order: last price, bid/ask midpoint, bid, ask."""
    price, bid, ask = data.get('price'), data.get('bid'), data.get('ask')
    if _positive(price):
        return float(price)
    if _positive(bid) and _positive(ask):
        return (bid + ask) / 2
    if _positive(bid):
        return float(bid)
    if _positive(ask):
        return float(ask)
    return None


def extract_derivative_info(data: Dict) -> Dict:
    """Derive product type, leverage and option side from the instrument name and fields."""
    info = {'isDerivative': False}
    name = (data.get('name') or '').lower()

    if 'turbo' in name or 'knock-out' in name or 'knockout' in name:
        info['isDerivative'] = True
        info['productType'] = 'Turbo' if 'turbo' in name else 'Knock-Out'
    elif 'optionsschein' in name or 'option' in name:
        info['isDerivative'] = True
        info['productType'] = 'Optionsschein'
        if 'call' in name:
            info['optionType'] = 'call'
        if 'put' in name:
            info['optionType'] = 'put'
    elif 'factor' in name or 'faktor' in name:
        info['isDerivative'] = True
        info['productType'] = 'Faktor-Zertifikat'
    elif 'zertifikat' in name or 'certificate' in name:
        info['isDerivative'] = True
        info['productType'] = 'Zertifikat'

    match = LEVERAGE_RE.search(name)
    if match:
        info['leverage'] = float((match.group(1) or match.group(2)).replace(',', '.'))

    for key in ('leverage', 'productType', 'underlying', 'knockOut', 'strike', 'optionType'):
        if data.get(key):
            info[key] = data[key]

    if info.get('leverage') and info['leverage'] > 1:
        info['isDerivative'] = True
    return info


class INGQuoteProvider(BaseQuoteProvider):
    """Quotes by ISIN from the ING instrument header component API."""

    name = 'ing'

    def supports(self, symbol: str) -> bool:
        return should_try_ing(symbol)

    def fetch_instrument_header(self, isin: str) -> Optional[Dict]:
        try:
            response = requests.get(
                INSTRUMENT_HEADER_URL.format(isin=isin),
                headers=REQUEST_HEADERS,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.warning(f"ING request failed for {isin}: {e}")
            return None

        if not response.ok:
            logger.info(f"ING API returned {response.status_code} for ISIN {isin}")
            return None

        try:
            data = response.json()
        except ValueError:
            logger.warning(f"ING returned invalid JSON for {isin}")
            return None

        if not (data.get('price') or data.get('bid') or data.get('ask')):
            logger.info(f"No price data from ING for ISIN {isin}")
            return None
        return data

    def fetch_quote(self, symbol: str) -> Optional[Quote]:
        data = self.fetch_instrument_header(symbol)
        if not data:
            return None
        price = extract_ing_price(data)
        if not price or price <= 0:
            return None
        return Quote(
            price=round(price, 2),
            currency=data.get('currency') or 'EUR',
            isin=symbol,
            ticker=data.get('wkn') or symbol,
            provider=self.name,
        )
