# services/position_service.py
"""
Aggregation of individual trades into per-instrument positions.
"""

from typing import Dict, List, Optional

from services.calculations import parse_date, round_to_2


def _quote_price(quote) -> float:
    if quote is None:
        return 0
    if isinstance(quote, dict):
        return quote.get('price') or 0
    return getattr(quote, 'price', 0) or 0


def aggregate_positions(trades: List[Dict], quotes: Dict) -> List[Dict]:
    """
    Group trades by ISIN (else ticker) into positions.

    Groups without an open trade are dropped. Current price comes from the
    quote for the group key, else the first trade's last known price, else 0.
    Sorted by current value, largest first.
    """
    grouped: Dict[str, List[Dict]] = {}
    for trade in trades:
        key = trade.get('isin') or trade.get('ticker') or ''
        if not key:
            continue
        grouped.setdefault(key, []).append(trade)

    positions = []
    for key, group in grouped.items():
        open_trades = [t for t in group if not t.get('isClosed')]
        closed_trades = [t for t in group if t.get('isClosed')]
        if not open_trades:
            continue

        first = group[0]
        symbol = first.get('ticker') or first.get('isin') or ''
        current_price = _quote_price(quotes.get(key)) or first.get('currentPrice') or 0

        total_quantity = sum(t['quantity'] for t in open_trades)
        total_invested = sum(t['investedEur'] for t in open_trades)
        average_buy_price = total_invested / total_quantity if total_quantity > 0 else 0
        current_value = total_quantity * current_price
        unrealized = current_value - total_invested
        realized = sum(t.get('realizedPnL') or 0 for t in closed_trades)
        total_pnl = unrealized + realized

        buy_dates = [parse_date(t['buyDate']) for t in group if t.get('buyDate')]

        positions.append({
            'symbol': symbol,
            'isin': first.get('isin'),
            'name': first.get('name'),
            'ticker': symbol,
            'currency': first.get('currency') or 'EUR',
            'totalQuantity': total_quantity,
            'averageBuyPrice': round_to_2(average_buy_price),
            'totalInvested': round_to_2(total_invested),
            'currentPrice': current_price,
            'currentValue': round_to_2(current_value),
            'unrealizedPnL': round_to_2(unrealized),
            'realizedPnL': round_to_2(realized),
            'totalPnL': round_to_2(total_pnl),
            'totalPnLPercent': round_to_2(total_pnl / total_invested * 100) if total_invested > 0 else 0,
            'firstBuyDate': min(buy_dates).isoformat() if buy_dates else first.get('buyDate'),
            'lastBuyDate': max(buy_dates).isoformat() if buy_dates else first.get('buyDate'),
            'isDerivative': first.get('isDerivative', False),
            'leverage': first.get('leverage'),
            'productType': first.get('productType'),
            'trades': group,
            'openTrades': open_trades,
            'closedTrades': closed_trades,
        })

    return sorted(positions, key=lambda p: p['currentValue'], reverse=True)


def find_position(positions: List[Dict], symbol_or_isin: str) -> Optional[Dict]:
    return next(
        (p for p in positions if p['symbol'] == symbol_or_isin or p['isin'] == symbol_or_isin),
        None
    )


def get_unique_symbols(positions: List[Dict]) -> List[str]:
    symbols = []
    for position in positions:
        for value in (position.get('isin'), position.get('ticker')):
            if value and value not in symbols:
                symbols.append(value)
    return symbols
