# services/calculations.py
"""
Profit/loss arithmetic and trade list filters.

Functions work on trade dicts in the shape produced by ``Trade.to_dict()``
(camelCase keys), so the same code serves API responses and tests.
"""

import math
from datetime import date, datetime, timedelta
from typing import Dict, Iterable, List, Optional


def round_to_2(value: float) -> float:
    """Round half up to cents, matching the dashboard's rounding."""
    return math.floor(value * 100 + 0.5) / 100


def parse_date(value) -> Optional[date]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def calculate_realized_pnl(trade: Dict, sell_price: float = None, sell_total: float = None) -> float:
    if sell_total is not None:
        return round_to_2(sell_total - trade['investedEur'])
    if sell_price is not None:
        return round_to_2(sell_price * trade['quantity'] - trade['investedEur'])
    return 0


def calculate_total_realized_pnl(trades: Iterable[Dict]) -> float:
    total = sum(t.get('realizedPnL') or 0 for t in trades
                if t.get('isClosed') and t.get('realizedPnL') is not None)
    return round_to_2(total)


def calculate_trade_pnl(trade: Dict, current_price: float) -> Dict[str, float]:
    # Leverage is already priced into a derivative; never multiply it in
    pnl_eur = round_to_2((current_price - trade['buyPrice']) * trade['quantity'])
    pnl_pct = round_to_2((current_price / trade['buyPrice'] - 1) * 100)
    return {'pnlEur': pnl_eur, 'pnlPct': pnl_pct}


def calculate_leveraged_return(underlying_change: float, leverage: float) -> float:
    """Expected derivative move for an underlying move, for display only."""
    return round_to_2(underlying_change * leverage)


def calculate_derivative_leverage_info(trade: Dict, current_price: float) -> Optional[Dict[str, float]]:
    leverage = trade.get('leverage')
    if not trade.get('isDerivative') or not leverage or leverage <= 1:
        return None

    derivative_change = round_to_2((current_price / trade['buyPrice'] - 1) * 100)
    return {
        'actualPnLPct': derivative_change,
        'derivativePriceChange': derivative_change,
        'impliedUnderlyingChange': round_to_2(derivative_change / leverage),
    }


def enrich_trade_with_pnl(trade: Dict, current_price: float) -> Dict:
    enriched = dict(trade)
    enriched['currentPrice'] = current_price
    enriched.update(calculate_trade_pnl(trade, current_price))
    return enriched


def calculate_portfolio_summary(trades: List[Dict], all_trades: Optional[List[Dict]] = None) -> Dict[str, float]:
    """
    Summary over enriched open trades.

    ``all_trades`` (open and closed) feeds the realized P/L; without it
    realized P/L is zero.
    """
    realized = calculate_total_realized_pnl(all_trades) if all_trades else 0
    if not trades:
        return {
            'totalInvested': 0,
            'totalValue': 0,
            'pnlEur': 0,
            'pnlPct': 0,
            'realizedPnL': realized,
            'totalPnL': realized,
        }

    total_invested = sum(t['investedEur'] for t in trades)
    total_value = sum(t['currentPrice'] * t['quantity'] for t in trades)
    pnl_eur = round_to_2(sum(t['pnlEur'] for t in trades))
    pnl_pct = round_to_2((total_value / total_invested - 1) * 100) if total_invested > 0 else 0

    return {
        'totalInvested': round_to_2(total_invested),
        'totalValue': round_to_2(total_value),
        'pnlEur': pnl_eur,
        'pnlPct': pnl_pct,
        'realizedPnL': realized,
        'totalPnL': round_to_2(pnl_eur + realized),
    }


def calculate_full_portfolio_summary(trades: List[Dict], all_trades: Optional[List[Dict]] = None,
                                     today: Optional[date] = None) -> Dict[str, float]:
    today = today or date.today()
    summary = calculate_portfolio_summary(trades, all_trades)
    month = calculate_portfolio_summary(filter_trades_by_month(trades, today.year, today.month), all_trades)
    summary['monthPnlEur'] = month['pnlEur']
    summary['monthPnlPct'] = month['pnlPct']
    return summary


def filter_trades_by_month(trades: List[Dict], year: int, month: int) -> List[Dict]:
    """month is 1-12"""
    result = []
    for t in trades:
        bought = parse_date(t['buyDate'])
        if bought.year == year and bought.month == month:
            result.append(t)
    return result


def filter_trades_by_time_range(trades: List[Dict], time_range: str, custom_start=None,
                                custom_end=None, today: Optional[date] = None) -> List[Dict]:
    today = today or date.today()

    if time_range == 'month':
        return filter_trades_by_month(trades, today.year, today.month)
    if time_range == 'last30':
        cutoff = today - timedelta(days=30)
        return [t for t in trades if parse_date(t['buyDate']) >= cutoff]
    if time_range == 'ytd':
        year_start = date(today.year, 1, 1)
        return [t for t in trades if parse_date(t['buyDate']) >= year_start]
    if time_range == 'custom':
        if not custom_start or not custom_end:
            return trades
        start, end = parse_date(custom_start), parse_date(custom_end)
        return [t for t in trades if start <= parse_date(t['buyDate']) <= end]
    return trades


def filter_trades_by_search(trades: List[Dict], query: str) -> List[Dict]:
    if not query or not query.strip():
        return trades
    needle = query.strip().lower()
    return [
        t for t in trades
        if needle in (t.get('name') or '').lower()
        or needle in (t.get('isin') or '').lower()
        or needle in (t.get('ticker') or '').lower()
    ]


def filter_only_winners(trades: List[Dict]) -> List[Dict]:
    return [t for t in trades if t.get('pnlEur', 0) > 0]


def sort_trades(trades: List[Dict], sort_by: Optional[str]) -> List[Dict]:
    if sort_by == 'pnlEur':
        return sorted(trades, key=lambda t: t['pnlEur'], reverse=True)
    if sort_by == 'pnlPct':
        return sorted(trades, key=lambda t: t['pnlPct'], reverse=True)
    if sort_by == 'date':
        return sorted(trades, key=lambda t: parse_date(t['buyDate']), reverse=True)
    if sort_by == 'name':
        return sorted(trades, key=lambda t: (t.get('name') or '').lower())
    return list(trades)


def apply_filters(trades: List[Dict], filters: Dict, today: Optional[date] = None) -> List[Dict]:
    """
    Apply time range, search, winners-only and sort in that order.

    Args:
        filters: keys timeRange, customStart, customEnd, searchQuery, onlyWinners, sortBy
    """
    result = filter_trades_by_time_range(
        trades,
        filters.get('timeRange', 'all'),
        filters.get('customStart'),
        filters.get('customEnd'),
        today=today,
    )
    result = filter_trades_by_search(result, filters.get('searchQuery', ''))
    if filters.get('onlyWinners'):
        result = filter_only_winners(result)
    return sort_trades(result, filters.get('sortBy'))
