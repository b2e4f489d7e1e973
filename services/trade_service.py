# services/trade_service.py
"""
Trade recording, closing (full and partial) and import/export.
"""

import logging
import re
import time
from datetime import date, datetime, timezone
from typing import Callable, Dict, List, Optional

from constants import MAX_NAME_LENGTH, SUPPORTED_CURRENCIES
from errors import NotFoundError, ValidationError
from models import PartialSale, Trade, db, utcnow
from services.calculations import calculate_realized_pnl, round_to_2

logger = logging.getLogger(__name__)

IDENTIFIER_RE = re.compile(r'^[A-Z0-9.\-^:_]{1,30}$')

IMPORT_REQUIRED_FIELDS = ['id', 'isin', 'name', 'buyPrice', 'quantity', 'investedEur', 'buyDate']
IMPORT_NUMERIC_FIELDS = ['buyPrice', 'quantity', 'investedEur']


def _number(value, field: str) -> float:
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number", details={'field': field})
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a number", details={'field': field})


def _positive_number(value, field: str) -> float:
    number = _number(value, field)
    if number <= 0:
        raise ValidationError(f"{field} must be positive", details={'field': field})
    return number


def _optional_number(value, field: str) -> Optional[float]:
    if value is None or value == '':
        return None
    return _positive_number(value, field)


def _parse_date(value, field: str) -> date:
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an ISO date (YYYY-MM-DD)", details={'field': field})


def _parse_datetime(value, field: str) -> datetime:
    if not value:
        return utcnow()
    try:
        parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    except ValueError:
        raise ValidationError(f"{field} must be an ISO timestamp", details={'field': field})
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _clean_identifier(value) -> str:
    cleaned = (value or '').strip().upper()
    if cleaned and not IDENTIFIER_RE.match(cleaned):
        raise ValidationError(f"Invalid identifier: {value}")
    return cleaned


def _clean_identifiers(isin, ticker):
    isin = _clean_identifier(isin)
    ticker = _clean_identifier(ticker) or None
    if not isin and not ticker:
        raise ValidationError("Either isin or ticker is required")
    return isin, ticker


def _clean_currency(value) -> str:
    currency = (value or 'EUR').upper()
    if currency not in SUPPORTED_CURRENCIES:
        raise ValidationError(f"Unsupported currency: {currency}", details={'field': 'currency'})
    return currency


def _clean_option_type(value) -> Optional[str]:
    option_type = value or None
    if option_type not in (None, 'call', 'put'):
        raise ValidationError("optionType must be call or put", details={'field': 'optionType'})
    return option_type


def _partial_sale_from_export(sale) -> PartialSale:
    if not isinstance(sale, dict):
        raise ValidationError("partialSales entries must be objects", details={'field': 'partialSales'})
    return PartialSale(
        sold_quantity=_positive_number(sale.get('soldQuantity'), 'soldQuantity'),
        sell_price=_positive_number(sale.get('sellPrice'), 'sellPrice'),
        sell_total=_positive_number(sale.get('sellTotal'), 'sellTotal'),
        # Losses are negative
        realized_pnl=_number(sale.get('realizedPnL'), 'realizedPnL'),
        sold_at=_parse_datetime(sale.get('soldAt'), 'soldAt'),
    )


class TradeService:
    """Handles trade persistence and position closing for one user at a time."""

    def list_trades(self, user_id: int, include_closed: bool = True) -> List[Trade]:
        query = Trade.query.filter_by(user_id=user_id)
        if not include_closed:
            query = query.filter_by(is_closed=False)
        return query.order_by(Trade.buy_date.desc(), Trade.created_at.desc()).all()

    def get_trade(self, user_id: int, trade_id: str) -> Trade:
        trade = Trade.query.filter_by(id=trade_id, user_id=user_id).first()
        if trade is None:
            raise NotFoundError(f"Trade {trade_id} not found")
        return trade

    def _apply_fields(self, trade: Trade, data: Dict, partial: bool = False) -> None:
        """Validate payload fields and copy them onto the trade."""
        if not partial or 'isin' in data or 'ticker' in data:
            trade.isin, trade.ticker = _clean_identifiers(
                data.get('isin', trade.isin), data.get('ticker', trade.ticker))

        if not partial or 'name' in data:
            name = (data.get('name') or '').strip()
            if not name:
                raise ValidationError("name is required", details={'field': 'name'})
            trade.name = name[:MAX_NAME_LENGTH]

        if not partial or 'buyPrice' in data:
            trade.buy_price = _positive_number(data.get('buyPrice'), 'buyPrice')
        if not partial or 'quantity' in data:
            trade.quantity = _positive_number(data.get('quantity'), 'quantity')
        if not partial or 'buyDate' in data:
            trade.buy_date = _parse_date(data.get('buyDate'), 'buyDate')

        if 'currency' in data or not partial:
            trade.currency = _clean_currency(data.get('currency'))

        if 'currentPrice' in data:
            trade.current_price = _optional_number(data.get('currentPrice'), 'currentPrice')
        if 'isDerivative' in data:
            trade.is_derivative = bool(data.get('isDerivative'))
        if 'leverage' in data:
            trade.leverage = _optional_number(data.get('leverage'), 'leverage')
        if 'knockOut' in data:
            trade.knock_out = _optional_number(data.get('knockOut'), 'knockOut')
        for field, column in (('productType', 'product_type'), ('underlying', 'underlying')):
            if field in data:
                setattr(trade, column, data.get(field) or None)
        if 'optionType' in data:
            trade.option_type = _clean_option_type(data.get('optionType'))

        trade.invested_eur = round_to_2(trade.buy_price * trade.quantity)

    def create_trade(self, user_id: int, data: Dict) -> Trade:
        if not isinstance(data, dict):
            raise ValidationError("Request body must be a JSON object")
        trade = Trade(user_id=user_id)
        self._apply_fields(trade, data)
        db.session.add(trade)
        db.session.commit()
        logger.info(f"Trade created: {trade.name} x{trade.quantity} @ {trade.buy_price} (user {user_id})")
        return trade

    def update_trade(self, user_id: int, trade_id: str, data: Dict) -> Trade:
        trade = self.get_trade(user_id, trade_id)
        if trade.is_closed and any(k in data for k in ('buyPrice', 'quantity')):
            raise ValidationError("Closed trades cannot change price or quantity")
        self._apply_fields(trade, data, partial=True)
        db.session.commit()
        return trade

    def delete_trade(self, user_id: int, trade_id: str) -> None:
        trade = self.get_trade(user_id, trade_id)
        db.session.delete(trade)
        db.session.commit()
        logger.info(f"Trade deleted: {trade_id} (user {user_id})")

    def close_trade(self, user_id: int, trade_id: str, sell_quantity=None, sell_price=None,
                    sell_total=None, closed_at=None) -> Dict:
        """
        Close a trade in full or sell part of it.

        A partial sale creates a closed child trade for the sold part and
        shrinks the parent, which keeps its original quantity and gains a
        PartialSale record.

        Returns:
            {'trade': parent or closed trade, 'closedTrade': child or None}
        """
        trade = self.get_trade(user_id, trade_id)
        if trade.is_closed:
            raise ValidationError("Trade is already closed")

        sell_price = _optional_number(sell_price, 'sellPrice')
        sell_total = _optional_number(sell_total, 'sellTotal')
        if (sell_price is None) == (sell_total is None):
            raise ValidationError("Provide exactly one of sellPrice or sellTotal")

        quantity = trade.quantity
        sold = quantity if sell_quantity in (None, '') else _positive_number(sell_quantity, 'sellQuantity')
        if sold > quantity:
            raise ValidationError(f"Cannot sell {sold}, only {quantity} open")

        closed_at = _parse_datetime(closed_at, 'closedAt')

        if sold < quantity:
            return self._partial_close(trade, sold, sell_price, sell_total, closed_at)

        trade.is_closed = True
        trade.closed_at = closed_at
        trade.sell_price = sell_price if sell_price is not None else round_to_2(sell_total / quantity)
        trade.sell_total = sell_total if sell_total is not None else round_to_2(sell_price * quantity)
        trade.realized_pnl = calculate_realized_pnl(
            {'investedEur': trade.invested_eur, 'quantity': quantity}, sell_price, sell_total
        )
        db.session.commit()
        logger.info(f"Trade closed: {trade.id} realized {trade.realized_pnl}")
        return {'trade': trade, 'closedTrade': None}

    def _partial_close(self, trade: Trade, sold: float, sell_price, sell_total, closed_at) -> Dict:
        unit_price = sell_price if sell_price is not None else sell_total / sold
        proceeds = sell_total if sell_total is not None else sell_price * sold
        sold_invested = round_to_2(trade.buy_price * sold)
        realized = round_to_2(proceeds - sold_invested)

        # Millisecond stamp, bumped if two sales land in the same millisecond
        stamp = int(time.time() * 1000)
        while db.session.get(Trade, f"{trade.id}-partial-{stamp}") is not None:
            stamp += 1

        child = Trade(
            id=f"{trade.id}-partial-{stamp}",
            user_id=trade.user_id,
            isin=trade.isin,
            ticker=trade.ticker,
            name=trade.name,
            buy_price=trade.buy_price,
            quantity=sold,
            invested_eur=sold_invested,
            buy_date=trade.buy_date,
            current_price=trade.current_price,
            currency=trade.currency,
            price_provider=trade.price_provider,
            is_derivative=trade.is_derivative,
            leverage=trade.leverage,
            product_type=trade.product_type,
            underlying=trade.underlying,
            knock_out=trade.knock_out,
            option_type=trade.option_type,
            is_partial_sale=True,
            parent_trade_id=trade.id,
            is_closed=True,
            closed_at=closed_at,
            sell_price=round_to_2(unit_price),
            sell_total=round_to_2(proceeds),
            realized_pnl=realized,
        )

        if trade.original_quantity is None:
            trade.original_quantity = trade.quantity
        trade.quantity = round(trade.quantity - sold, 6)
        trade.invested_eur = round_to_2(trade.buy_price * trade.quantity)
        trade.partial_sales.append(PartialSale(
            sold_quantity=sold,
            sell_price=round_to_2(unit_price),
            sell_total=round_to_2(proceeds),
            realized_pnl=realized,
            sold_at=closed_at,
        ))

        db.session.add(child)
        db.session.commit()
        logger.info(f"Partial sale on {trade.id}: sold {sold}, {trade.quantity} remaining, realized {realized}")
        return {'trade': trade, 'closedTrade': child}

    def apply_quotes(self, user_id: int, quotes: Dict, convert: Optional[Callable] = None) -> int:
        """
        Store the latest quote price and provider on open trades; returns rows changed.

        ``convert(quote, currency)`` maps a quote into each trade's own currency
        and returns None when it cannot, which leaves that trade's price alone.
        """
        changed = 0
        for trade in self.list_trades(user_id, include_closed=False):
            quote = quotes.get(trade.isin) or (quotes.get(trade.ticker) if trade.ticker else None)
            if quote is not None and convert is not None:
                quote = convert(quote, trade.currency)
            if quote is None or not quote.price:
                continue
            if trade.current_price != quote.price or trade.price_provider != quote.provider:
                trade.current_price = quote.price
                trade.price_provider = quote.provider
                changed += 1
        if changed:
            db.session.commit()
        return changed

    def export_trades(self, user_id: int) -> Dict:
        trades = self.list_trades(user_id)
        return {
            'exportDate': datetime.now(timezone.utc).isoformat(),
            'version': 1,
            'trades': [t.to_dict() for t in trades],
        }

    def _valid_import_row(self, row) -> bool:
        if not isinstance(row, dict):
            return False
        if any(row.get(field) in (None, '') for field in IMPORT_REQUIRED_FIELDS if field != 'isin'):
            return False
        if 'isin' not in row:
            return False
        return all(isinstance(row[f], (int, float)) and not isinstance(row[f], bool)
                   for f in IMPORT_NUMERIC_FIELDS)

    def import_trades(self, user_id: int, payload) -> Dict:
        """
        Import trades exported by ``export_trades``.

        Rows missing required fields are skipped. Rows whose id exists for
        this user replace the stored trade; ids owned by another user are skipped.
        """
        rows = payload.get('trades') if isinstance(payload, dict) else payload
        if not isinstance(rows, list):
            raise ValidationError("Expected a list of trades or {\"trades\": [...]}")

        imported, skipped = 0, 0
        for row in rows:
            if not self._valid_import_row(row):
                skipped += 1
                continue

            existing = db.session.get(Trade, str(row['id']))
            if existing is not None and existing.user_id != user_id:
                skipped += 1
                continue

            # Build the replacement first so a bad row never removes the stored trade
            try:
                trade = self._trade_from_export(user_id, row)
            except ValidationError as e:
                logger.info(f"Skipping imported trade {row.get('id')}: {e.message}")
                skipped += 1
                continue
            if existing is not None:
                db.session.delete(existing)
                db.session.flush()
            db.session.add(trade)
            imported += 1

        db.session.commit()
        logger.info(f"Imported {imported} trades for user {user_id} ({skipped} skipped)")
        return {'imported': imported, 'skipped': skipped}

    def _trade_from_export(self, user_id: int, row: Dict) -> Trade:
        isin, ticker = _clean_identifiers(row.get('isin'), row.get('ticker'))
        partial_sales = [_partial_sale_from_export(sale) for sale in row.get('partialSales') or []]
        trade = Trade(
            id=str(row['id']),
            user_id=user_id,
            isin=isin,
            ticker=ticker,
            name=str(row['name'])[:MAX_NAME_LENGTH],
            buy_price=_positive_number(row['buyPrice'], 'buyPrice'),
            quantity=_positive_number(row['quantity'], 'quantity'),
            invested_eur=float(row['investedEur']),
            buy_date=_parse_date(row['buyDate'], 'buyDate'),
            current_price=row.get('currentPrice'),
            currency=_clean_currency(row.get('currency')),
            price_provider=row.get('priceProvider'),
            is_derivative=bool(row.get('isDerivative')),
            leverage=row.get('leverage'),
            product_type=row.get('productType'),
            underlying=row.get('underlying'),
            knock_out=row.get('knockOut'),
            option_type=_clean_option_type(row.get('optionType')),
            original_quantity=row.get('originalQuantity'),
            is_partial_sale=bool(row.get('isPartialSale')),
            parent_trade_id=row.get('parentTradeId'),
            is_closed=bool(row.get('isClosed')),
            closed_at=_parse_datetime(row['closedAt'], 'closedAt') if row.get('closedAt') else None,
            sell_price=row.get('sellPrice'),
            sell_total=row.get('sellTotal'),
            realized_pnl=row.get('realizedPnL'),
        )
        trade.partial_sales.extend(partial_sales)
        return trade
