# services/snapshot_service.py
"""
Price snapshot service.
Records quotes for every instrument held in an open trade and serves the history.
"""

import logging
import time
from datetime import datetime
from typing import Dict, List, Optional

import numpy as np
from sqlalchemy import func

from constants import MAX_HISTORY_ROWS, SNAPSHOT_BATCH_SIZE
from models import PriceSnapshot, Trade, db, utcnow

logger = logging.getLogger(__name__)


def _chunks(items: List[str], size: int):
    for i in range(0, len(items), size):
        yield items[i:i + size]


class SnapshotService:
    """Handles price snapshot creation and retrieval."""

    def __init__(self, quote_service):
        self.quote_service = quote_service

    def get_active_identifiers(self) -> List[str]:
        """ISIN (else ticker) of every open trade, across all users."""
        rows = db.session.query(Trade.isin, Trade.ticker).filter(Trade.is_closed.is_(False)).distinct().all()
        identifiers = []
        for isin, ticker in rows:
            identifier = isin or ticker
            if identifier and identifier not in identifiers:
                identifiers.append(identifier)
        return identifiers

    def save_price_snapshots(self, batch_size: int = SNAPSHOT_BATCH_SIZE) -> Dict:
        """
        Fetch fresh quotes for all active identifiers and store one snapshot each.

        Returns:
            Dict with success flag, counts, per-identifier errors and duration (ms)
        """
        started = time.time()
        snapshot_at = utcnow().replace(second=0, microsecond=0)
        identifiers = self.get_active_identifiers()
        logger.info(f"Price snapshot: {len(identifiers)} active instruments")

        success_count = 0
        errors = []
        for batch in _chunks(identifiers, batch_size):
            try:
                quotes = self.quote_service.fetch_batch(batch, force=True)
            except Exception as e:
                logger.exception("Snapshot batch failed")
                errors.extend({'identifier': i, 'error': str(e)} for i in batch)
                continue

            for identifier in batch:
                quote = quotes.get(identifier)
                if quote is None or not quote.price or quote.price <= 0:
                    errors.append({'identifier': identifier, 'error': 'No price available'})
                    continue
                if PriceSnapshot.query.filter_by(identifier=identifier, snapshot_at=snapshot_at).first():
                    success_count += 1
                    continue
                db.session.add(PriceSnapshot(
                    identifier=identifier,
                    price=quote.price,
                    currency=quote.currency or 'EUR',
                    source=quote.provider,
                    snapshot_at=snapshot_at,
                ))
                success_count += 1
            db.session.commit()

        duration = int((time.time() - started) * 1000)
        logger.info(f"Price snapshot done: {success_count} saved, {len(errors)} errors in {duration}ms")
        return {
            'success': not errors,
            'totalInstruments': len(identifiers),
            'successCount': success_count,
            'errorCount': len(errors),
            'errors': errors,
            'duration': duration,
        }

    def get_history(self, identifier: str, start: Optional[datetime] = None,
                    end: Optional[datetime] = None, limit: int = MAX_HISTORY_ROWS) -> Dict:
        query = PriceSnapshot.query.filter_by(identifier=identifier)
        if start:
            query = query.filter(PriceSnapshot.snapshot_at >= start)
        if end:
            query = query.filter(PriceSnapshot.snapshot_at <= end)
        rows = query.order_by(PriceSnapshot.snapshot_at.desc()).limit(min(limit, MAX_HISTORY_ROWS)).all()
        rows.reverse()

        return {
            'identifier': identifier,
            'count': len(rows),
            'prices': [r.to_dict() for r in rows],
            'summary': self._summarize([r.price for r in rows]),
        }

    def _summarize(self, prices: List[float]) -> Optional[Dict]:
        if not prices:
            return None
        values = np.array(prices, dtype=float)
        summary = {
            'min': round(float(values.min()), 2),
            'max': round(float(values.max()), 2),
            'mean': round(float(values.mean()), 2),
            'changePct': round(float((values[-1] / values[0] - 1) * 100), 2),
            'volatility': None,
        }
        if len(values) > 2:
            returns = np.diff(np.log(values))
            summary['volatility'] = round(float(np.std(returns, ddof=1) * 100), 2)
        return summary

    def get_stats(self) -> Dict:
        total = db.session.query(func.count(PriceSnapshot.id)).scalar() or 0
        unique = db.session.query(func.count(func.distinct(PriceSnapshot.identifier))).scalar() or 0
        oldest, newest = db.session.query(
            func.min(PriceSnapshot.snapshot_at), func.max(PriceSnapshot.snapshot_at)
        ).one()
        return {
            'totalSnapshots': total,
            'uniqueInstruments': unique,
            'oldestSnapshot': oldest.isoformat() if oldest else None,
            'newestSnapshot': newest.isoformat() if newest else None,
            'avgSnapshotsPerInstrument': round(total / unique, 2) if unique else 0,
        }
