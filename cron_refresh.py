#!/usr/bin/env python3
"""
Cron job for scheduled data refresh. Run hourly.

Schedule behavior:
- Every run: refresh the EUR/USD exchange rate
- Weekdays: record a price snapshot for every instrument held in an open trade
- Weekends: skip price snapshots (markets closed)
"""

import argparse
import logging
import os
import sys
from datetime import datetime, timezone

from dotenv import load_dotenv

load_dotenv()

# Use public DATABASE_URL for cron jobs if available
# (internal network may not be reachable from cron containers)
if os.environ.get('DATABASE_PUBLIC_URL'):
    os.environ['DATABASE_URL'] = os.environ['DATABASE_PUBLIC_URL']

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

from app import create_app
from services import ExchangeRateUnavailable


def is_weekend(now=None):
    """Check if today is a weekend (Sat=5, Sun=6)."""
    now = now or datetime.now(timezone.utc)
    return now.weekday() >= 5


def run_exchange_rate_refresh(app):
    """Refresh and persist the EUR/USD rate. Returns True on success."""
    logger.info("--- Exchange Rate Refresh ---")
    with app.app_context():
        try:
            rates = app.portfolio_manager.refresh_exchange_rate()
        except ExchangeRateUnavailable as e:
            logger.error(f"Exchange rate refresh failed: {e}")
            return False
    logger.info(f"1 EUR = {rates['USD']} USD (source: {rates['source']})")
    return True


def run_price_snapshots(app):
    """Record price snapshots. Returns the snapshot result dict."""
    logger.info("--- Price Snapshots ---")
    with app.app_context():
        result = app.portfolio_manager.take_price_snapshots()

    logger.info(
        f"Saved {result['successCount']}/{result['totalInstruments']} snapshots "
        f"in {result['duration']}ms"
    )
    for error in result['errors']:
        logger.warning(f"  {error['identifier']}: {error['error']}")
    return result


def main(argv=None):
    parser = argparse.ArgumentParser(description='Refresh exchange rate and price snapshots')
    parser.add_argument('--force', action='store_true', help='Take snapshots even on weekends')
    parser.add_argument('--rates-only', action='store_true', help='Only refresh the exchange rate')
    args = parser.parse_args(argv)

    now = datetime.now(timezone.utc)
    logger.info("=" * 60)
    logger.info("CRON: Data Refresh")
    logger.info(f"Time: {now.strftime('%Y-%m-%d %H:%M:%S')} UTC")
    logger.info(f"Day: {now.strftime('%A')}")
    logger.info("=" * 60)

    app = create_app()

    ok = run_exchange_rate_refresh(app)

    if args.rates_only:
        logger.info("Rates only - skipping price snapshots")
    elif is_weekend(now) and not args.force:
        logger.info("Weekend - skipping price snapshots")
    else:
        result = run_price_snapshots(app)
        # Partial failures are logged; only a run that saved nothing fails
        ok = ok and (result['totalInstruments'] == 0 or result['successCount'] > 0)

    logger.info("=" * 60)
    logger.info(f"CRON: Completed {'successfully' if ok else 'with errors'}")
    logger.info("=" * 60)
    if not ok:
        sys.exit(1)


if __name__ == "__main__":
    main()
