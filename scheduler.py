# scheduler.py
"""
Background job scheduler.
Refreshes the EUR/USD rate hourly and records price snapshots on an interval.
Only started when SCHEDULER_ENABLED is set; deployments that use cron_refresh.py
leave it off.
"""

import atexit
import logging

from apscheduler.schedulers.background import BackgroundScheduler

from services import ExchangeRateUnavailable

logger = logging.getLogger(__name__)


def refresh_exchange_rate_job(app):
    with app.app_context():
        try:
            rates = app.portfolio_manager.refresh_exchange_rate()
            logger.info(f"Scheduled rate refresh: 1 EUR = {rates['USD']} USD ({rates['source']})")
        except ExchangeRateUnavailable as e:
            logger.error(f"Scheduled rate refresh failed: {e}")


def price_snapshot_job(app):
    with app.app_context():
        result = app.portfolio_manager.take_price_snapshots()
        logger.info(
            f"Scheduled snapshot: {result['successCount']}/{result['totalInstruments']} saved"
        )


def start_scheduler(app):
    """
    Start the background scheduler with the rate and snapshot jobs.

    Returns:
        The running BackgroundScheduler
    """
    scheduler = BackgroundScheduler(daemon=True)

    scheduler.add_job(
        refresh_exchange_rate_job, 'interval', hours=1, args=[app],
        id='exchange_rate_refresh', replace_existing=True,
    )
    scheduler.add_job(
        price_snapshot_job, 'interval', minutes=app.config['SNAPSHOT_INTERVAL_MINUTES'], args=[app],
        id='price_snapshots', replace_existing=True, max_instances=1, coalesce=True,
    )

    scheduler.start()
    logger.info(
        f"Scheduler started: rate refresh hourly, snapshots every "
        f"{app.config['SNAPSHOT_INTERVAL_MINUTES']} minutes"
    )

    # Shut down scheduler when exiting the app
    atexit.register(lambda: scheduler.shutdown())

    return scheduler
