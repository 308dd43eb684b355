"""
Scheduled Jobs Service
Background jobs for monthly credit maintenance, creator payouts and cache cleanup
"""
import logging
from datetime import date
from typing import Optional
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from ..config import config
from ..exceptions import InfinitePagesError

logger = logging.getLogger(__name__)

# Global scheduler instance
_scheduler: Optional[BackgroundScheduler] = None


def get_scheduler() -> BackgroundScheduler:
    """Get or create the background scheduler instance"""
    global _scheduler

    if _scheduler is None:
        _scheduler = BackgroundScheduler(
            job_defaults={
                'coalesce': True,  # Combine missed runs
                'max_instances': 1,
                'misfire_grace_time': 3600
            }
        )

    return _scheduler


def register_jobs(scheduler: BackgroundScheduler):
    """Register every periodic job on the scheduler"""
    scheduler.add_job(
        func=run_monthly_maintenance_job,
        trigger=CronTrigger(day=1, hour=2, minute=0),
        id='monthly_maintenance',
        name='Monthly credit distribution and reversion',
        replace_existing=True
    )
    logger.info("Registered monthly maintenance job (1st of month at 2 AM)")

    scheduler.add_job(
        func=run_monthly_payout_job,
        trigger=CronTrigger(day=1, hour=6, minute=0),
        id='monthly_payouts',
        name='Monthly creator payout batch',
        replace_existing=True
    )
    logger.info("Registered monthly payout job (1st of month at 6 AM)")

    scheduler.add_job(
        func=run_cache_cleanup_job,
        trigger=CronTrigger(minute=0),
        id='llm_cache_cleanup',
        name='Expired LLM cache cleanup',
        replace_existing=True
    )
    logger.info("Registered LLM cache cleanup job (hourly)")


def start_scheduler():
    """Start the background scheduler and register all jobs"""
    scheduler = get_scheduler()

    if not scheduler.running:
        register_jobs(scheduler)
        scheduler.start()
        logger.info("Background scheduler started")
    else:
        logger.warning("Scheduler already running")


def stop_scheduler():
    """Stop the background scheduler"""
    scheduler = get_scheduler()

    if scheduler.running:
        scheduler.shutdown(wait=True)
        logger.info("Background scheduler stopped")


def run_monthly_maintenance_job():
    """Distribute last month's credits and cap Basic balances"""
    from ..db.engine import SessionLocal
    from .maintenance_service import MaintenanceService, previous_month

    month, year = previous_month()
    logger.info(f"Starting scheduled monthly maintenance for {year}-{month:02d}")

    db = SessionLocal()
    try:
        results = MaintenanceService(db).run_monthly_maintenance(dry_run=False, month=month, year=year)
        if results["success"]:
            logger.info("Scheduled monthly maintenance completed")
        else:
            logger.error(f"Scheduled monthly maintenance finished with errors: {results['errors']}")
    except Exception as e:
        db.rollback()
        logger.error(f"Scheduled monthly maintenance failed: {e}", exc_info=True)
    finally:
        db.close()


def run_monthly_payout_job():
    """Pay creators whose pending earnings reached the minimum"""
    from ..db.engine import SessionLocal
    from .billing_gateway import get_billing_gateway
    from .payout_service import PayoutService

    logger.info("Starting scheduled creator payout batch")

    db = SessionLocal()
    try:
        gateway = get_billing_gateway(config)
        result = PayoutService(db, gateway).process_batch(batch_date=date.today())
        logger.info(
            f"Scheduled payout batch {result['batch_id']} finished with status {result['status']}"
        )
    except InfinitePagesError as e:
        db.rollback()
        logger.warning(f"Scheduled payout batch skipped: {e.message}")
    except Exception as e:
        db.rollback()
        logger.error(f"Scheduled payout batch failed: {e}", exc_info=True)
    finally:
        db.close()


def run_cache_cleanup_job():
    """Drop expired LLM cache entries"""
    from .llm_cache import get_llm_cache

    removed = get_llm_cache().cleanup_expired()
    if removed:
        logger.info(f"Removed {removed} expired LLM cache entries")
