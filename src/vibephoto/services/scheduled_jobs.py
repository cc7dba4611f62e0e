"""
Scheduled Jobs Service
Manages background jobs for job reconciliation, payment sync and cleanup
"""
import logging
from typing import Optional
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

logger = logging.getLogger(__name__)

# Global scheduler instance
_scheduler: Optional[BackgroundScheduler] = None


def get_scheduler() -> BackgroundScheduler:
    """
    Get or create the background scheduler instance

    Returns:
        BackgroundScheduler instance
    """
    global _scheduler

    if _scheduler is None:
        _scheduler = BackgroundScheduler(
            job_defaults={
                'coalesce': True,  # Combine missed runs
                'max_instances': 1,  # Only one instance at a time
                'misfire_grace_time': 3600  # 1 hour grace period
            }
        )

    return _scheduler


def start_scheduler():
    """
    Start the background scheduler and register all jobs
    """
    scheduler = get_scheduler()

    if not scheduler.running:
        scheduler.add_job(
            func=run_sync_jobs_job,
            trigger=CronTrigger(minute='*/5'),
            id='sync_jobs',
            name='Sync Replicate jobs',
            replace_existing=True
        )
        logger.info("Registered job sync (every 5 minutes)")

        scheduler.add_job(
            func=run_sync_payments_job,
            trigger=CronTrigger(minute=0),  # Every hour at minute 0
            id='sync_payments',
            name='Sync pending Asaas payments',
            replace_existing=True
        )
        logger.info("Registered payment sync job (hourly)")

        scheduler.add_job(
            func=run_daily_cleanup_job,
            trigger=CronTrigger(hour=2, minute=0),  # Daily at 2 AM
            id='daily_cleanup',
            name='Daily Cleanup',
            replace_existing=True
        )
        logger.info("Registered daily cleanup job (daily at 2 AM)")

        scheduler.add_job(
            func=run_expire_credits_job,
            trigger=CronTrigger(hour=3, minute=0),  # Daily at 3 AM
            id='expire_credits',
            name='Expire purchased credits',
            replace_existing=True
        )
        logger.info("Registered credit expiration job (daily at 3 AM)")

        scheduler.start()
        logger.info("Background scheduler started")
    else:
        logger.warning("Scheduler already running")


def stop_scheduler():
    """
    Stop the background scheduler
    """
    scheduler = get_scheduler()

    if scheduler.running:
        scheduler.shutdown(wait=True)
        logger.info("Background scheduler stopped")


def run_sync_jobs_job():
    """
    Reconcile PROCESSING generations, upscales, trainings and videos with Replicate

    Covers webhooks that never arrived. Safe to overlap with webhooks and
    polling since reconciliation never rewrites a terminal row.
    """
    from ..db.engine import SessionLocal
    from ..db.utils import CircuitBreakerOpenError, db_circuit_breaker
    from .reconciliation_service import ReconciliationService

    logger.info("=" * 60)
    logger.info("Starting scheduled job sync")
    logger.info("=" * 60)

    db = SessionLocal()

    try:
        summary = db_circuit_breaker.execute(lambda: ReconciliationService(db).sync_processing_jobs())
        logger.info(
            f"Job sync summary: processed={summary['processed']} "
            f"updated={summary['updated']} errors={summary['errors']}"
        )
    except CircuitBreakerOpenError:
        logger.warning("Database circuit is open; skipping job sync")
    except Exception as e:
        logger.error(f"Fatal error during job sync: {e}", exc_info=True)
    finally:
        db.close()
        logger.info("Job sync finished")


def run_sync_payments_job():
    """Confirm or cancel PENDING payments whose webhook was missed"""
    from ..db.engine import SessionLocal
    from .maintenance_service import MaintenanceService

    logger.info("=" * 60)
    logger.info("Starting scheduled payment sync")
    logger.info("=" * 60)

    db = SessionLocal()

    try:
        summary = MaintenanceService(db).sync_payments(days=7)

        if summary['errors']:
            logger.error(f"Errors encountered: {summary['errors']}")
            for result in summary['results']:
                if result['action'] == 'error':
                    logger.error(f"  - Payment {result['payment_id']}: {result['error']}")
    except Exception as e:
        logger.error(f"Fatal error during payment sync: {e}", exc_info=True)
    finally:
        db.close()
        logger.info("Payment sync finished")


def run_daily_cleanup_job():
    """
    Daily cleanup job

    - System logs older than 30 days
    - Rate limit logs older than 7 days
    - Generations stuck in PROCESSING for over an hour (failed and refunded)
    """
    from ..db.engine import SessionLocal
    from .maintenance_service import MaintenanceService

    logger.info("=" * 60)
    logger.info("Starting scheduled daily cleanup job")
    logger.info("=" * 60)

    db = SessionLocal()

    try:
        summary = MaintenanceService(db, session_factory=SessionLocal).daily_cleanup()

        logger.info("=" * 60)
        logger.info("Daily Cleanup Job Summary")
        logger.info("=" * 60)
        logger.info(f"System logs deleted: {summary['system_logs_deleted']}")
        logger.info(f"Rate limit logs deleted: {summary['rate_limit_logs_deleted']}")
        logger.info(f"Stuck generations failed: {summary['stuck_generations_failed']}")
    except Exception as e:
        logger.error(f"Fatal error during daily cleanup job: {e}", exc_info=True)
    finally:
        db.close()
        logger.info("Daily cleanup job finished")
        logger.info("=" * 60)


def run_expire_credits_job():
    """Expire purchased credits past their validity date"""
    from ..db.engine import SessionLocal
    from .credit_package_service import CreditPackageService

    logger.info("Starting scheduled credit expiration job")

    db = SessionLocal()

    try:
        expired = CreditPackageService(db).mark_expired_credits()
        logger.info(f"Expired {expired} credit purchases")
    except Exception as e:
        logger.error(f"Credit expiration job failed: {e}", exc_info=True)
    finally:
        db.close()
