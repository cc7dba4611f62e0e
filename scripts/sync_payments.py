#!/usr/bin/env python
"""
Payment Sync Script
Reconciles PENDING payments with Asaas when webhooks were missed

Usage:
    python scripts/sync_payments.py [--days 7] [--dry-run]

Paid payments activate their subscription or credit their purchase exactly as
the PAYMENT_CONFIRMED webhook would; refunded or deleted payments are cancelled.
"""
import sys
import logging

from vibephoto.db.engine import SessionLocal
from vibephoto.services.maintenance_service import MaintenanceService

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def sync_payments(days: int = 7, dry_run: bool = False) -> dict:
    db = SessionLocal()
    try:
        logger.info(f"Syncing PENDING payments from the last {days} days")
        logger.info(f"Mode: {'DRY RUN' if dry_run else 'LIVE'}")
        return MaintenanceService(db).sync_payments(days=days, dry_run=dry_run)
    except Exception as e:
        logger.error(f"Fatal error during payment sync: {e}", exc_info=True)
        return {
            "checked": 0, "confirmed": 0, "cancelled": 0, "unchanged": 0, "errors": 1,
            "dry_run": dry_run, "results": [{"action": "error", "error": str(e)}],
        }
    finally:
        db.close()


def main():
    """Main entry point"""
    import argparse

    parser = argparse.ArgumentParser(description="Reconcile PENDING payments with Asaas")
    parser.add_argument(
        '--days',
        type=int,
        default=7,
        help='Look back this many days (default: 7)'
    )
    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Dry run mode (report only, no changes)'
    )

    args = parser.parse_args()

    logger.info("=" * 60)
    logger.info("PAYMENT SYNC")
    logger.info("=" * 60)

    stats = sync_payments(days=args.days, dry_run=args.dry_run)

    logger.info("=" * 60)
    logger.info("SYNC SUMMARY")
    logger.info("=" * 60)
    logger.info(f"Mode: {'DRY RUN' if args.dry_run else 'LIVE'}")
    logger.info(f"Payments checked: {stats['checked']}")
    logger.info(f"Confirmed: {stats['confirmed']}")
    logger.info(f"Cancelled: {stats['cancelled']}")
    logger.info(f"Unchanged: {stats['unchanged']}")

    for result in stats["results"]:
        if result["action"] == "error":
            logger.error(f"  - {result}")
        elif result["action"] != "unchanged":
            logger.info(f"  - {result['payment_id']}: {result['action']} ({result.get('status')})")

    logger.info("=" * 60)

    if stats['errors'] > 0:
        sys.exit(1)
    else:
        sys.exit(0)


if __name__ == "__main__":
    main()
