#!/usr/bin/env python
"""
Fix Stuck Generations Script
Reconciles PROCESSING generations that never received a webhook

Usage:
    python scripts/fix_stuck_generations.py [--older-than-minutes 30] [--dry-run]

Each stuck generation is checked against Replicate:
    - finished predictions are stored (or failed with refund if storage fails)
    - failed/cancelled predictions are failed with refund
    - predictions still running past the cutoff are timed out with refund
    - generations without a job ID are failed with refund
"""
import sys
import logging
from datetime import datetime, timedelta

from vibephoto.db.engine import SessionLocal
from vibephoto.db.models import Generation, GenerationStatus
from vibephoto.exceptions import AIError
from vibephoto.services.reconciliation_service import ReconciliationService, STORAGE_FAILURE_FAIL

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

DEFAULT_OLDER_THAN_MINUTES = 30


def fix_stuck_generations(older_than_minutes: int = DEFAULT_OLDER_THAN_MINUTES, dry_run: bool = False) -> dict:
    """
    Reconcile or time out generations stuck in PROCESSING

    Args:
        older_than_minutes: only touch generations created before this many minutes ago
        dry_run: If True, only report the Replicate status of each generation

    Returns:
        Dictionary with fix statistics
    """
    stats = {
        "start_time": datetime.utcnow().isoformat(),
        "found": 0,
        "completed": 0,
        "failed": 0,
        "timed_out": 0,
        "still_processing": 0,
        "errors": []
    }

    db = SessionLocal()

    try:
        now = datetime.utcnow()
        cutoff = now - timedelta(minutes=older_than_minutes)
        logger.info(f"Looking for PROCESSING generations created before {cutoff}")
        logger.info(f"Mode: {'DRY RUN' if dry_run else 'LIVE'}")

        stuck = db.query(Generation).filter(
            Generation.status == GenerationStatus.PROCESSING.value,
            Generation.created_at < cutoff
        ).order_by(Generation.created_at.asc()).all()

        stats["found"] = len(stuck)
        logger.info(f"Found {len(stuck)} stuck generations")

        service = ReconciliationService(db)

        for generation in stuck:
            try:
                if not generation.job_id:
                    logger.info(f"Generation {generation.id} has no job ID")
                    if not dry_run:
                        service.fail_generation(generation, "Generation was never submitted to the provider")
                        db.commit()
                    stats["failed"] += 1
                    continue

                prediction = service.provider.get_prediction(generation.job_id)
                logger.info(
                    f"Generation {generation.id} (user {generation.user_id}): "
                    f"Replicate status {prediction.get('status')}"
                )

                if dry_run:
                    logger.info(f"[DRY RUN] Would reconcile generation {generation.id}")
                    continue

                result = service.reconcile_generation(
                    generation,
                    prediction,
                    processed_via="fix_script",
                    on_storage_failure=STORAGE_FAILURE_FAIL,
                )

                if result["action"] == "processing":
                    timeout = service.timeout_generation(generation, timeout_minutes=older_than_minutes, now=now)
                    if timeout["action"] == "timed_out":
                        stats["timed_out"] += 1
                    else:
                        stats["still_processing"] += 1
                elif result["action"] == "completed":
                    stats["completed"] += 1
                else:
                    stats["failed"] += 1

                logger.info(f"Generation {generation.id}: {result['action']}")

            except AIError as e:
                db.rollback()
                logger.error(f"Failed to check generation {generation.id}: {e.message}")
                stats["errors"].append({"generation_id": generation.id, "error": e.message})
            except Exception as e:
                db.rollback()
                logger.error(f"Failed to fix generation {generation.id}: {e}", exc_info=True)
                stats["errors"].append({"generation_id": generation.id, "error": str(e)})

        stats["end_time"] = datetime.utcnow().isoformat()
        return stats

    except Exception as e:
        logger.error(f"Fatal error while fixing stuck generations: {e}", exc_info=True)
        stats["errors"].append({"fatal_error": str(e)})
        return stats
    finally:
        db.close()


def main():
    """Main entry point"""
    import argparse

    parser = argparse.ArgumentParser(description="Reconcile or time out stuck generations")
    parser.add_argument(
        '--older-than-minutes',
        type=int,
        default=DEFAULT_OLDER_THAN_MINUTES,
        help=f'Only fix generations older than this (default: {DEFAULT_OLDER_THAN_MINUTES})'
    )
    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Dry run mode (report only, no changes)'
    )

    args = parser.parse_args()

    logger.info("=" * 60)
    logger.info("FIX STUCK GENERATIONS")
    logger.info("=" * 60)

    stats = fix_stuck_generations(older_than_minutes=args.older_than_minutes, dry_run=args.dry_run)

    logger.info("=" * 60)
    logger.info("SUMMARY")
    logger.info("=" * 60)
    logger.info(f"Mode: {'DRY RUN' if args.dry_run else 'LIVE'}")
    logger.info(f"Generations found: {stats['found']}")
    logger.info(f"Completed: {stats['completed']}")
    logger.info(f"Failed (refunded): {stats['failed']}")
    logger.info(f"Timed out (refunded): {stats['timed_out']}")
    logger.info(f"Still processing: {stats['still_processing']}")

    if stats['errors']:
        logger.error(f"Errors encountered: {len(stats['errors'])}")
        for error in stats['errors']:
            logger.error(f"  - {error}")

    logger.info("=" * 60)

    if stats['errors']:
        sys.exit(1)
    else:
        sys.exit(0)


if __name__ == "__main__":
    main()
