#!/usr/bin/env python
"""
Recover Generation Script
Re-fetches a generation's prediction and stores its output permanently

Usage:
    python scripts/recover_generation.py GENERATION_ID [--dry-run]

Handles generations that are still PROCESSING, COMPLETED generations that
kept temporary provider URLs, and FAILED generations whose prediction
actually succeeded. Credits refunded for a FAILED generation are not
charged again.
"""
import sys
import logging
from datetime import datetime

from vibephoto.db.engine import SessionLocal
from vibephoto.db.models import Generation, GenerationStatus
from vibephoto.exceptions import AIError
from vibephoto.services.reconciliation_service import (
    ReconciliationService,
    STORAGE_FAILURE_KEEP_TEMPORARY,
)

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def needs_recovery(generation: Generation, service: ReconciliationService) -> bool:
    if generation.status in (GenerationStatus.PENDING.value, GenerationStatus.PROCESSING.value):
        return True
    if generation.status == GenerationStatus.FAILED.value:
        return True
    if generation.status == GenerationStatus.COMPLETED.value:
        # Completed with provider URLs instead of our own storage
        return any(service.storage.key_from_url(url) is None for url in generation.image_urls or [])
    return False


def recover_generation(generation_id: str, dry_run: bool = False) -> dict:
    """
    Recover a single generation from its Replicate prediction

    Returns:
        Dictionary with action, status and errors
    """
    stats = {
        "start_time": datetime.utcnow().isoformat(),
        "generation_id": generation_id,
        "action": None,
        "errors": []
    }

    db = SessionLocal()

    try:
        generation = db.query(Generation).filter(Generation.id == generation_id).first()
        if not generation:
            stats["errors"].append({"error": f"Generation {generation_id} not found"})
            return stats
        if not generation.job_id:
            stats["errors"].append({"error": f"Generation {generation_id} has no job ID"})
            return stats

        service = ReconciliationService(db)
        logger.info(f"Generation {generation.id}: status {generation.status}, job {generation.job_id}")

        if not needs_recovery(generation, service):
            logger.info("Nothing to recover")
            stats["action"] = "nothing_to_recover"
            return stats

        prediction = service.provider.get_prediction(generation.job_id)
        logger.info(f"Replicate status: {prediction.get('status')} ({len(prediction.get('urls') or [])} outputs)")

        if prediction.get("status") != "succeeded" and generation.status != GenerationStatus.PROCESSING.value:
            logger.info("Prediction did not succeed, nothing to recover")
            stats["action"] = "nothing_to_recover"
            return stats

        if dry_run:
            logger.info(f"[DRY RUN] Would store {len(prediction.get('urls') or [])} outputs for {generation.id}")
            stats["action"] = "would_recover"
            return stats

        if generation.status == GenerationStatus.FAILED.value:
            logger.warning(f"Recovering FAILED generation {generation.id}; refunded credits stay refunded")

        previous_status = generation.status
        # Reopen so reconciliation applies the prediction again
        generation.status = GenerationStatus.PROCESSING.value
        result = service.reconcile_generation(
            generation,
            prediction,
            processed_via="recovery",
            on_storage_failure=STORAGE_FAILURE_KEEP_TEMPORARY,
        )
        stats["action"] = result["action"]
        stats["previous_status"] = previous_status
        stats["status"] = generation.status

        if generation.extra_metadata and generation.extra_metadata.get("storage_warning"):
            stats["errors"].append({"error": generation.extra_metadata["storage_warning"]})

        stats["end_time"] = datetime.utcnow().isoformat()
        return stats

    except AIError as e:
        db.rollback()
        logger.error(f"Could not fetch prediction: {e.message}")
        stats["errors"].append({"error": e.message})
        return stats
    except Exception as e:
        db.rollback()
        logger.error(f"Fatal error during recovery: {e}", exc_info=True)
        stats["errors"].append({"fatal_error": str(e)})
        return stats
    finally:
        db.close()


def main():
    """Main entry point"""
    import argparse

    parser = argparse.ArgumentParser(description="Recover a generation from its Replicate prediction")
    parser.add_argument('generation_id', help='Generation ID')
    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Dry run mode (report only, no changes)'
    )

    args = parser.parse_args()

    logger.info("=" * 60)
    logger.info("RECOVER GENERATION")
    logger.info("=" * 60)

    stats = recover_generation(args.generation_id, dry_run=args.dry_run)

    logger.info("=" * 60)
    logger.info(f"Mode: {'DRY RUN' if args.dry_run else 'LIVE'}")
    logger.info(f"Action: {stats['action']}")
    if stats.get("status"):
        logger.info(f"Status: {stats.get('previous_status')} -> {stats['status']}")

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
