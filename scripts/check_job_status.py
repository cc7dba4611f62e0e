#!/usr/bin/env python
"""
Check Job Status Script
Shows a Replicate job next to the local row that tracks it

Usage:
    python scripts/check_job_status.py JOB_ID [--training]

The job is looked up as a generation/upscale prediction, then as a video
prediction, then as a model training. Use --training to query the Replicate
trainings endpoint directly.
"""
import sys
import json
import logging
from typing import Optional, Dict, Any

from sqlalchemy.orm import Session
from vibephoto.db.engine import SessionLocal
from vibephoto.db.models import Generation, VideoGeneration, AIModel
from vibephoto.exceptions import AIError
from vibephoto.services.replicate_provider import get_replicate_provider

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def find_local_row(db: Session, job_id: str) -> Optional[Dict[str, Any]]:
    """Locate the row tracking job_id; returns {kind, id, user_id, status, ...} or None"""
    generation = db.query(Generation).filter(Generation.job_id == job_id).first()
    if generation:
        return {
            "kind": "upscale" if generation.is_upscale else "generation",
            "id": generation.id,
            "user_id": generation.user_id,
            "status": generation.status,
            "created_at": generation.created_at.isoformat() if generation.created_at else None,
            "image_count": len(generation.image_urls or []),
            "error_message": generation.error_message,
        }

    video = db.query(VideoGeneration).filter(VideoGeneration.job_id == job_id).first()
    if video:
        return {
            "kind": "video",
            "id": video.id,
            "user_id": video.user_id,
            "status": video.status,
            "created_at": video.created_at.isoformat() if video.created_at else None,
            "video_url": video.video_url,
            "error_message": video.error_message,
        }

    model = db.query(AIModel).filter(AIModel.training_job_id == job_id).first()
    if model:
        return {
            "kind": "training",
            "id": model.id,
            "user_id": model.user_id,
            "status": model.status,
            "created_at": model.created_at.isoformat() if model.created_at else None,
            "progress": model.progress,
            "model_url": model.model_url,
            "error_message": model.error_message,
        }

    return None


def check_job(job_id: str, training: bool = False) -> dict:
    """
    Fetch the remote job and the local row

    Returns:
        Dictionary with local, remote and errors
    """
    stats = {"job_id": job_id, "local": None, "remote": None, "errors": []}

    db = SessionLocal()
    try:
        stats["local"] = find_local_row(db, job_id)
        if stats["local"] is None:
            logger.warning(f"No local row references job {job_id}")
        elif stats["local"]["kind"] == "training":
            training = True

        provider = get_replicate_provider()
        try:
            remote = provider.get_training(job_id) if training else provider.get_prediction(job_id)
            remote.pop("logs", None)
            stats["remote"] = remote
        except AIError as e:
            logger.error(f"Could not fetch job {job_id} from Replicate: {e.message}")
            stats["errors"].append({"job_id": job_id, "error": e.message})

        return stats
    finally:
        db.close()


def main():
    """Main entry point"""
    import argparse

    parser = argparse.ArgumentParser(description="Show a Replicate job and its local row")
    parser.add_argument('job_id', help='Replicate prediction or training ID')
    parser.add_argument(
        '--training',
        action='store_true',
        help='Query the trainings endpoint instead of predictions'
    )

    args = parser.parse_args()

    stats = check_job(args.job_id, training=args.training)

    logger.info("=" * 60)
    logger.info(f"JOB {args.job_id}")
    logger.info("=" * 60)
    logger.info("Local row:")
    logger.info(json.dumps(stats["local"], indent=2, default=str))
    logger.info("Replicate:")
    logger.info(json.dumps(stats["remote"], indent=2, default=str))

    local, remote = stats["local"], stats["remote"]
    if local and remote:
        logger.info(f"Local status: {local['status']} | Replicate status: {remote.get('status')}")

    logger.info("=" * 60)

    if stats["errors"]:
        sys.exit(1)
    else:
        sys.exit(0)


if __name__ == "__main__":
    main()
