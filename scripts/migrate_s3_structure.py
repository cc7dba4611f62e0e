#!/usr/bin/env python
"""
S3 Structure Migration Script
Moves media stored under the legacy layout to generated/{user_id}/{category}/

Usage:
    python scripts/migrate_s3_structure.py [--user-id USER_ID] [--dry-run] [--delete-old]

Legacy keys look like {user_id}/{media_type}/{generation_id}_{index}.{ext}
(thumbnails prefixed with thumb_). Each legacy object is copied to a fresh
key in the current layout and every stored URL or key that referenced it is
rewritten. Old objects are only deleted with --delete-old.
"""
import sys
import logging
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy.orm import Session
from vibephoto.db.engine import SessionLocal
from vibephoto.db.models import Generation, VideoGeneration, EditHistory
from vibephoto.services.storage_provider import StorageProvider, get_storage_provider
from vibephoto.utils.storage_paths import parse_storage_key, convert_legacy_key

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


class KeyMigrator:
    """Copies legacy objects once and remembers where they went"""

    def __init__(self, storage: StorageProvider, stats: dict, dry_run: bool = False):
        self.storage = storage
        self.stats = stats
        self.dry_run = dry_run
        self.moved: Dict[str, str] = {}  # old key -> new key

    def migrate_key(self, key: Optional[str]) -> Optional[str]:
        """New key for a legacy key, None when the key needs no migration or the copy failed"""
        if not key:
            return None
        parsed = parse_storage_key(key)
        if not parsed or parsed["format"] != "legacy":
            return None
        if key in self.moved:
            return self.moved[key]

        new_key = convert_legacy_key(key)
        if self.dry_run:
            logger.info(f"[DRY RUN] Would copy {key} -> {new_key}")
        else:
            try:
                self.storage.copy(key, new_key)
            except Exception as e:
                logger.error(f"Failed to copy {key}: {e}")
                self.stats["errors"].append({"key": key, "error": str(e)})
                return None
        self.moved[key] = new_key
        self.stats["objects_copied"] += 1
        return new_key

    def migrate_url(self, url: Optional[str]) -> Optional[str]:
        """New public URL for a URL pointing at a legacy key"""
        new_key = self.migrate_key(self.storage.key_from_url(url) if url else None)
        return self.storage.get_url(new_key) if new_key else None

    def migrate_urls(self, urls: List[str]) -> Optional[List[str]]:
        """Rewritten list, or None when nothing in it changed"""
        changed = False
        result = []
        for url in urls or []:
            new_url = self.migrate_url(url)
            changed = changed or new_url is not None
            result.append(new_url or url)
        return result if changed else None

    def migrate_keys(self, keys: List[str]) -> Optional[List[str]]:
        changed = False
        result = []
        for key in keys or []:
            new_key = self.migrate_key(key)
            changed = changed or new_key is not None
            result.append(new_key or key)
        return result if changed else None


def _migrate_generations(db: Session, migrator: KeyMigrator, user_id: Optional[str]) -> int:
    query = db.query(Generation)
    if user_id:
        query = query.filter(Generation.user_id == user_id)

    updated = 0
    for generation in query.all():
        image_urls = migrator.migrate_urls(generation.image_urls)
        thumbnail_urls = migrator.migrate_urls(generation.thumbnail_urls)
        storage_keys = migrator.migrate_keys(generation.storage_keys)
        if image_urls is None and thumbnail_urls is None and storage_keys is None:
            continue
        if not migrator.dry_run:
            if image_urls is not None:
                generation.image_urls = image_urls
            if thumbnail_urls is not None:
                generation.thumbnail_urls = thumbnail_urls
            if storage_keys is not None:
                generation.storage_keys = storage_keys
        updated += 1
    return updated


def _migrate_videos(db: Session, migrator: KeyMigrator, user_id: Optional[str]) -> int:
    query = db.query(VideoGeneration)
    if user_id:
        query = query.filter(VideoGeneration.user_id == user_id)

    updated = 0
    for video in query.all():
        video_url = migrator.migrate_url(video.video_url)
        thumbnail_url = migrator.migrate_url(video.thumbnail_url)
        storage_key = migrator.migrate_key(video.storage_key)
        if not (video_url or thumbnail_url or storage_key):
            continue
        if not migrator.dry_run:
            video.video_url = video_url or video.video_url
            video.thumbnail_url = thumbnail_url or video.thumbnail_url
            video.storage_key = storage_key or video.storage_key
        updated += 1
    return updated


def _migrate_edits(db: Session, migrator: KeyMigrator, user_id: Optional[str]) -> int:
    query = db.query(EditHistory)
    if user_id:
        query = query.filter(EditHistory.user_id == user_id)

    updated = 0
    for edit in query.all():
        edited_url = migrator.migrate_url(edit.edited_image_url)
        thumbnail_url = migrator.migrate_url(edit.thumbnail_url)
        if not (edited_url or thumbnail_url):
            continue
        if not migrator.dry_run:
            edit.edited_image_url = edited_url or edit.edited_image_url
            edit.thumbnail_url = thumbnail_url or edit.thumbnail_url
        updated += 1
    return updated


def migrate_storage(user_id: Optional[str] = None, dry_run: bool = False, delete_old: bool = False) -> dict:
    """
    Copy legacy objects to the current layout and rewrite references

    Args:
        user_id: limit the migration to one user
        dry_run: If True, only report what would move
        delete_old: delete legacy objects after the database commit

    Returns:
        Dictionary with migration statistics
    """
    stats = {
        "start_time": datetime.utcnow().isoformat(),
        "objects_copied": 0,
        "objects_deleted": 0,
        "generations_updated": 0,
        "videos_updated": 0,
        "edits_updated": 0,
        "errors": []
    }

    db = SessionLocal()

    try:
        logger.info(f"Starting storage migration (user: {user_id or 'all'})")
        logger.info(f"Mode: {'DRY RUN' if dry_run else 'LIVE'}")

        migrator = KeyMigrator(get_storage_provider(), stats, dry_run=dry_run)

        stats["generations_updated"] = _migrate_generations(db, migrator, user_id)
        stats["videos_updated"] = _migrate_videos(db, migrator, user_id)
        stats["edits_updated"] = _migrate_edits(db, migrator, user_id)

        if dry_run:
            db.rollback()
        else:
            db.commit()
            if delete_old:
                for old_key in migrator.moved:
                    if migrator.storage.delete(old_key):
                        stats["objects_deleted"] += 1

        stats["end_time"] = datetime.utcnow().isoformat()
        logger.info(f"Storage migration completed: {stats['objects_copied']} objects copied")
        return stats

    except Exception as e:
        db.rollback()
        logger.error(f"Fatal error during storage migration: {e}", exc_info=True)
        stats["errors"].append({"fatal_error": str(e)})
        return stats
    finally:
        db.close()


def main():
    """Main entry point"""
    import argparse

    parser = argparse.ArgumentParser(description="Migrate legacy storage keys to generated/{user}/{category}/")
    parser.add_argument('--user-id', help='Only migrate media for this user')
    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Dry run mode (report only, no copies or updates)'
    )
    parser.add_argument(
        '--delete-old',
        action='store_true',
        help='Delete legacy objects once the database has been updated'
    )

    args = parser.parse_args()

    logger.info("=" * 60)
    logger.info("S3 STRUCTURE MIGRATION")
    logger.info("=" * 60)

    stats = migrate_storage(user_id=args.user_id, dry_run=args.dry_run, delete_old=args.delete_old)

    logger.info("=" * 60)
    logger.info("MIGRATION SUMMARY")
    logger.info("=" * 60)
    logger.info(f"Mode: {'DRY RUN' if args.dry_run else 'LIVE'}")
    logger.info(f"Objects copied: {stats['objects_copied']}")
    logger.info(f"Objects deleted: {stats['objects_deleted']}")
    logger.info(f"Generations updated: {stats['generations_updated']}")
    logger.info(f"Videos updated: {stats['videos_updated']}")
    logger.info(f"Edits updated: {stats['edits_updated']}")

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
