#!/usr/bin/env python
"""
Database migration script for the VibePhoto schema

Usage:
    python migrate_db.py                      # upgrade to head
    python migrate_db.py downgrade [revision] # default: one revision back
    python migrate_db.py current              # show database vs. head revision
    python migrate_db.py stamp [revision]     # mark an existing schema as migrated

Databases created before Alembic was introduced already hold the tables;
stamp them at head instead of upgrading.
"""
import argparse
import logging
import sys

from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory

from vibephoto.db.engine import engine, test_connection

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

ALEMBIC_INI = "alembic.ini"


def get_revisions(alembic_cfg: Config) -> dict:
    """Current database revision and the latest available one"""
    script = ScriptDirectory.from_config(alembic_cfg)
    with engine.connect() as connection:
        current = MigrationContext.configure(connection).get_current_revision()
    return {"current": current, "head": script.get_current_head()}


def main() -> int:
    parser = argparse.ArgumentParser(description="Apply VibePhoto database migrations")
    parser.add_argument("action", nargs="?", default="upgrade",
                        choices=["upgrade", "downgrade", "current", "stamp"])
    parser.add_argument("revision", nargs="?", help="Target revision")
    args = parser.parse_args()

    if not test_connection():
        logger.error("Database is not reachable; check DATABASE_URL")
        return 1

    alembic_cfg = Config(ALEMBIC_INI)

    if args.action == "current":
        revisions = get_revisions(alembic_cfg)
        if revisions["current"] is None:
            logger.info("Database is not initialized. Run migrations first.")
        else:
            logger.info(f"Current revision: {revisions['current']}")
        logger.info(f"Head revision: {revisions['head']}")
        if revisions["current"] != revisions["head"]:
            logger.warning("Database is behind the latest migration")
        return 0

    if args.action == "downgrade":
        revision = args.revision or "-1"
        logger.info(f"Downgrading database to {revision}")
        command.downgrade(alembic_cfg, revision)
    elif args.action == "stamp":
        revision = args.revision or "head"
        logger.info(f"Stamping database at {revision} without running migrations")
        command.stamp(alembic_cfg, revision)
    else:
        revision = args.revision or "head"
        logger.info(f"Upgrading database to {revision}")
        command.upgrade(alembic_cfg, revision)

    logger.info(f"Database now at {get_revisions(alembic_cfg)['current']}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
