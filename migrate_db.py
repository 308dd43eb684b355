#!/usr/bin/env python
"""
Database migration script for Infinite Pages
Usage: python migrate_db.py [upgrade [revision]|downgrade [revision]|current|stamp [revision]]
"""
import logging
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent / "src"))

from alembic.config import Config
from alembic import command

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger("migrate_db")

ALEMBIC_INI = str(Path(__file__).parent / "alembic.ini")


def upgrade_db(revision: str = "head"):
    logger.info(f"Upgrading database to {revision}")
    command.upgrade(Config(ALEMBIC_INI), revision)
    logger.info("Database migrations completed")


def downgrade_db(revision: str = "-1"):
    logger.info(f"Downgrading database to {revision}")
    command.downgrade(Config(ALEMBIC_INI), revision)


def stamp_db(revision: str = "head"):
    """Mark a database created by init_db() as migrated without running migrations"""
    logger.info(f"Stamping database at {revision}")
    command.stamp(Config(ALEMBIC_INI), revision)


def show_current_revision():
    from alembic.script import ScriptDirectory
    from alembic.runtime.migration import MigrationContext
    from infinite_pages.db.engine import engine

    script = ScriptDirectory.from_config(Config(ALEMBIC_INI))
    with engine.connect() as connection:
        current = MigrationContext.configure(connection).get_current_revision()

    logger.info(f"Current revision: {current or 'none (run upgrade)'}")
    logger.info(f"Latest revision: {script.get_current_head()}")


COMMANDS = {
    "upgrade": upgrade_db,
    "downgrade": downgrade_db,
    "stamp": stamp_db,
}


if __name__ == "__main__":
    action = sys.argv[1] if len(sys.argv) > 1 else "upgrade"

    if action == "current":
        show_current_revision()
    elif action in COMMANDS:
        args = sys.argv[2:3]
        COMMANDS[action](*args)
    else:
        print(__doc__.strip().splitlines()[-1])
        sys.exit(1)
