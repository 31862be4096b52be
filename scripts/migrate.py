"""
Apply Alembic migrations up to head
"""

import logging
import sys
import os
from typing import Optional

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from alembic import command
from alembic.config import Config

from core.config import settings
from core.logging import setup_logging

logger = logging.getLogger(__name__)

ALEMBIC_INI = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "alembic.ini")


def upgrade(
    revision: str = "head",
    config_path: str = ALEMBIC_INI,
    database_url: Optional[str] = None
) -> None:
    """Run `alembic upgrade`; database_url overrides DATABASE_URL"""
    config = Config(config_path)
    if database_url:
        config.set_main_option("sqlalchemy.url", database_url)

    logger.info(f"Upgrading database to {revision}")
    command.upgrade(config, revision)


if __name__ == "__main__":
    setup_logging(settings.LOG_LEVEL)
    upgrade(sys.argv[1] if len(sys.argv) > 1 else "head")
