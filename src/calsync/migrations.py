"""Apply the calsync schema with Alembic, without going through its CLI."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from alembic.config import Config

from alembic import command

logger = logging.getLogger(__name__)

# alembic/ sits next to src/ at the repository root.
ALEMBIC_DIR = Path(__file__).resolve().parents[2] / "alembic"

_CHAINS = ("core",)


def _build_alembic_config(db_url: str) -> Config:
    versions = ALEMBIC_DIR / "versions"
    config = Config()
    config.set_main_option("script_location", str(ALEMBIC_DIR))
    # Config values go through configparser interpolation.
    config.set_main_option("sqlalchemy.url", db_url.replace("%", "%%"))
    config.set_main_option(
        "version_locations",
        " ".join(str(versions / name) for name in _CHAINS if (versions / name).is_dir()),
    )
    return config


async def run_migrations(db_url: str, chain: str = "core") -> None:
    """Upgrade ``chain`` to its head revision on the database at ``db_url``.

    ``command.upgrade`` is blocking, so it runs in a worker thread.
    """
    logger.info("Upgrading %s@head", chain)
    await asyncio.to_thread(command.upgrade, _build_alembic_config(db_url), f"{chain}@head")
