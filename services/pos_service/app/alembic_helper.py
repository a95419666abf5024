import asyncio
import os

from alembic import command
from alembic.config import Config
from loguru import logger


def _upgrade(alembic_ini_path: str, database_dsn: str) -> None:
    alembic_cfg = Config(alembic_ini_path)
    alembic_cfg.set_main_option("sqlalchemy.url", database_dsn)
    command.upgrade(alembic_cfg, "head")


async def run_alembic_migrations(database_dsn: str) -> None:
    """Apply Alembic migrations for the POS schema using the sync DSN."""
    try:
        base_dir = os.path.dirname(os.path.abspath(__file__))
        alembic_ini_path = os.path.join(base_dir, "db", "migrations", "alembic.ini")
        if not os.path.exists(alembic_ini_path):
            logger.warning(f"Alembic config not found at {alembic_ini_path}, skipping migrations.")
            return
        logger.info("🚀 Running Alembic migrations (pos)...")
        await asyncio.to_thread(_upgrade, alembic_ini_path, database_dsn)
        logger.info("✅ Alembic migrations applied successfully (pos).")
    except Exception as e:
        logger.error(f"❌ Alembic migration failed (pos): {e}")
        raise
