"""
Async PostgreSQL connection pool using asyncpg.

Usage:
    pool = await init_pool(DATABASE_URL)
    async with pool.acquire() as conn:
        row = await conn.fetchrow("SELECT 1")
    await close_pool()
"""

from pathlib import Path

import asyncpg
import logging

logger = logging.getLogger(__name__)

_pool: asyncpg.Pool | None = None

MIGRATIONS_DIR = Path(__file__).parent / "migrations"


async def init_pool(
    dsn: str,
    min_size: int = 2,
    max_size: int = 10,
    command_timeout: float | None = None,
) -> asyncpg.Pool:
    """Create and return the global asyncpg connection pool."""
    global _pool
    _pool = await asyncpg.create_pool(
        dsn, min_size=min_size, max_size=max_size, command_timeout=command_timeout
    )
    logger.info("Database pool initialized (min=%d, max=%d)", min_size, max_size)
    return _pool


async def close_pool() -> None:
    """Gracefully close the connection pool."""
    global _pool
    if _pool is not None:
        await _pool.close()
        _pool = None
        logger.info("Database pool closed")


async def run_migrations(pool: asyncpg.Pool, migrations_dir: Path = MIGRATIONS_DIR) -> None:
    """Apply every *.sql file in name order, once.

    Applied file names are recorded in `schema_migrations`.
    """
    async with pool.acquire() as conn:
        await conn.execute(
            "CREATE TABLE IF NOT EXISTS schema_migrations ("
            " name TEXT PRIMARY KEY,"
            " applied_at TIMESTAMPTZ NOT NULL DEFAULT NOW())"
        )
        applied = {
            row["name"] for row in await conn.fetch("SELECT name FROM schema_migrations")
        }
        for path in sorted(migrations_dir.glob("*.sql")):
            if path.name in applied:
                logger.info("Migration already applied, skipping %s", path.name)
                continue
            sql = path.read_text(encoding="utf-8")
            async with conn.transaction():
                await conn.execute(sql)
                await conn.execute(
                    "INSERT INTO schema_migrations (name) VALUES ($1)", path.name
                )
            logger.info("Migration applied: %s", path.name)
