"""Shared asyncpg pool for the billing service."""

import asyncio
import logging
from typing import Optional

import asyncpg

from pgv.config import AppConfig, get_config

logger = logging.getLogger(__name__)

# Per-connection connect timeout, also the grace period for close_pool()
CONNECT_TIMEOUT_SECONDS = 5.0

_pool: Optional[asyncpg.Pool] = None


async def get_pool(config: Optional[AppConfig] = None) -> asyncpg.Pool:
    """Open the pool on first use and return it afterwards.

    The pool is only kept once ``SELECT 1`` succeeds through it.

    Raises:
        asyncio.TimeoutError: If PostgreSQL does not accept a connection in time
        asyncpg.PostgresError: If the database rejects the connection
    """
    global _pool
    if _pool is not None:
        return _pool

    config = config or get_config()
    pool = await asyncpg.create_pool(
        str(config.db_dsn),
        min_size=config.db_pool_min,
        max_size=config.db_pool_max,
        timeout=CONNECT_TIMEOUT_SECONDS,
    )

    try:
        await pool.fetchval("SELECT 1")
    except Exception:
        await pool.close()
        raise

    _pool = pool
    logger.info(f"Database pool ready (min={config.db_pool_min}, max={config.db_pool_max})")
    return _pool


async def close_pool() -> None:
    """Close the shared pool, terminating it if connections do not drain in time."""
    global _pool
    pool, _pool = _pool, None
    if pool is None:
        return

    try:
        await asyncio.wait_for(pool.close(), timeout=CONNECT_TIMEOUT_SECONDS)
    except asyncio.TimeoutError:
        logger.warning("Pool close timed out, terminating remaining connections")
        pool.terminate()
