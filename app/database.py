import asyncpg
from contextlib import asynccontextmanager
from app.config import settings
import logging

logger = logging.getLogger(__name__)


async def _init_connection(conn):
    # Ticket and scan timestamps are compared against NOW() in UTC
    await conn.execute("SET TIME ZONE 'UTC'")


class DatabasePool:
    """Process-wide asyncpg pool, opened in the app lifespan"""
    _pool = None

    @classmethod
    async def create_pool(cls):
        if cls._pool is None:
            try:
                cls._pool = await asyncpg.create_pool(
                    **settings.db_connection_params,
                    min_size=settings.db_pool_min_size,
                    max_size=settings.db_pool_max_size,
                    max_inactive_connection_lifetime=300,
                    command_timeout=60,
                    timeout=30,
                    init=_init_connection
                )
                logger.info(
                    f"Database pool created: {settings.db_name}@{settings.db_host} "
                    f"(size {settings.db_pool_min_size}-{settings.db_pool_max_size})"
                )
            except (OSError, asyncpg.PostgresError) as e:
                logger.error(f"Failed to create database pool: {e}")
                raise
        return cls._pool

    @classmethod
    async def close_pool(cls):
        if cls._pool:
            await cls._pool.close()
            cls._pool = None
            logger.info("Database pool closed")

    @classmethod
    def is_open(cls) -> bool:
        return cls._pool is not None


@asynccontextmanager
async def get_db_connection(use_transaction: bool = True):
    """
    Acquire a pooled connection.

    With use_transaction (the default) the block is one unit of work: an
    exception raised anywhere inside rolls back all of its writes. Pass
    use_transaction=False for read-only queries.

    Usage:
    async with get_db_connection() as conn:
        row = await conn.fetchrow("SELECT * FROM tickets WHERE qr_code = $1 FOR UPDATE", code)
    """
    pool = await DatabasePool.create_pool()
    async with pool.acquire() as connection:
        if use_transaction:
            async with connection.transaction():
                yield connection
        else:
            yield connection
