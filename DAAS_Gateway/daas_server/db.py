import asyncio

import asyncpg

from DAAS_Gateway.daas_shared.errors import BundleStoreError


async def create_pool(dsn: str, min_size: int = 1, max_size: int = 10) -> asyncpg.Pool:
    try:
        return await asyncpg.create_pool(
            dsn=dsn,
            max_size=max_size,
            min_size=min_size,
        )
    except (asyncpg.PostgresError, OSError) as e:
        raise BundleStoreError(f"Failed to create pool: {e}")


async def close_pool(pool: asyncpg.Pool) -> None:
    if pool is None:
        return
    try:
        await asyncio.wait_for(pool.close(), timeout=5.0)
    except asyncio.TimeoutError:
        pool.terminate()


async def health_check(pool: asyncpg.Pool) -> bool:
    if pool is None:
        return False
    try:
        async with pool.acquire() as conn:
            result = await conn.fetchval("SELECT 1")
            return result == 1
    except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError):
        return False
