from __future__ import annotations

import asyncio
from dataclasses import dataclass

import asyncpg


def to_plain_dsn(dsn: str) -> str:
    """Strip the SQLAlchemy driver suffix; asyncpg only understands ``postgresql://``."""

    scheme, separator, rest = dsn.partition("://")
    if not separator:
        return dsn
    base = scheme.split("+", 1)[0]
    return f"{base}://{rest}"


@dataclass(slots=True)
class PostgresConnectionTester:
    """Health check issuing ``SELECT 1`` over a one connection asyncpg pool."""

    dsn: str
    timeout: float = 5.0
    _pool: asyncpg.Pool | None = None

    async def _ensure_pool(self) -> asyncpg.Pool:
        if self._pool is None:
            self._pool = await asyncpg.create_pool(
                dsn=to_plain_dsn(self.dsn), min_size=1, max_size=1, timeout=self.timeout
            )
        return self._pool

    async def test_connection(self) -> bool:
        pool = await self._ensure_pool()
        async with pool.acquire() as connection:
            await connection.execute("SELECT 1")
        return True

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    def test_connection_sync(self, timeout: float | None = None) -> bool:
        """Blocking variant for scripts and migrations."""

        return asyncio.run(asyncio.wait_for(self.test_connection(), timeout=timeout or self.timeout))
