"""
Postgres client for the email import pipeline.

Uses SQLAlchemy 2.0 async engine + asyncpg for raw SQL execution. Each call
runs in its own short transaction; stage atomicity comes from the staging row
(see stages.base), not from a long-lived database transaction.
"""

from __future__ import annotations

from typing import Any
from urllib.parse import parse_qs, urlencode, urlparse, urlunparse

import structlog
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from ..errors import wrap_database_error

logger = structlog.get_logger(__name__)

_STRIP_PARAMS = {'channel_binding', 'sslmode'}


def _sanitize_url(url: str) -> tuple[str, bool]:
    """Remove URL query params that asyncpg does not understand.

    Pooler URLs include ``channel_binding=require`` and ``sslmode=require``
    which are libpq parameters. asyncpg rejects unknown connection params,
    so SSL is passed through ``connect_args`` instead.

    Returns:
        The cleaned URL and whether SSL was requested.
    """
    parsed = urlparse(url)
    if not parsed.query:
        return url, False
    params = parse_qs(parsed.query)
    ssl_required = params.get('sslmode', [''])[0] in ('require', 'verify-ca', 'verify-full')
    filtered = {k: v for k, v in params.items() if k not in _STRIP_PARAMS}
    new_query = urlencode(filtered, doseq=True)
    return urlunparse(parsed._replace(query=new_query)), ssl_required


def _normalize_driver(url: str) -> str:
    """Force the asyncpg driver onto postgres:// and postgresql:// URLs."""
    if url.startswith('postgres://'):
        return url.replace('postgres://', 'postgresql+asyncpg://', 1)
    if url.startswith('postgresql://') and '+asyncpg' not in url:
        return url.replace('postgresql://', 'postgresql+asyncpg://', 1)
    return url


class PostgresClient:
    """
    Async Postgres client used by the import repositories.

    Errors raised by SQLAlchemy or the driver are re-raised as the
    DatabaseError hierarchy so stage retry logic can classify them.
    """

    def __init__(self, database_url: str | None = None):
        """
        Initialize with a Postgres connection URL.

        Args:
            database_url: Postgres connection URL. ``postgres://`` and
                          ``postgresql://`` URLs are converted to use asyncpg.
        """
        self._engine: AsyncEngine | None = None
        self._database_url = database_url

    async def connect(self, database_url: str | None = None) -> None:
        """
        Create the async engine. No-op if already connected.

        Args:
            database_url: Override the URL from __init__.
        """
        if self._engine is not None:
            return

        url = database_url or self._database_url
        if not url:
            raise ValueError('database_url is required')

        url, ssl_required = _sanitize_url(url)
        url = _normalize_driver(url)

        connect_args: dict[str, Any] = {
            # Poolers (PgBouncer) don't support prepared statements.
            'prepared_statement_cache_size': 0,
        }
        if ssl_required:
            connect_args['ssl'] = 'require'

        self._engine = create_async_engine(
            url,
            pool_size=5,
            max_overflow=5,
            pool_pre_ping=True,
            pool_timeout=30,
            connect_args=connect_args,
        )
        logger.info('postgres_client.connected')

    async def close(self) -> None:
        """Dispose of the engine and connection pool."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            logger.info('postgres_client.closed')

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError('PostgresClient not connected, call connect() first')
        return self._engine

    async def verify_connectivity(self) -> bool:
        """Return True if we can execute a simple query."""
        try:
            async with self.engine.begin() as conn:
                await conn.execute(text('SELECT 1'))
            return True
        except Exception:
            logger.exception('postgres_client.connectivity_check_failed')
            return False

    # =========================================================================
    # Statement execution
    # =========================================================================

    async def execute(self, sql: str, params: dict[str, Any] | None = None) -> int:
        """
        Execute a statement that returns no rows.

        Returns:
            Number of rows affected
        """
        try:
            async with self.engine.begin() as conn:
                result = await conn.execute(text(sql), params or {})
                return result.rowcount
        except SQLAlchemyError as e:
            raise wrap_database_error(e, context={'operation': 'execute'}) from e

    async def fetch_all(
        self, sql: str, params: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        """Execute a statement and return every row as a dict."""
        try:
            async with self.engine.begin() as conn:
                result = await conn.execute(text(sql), params or {})
                return [dict(row) for row in result.mappings().all()]
        except SQLAlchemyError as e:
            raise wrap_database_error(e, context={'operation': 'fetch_all'}) from e

    async def fetch_one(
        self, sql: str, params: dict[str, Any] | None = None
    ) -> dict[str, Any] | None:
        """Execute a statement and return the first row as a dict, or None."""
        rows = await self.fetch_all(sql, params)
        return rows[0] if rows else None
