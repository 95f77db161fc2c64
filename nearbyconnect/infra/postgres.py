"""asyncpg pool for the PostGIS-backed store.

The pool is created on application startup when ``STORE_BACKEND=postgres``
and lazily on first use otherwise (scripts, one-off tasks).
"""

from __future__ import annotations

import json
import logging
from typing import Optional

import asyncpg

from nearbyconnect.settings import settings

logger = logging.getLogger(__name__)

_pool: Optional[asyncpg.Pool] = None


async def _prepare_connection(conn: asyncpg.Connection) -> None:
	# notification payloads live in jsonb and come back as dicts
	await conn.set_type_codec("jsonb", encoder=json.dumps, decoder=json.loads, schema="pg_catalog")


async def _check_postgis(pool: asyncpg.Pool) -> None:
	installed = await pool.fetchval("SELECT 1 FROM pg_extension WHERE extname = 'postgis'")
	if not installed:
		logger.error("postgis extension missing; proximity queries will fail until migrations run")


async def init_pool() -> asyncpg.Pool:
	global _pool
	if _pool is not None:
		return _pool
	pool = await asyncpg.create_pool(
		dsn=settings.postgres_url,
		min_size=settings.postgres_min_pool_size,
		max_size=settings.postgres_max_pool_size,
		command_timeout=settings.postgres_command_timeout,
		ssl="require" if settings.postgres_ssl else "disable",
		server_settings={"application_name": settings.service_name},
		init=_prepare_connection,
	)
	await _check_postgis(pool)
	_pool = pool
	logger.info(
		"postgres pool ready",
		extra={"min_size": settings.postgres_min_pool_size, "max_size": settings.postgres_max_pool_size},
	)
	return pool


async def get_pool() -> asyncpg.Pool:
	return _pool if _pool is not None else await init_pool()


async def close_pool() -> None:
	global _pool
	pool, _pool = _pool, None
	if pool is not None:
		await pool.close()
