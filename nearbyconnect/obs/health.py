"""Liveness and readiness probes.

Readiness needs both dependencies: the store that holds profiles and
locations, and Redis, which carries the request budgets.
"""

from __future__ import annotations

import asyncio
import logging
from time import perf_counter
from typing import Any, Awaitable, Callable, Dict, Tuple

from redis.exceptions import RedisError

from nearbyconnect.domain.errors import DataLayerError
from nearbyconnect.domain.repo import get_store
from nearbyconnect.infra.redis import redis_client
from nearbyconnect.settings import settings

LOGGER = logging.getLogger(__name__)

REDIS_TIMEOUT = 0.2
STORE_TIMEOUT = 0.5


async def _timed(name: str, probe: Callable[[], Awaitable[Dict[str, Any]]]) -> Dict[str, Any]:
	start = perf_counter()
	try:
		details = await probe()
	except (asyncio.TimeoutError, OSError, DataLayerError, RedisError) as exc:
		LOGGER.warning("readiness probe failed", extra={"probe": name, "error": type(exc).__name__})
		return {"ok": False, "error": type(exc).__name__}
	return {"ok": True, "latency_ms": round((perf_counter() - start) * 1000, 2), **details}


async def _probe_redis() -> Dict[str, Any]:
	await redis_client.ping(REDIS_TIMEOUT)
	return {}


async def _probe_store() -> Dict[str, Any]:
	return await asyncio.wait_for(get_store().ping(), timeout=STORE_TIMEOUT)


async def liveness() -> Dict[str, str]:
	return {"status": "ok"}


async def readiness() -> Tuple[int, Dict[str, Any]]:
	redis_state, store_state = await asyncio.gather(
		_timed("redis", _probe_redis),
		_timed("store", _probe_store),
	)
	store_state.setdefault("backend", settings.store_backend)
	ok = bool(redis_state["ok"] and store_state["ok"])
	return (
		200 if ok else 503,
		{
			"status": "ok" if ok else "degraded",
			"redis": redis_state,
			"store": store_state,
			"env": settings.environment,
			"commit": settings.git_commit,
		},
	)
