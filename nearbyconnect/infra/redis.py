"""Shared Redis client used for rate-limit counters and readiness probes.

Modules import ``redis_client`` once at load time, so it is a forwarding
handle: tests install fakeredis with :func:`set_redis_client` and every
importer sees the swap.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

import redis.asyncio as redis

from nearbyconnect.settings import settings

logger = logging.getLogger(__name__)


class RedisHandle:
	def __init__(self, url: str) -> None:
		self._url = url
		self._client: Optional[redis.Redis] = None

	@property
	def client(self) -> redis.Redis:
		# the pool connects lazily, building the client opens no sockets
		if self._client is None:
			self._client = redis.from_url(self._url, decode_responses=True)
		return self._client

	def swap(self, client: Optional[redis.Redis]) -> None:
		self._client = client

	async def ping(self, timeout: float) -> None:
		await asyncio.wait_for(self.client.ping(), timeout=timeout)

	async def aclose(self) -> None:
		if self._client is None:
			return
		client, self._client = self._client, None
		try:
			await client.aclose()
		except (OSError, redis.RedisError):
			logger.warning("redis close failed", exc_info=True)

	def __getattr__(self, item):
		return getattr(self.client, item)


redis_client = RedisHandle(settings.redis_url)


def set_redis_client(client: Optional[redis.Redis]) -> None:
	redis_client.swap(client)


async def close_redis() -> None:
	await redis_client.aclose()
