"""Fixed-window budgets for proximity queries and connection requests.

Each (kind, actor) pair gets a counter in Redis keyed by the current window
slot. Counters expire with their window so nothing needs sweeping.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from typing import Optional

from redis.exceptions import RedisError

from nearbyconnect.domain.errors import TransientError
from nearbyconnect.infra.redis import redis_client
from nearbyconnect.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class WindowUsage:
	kind: str
	count: int
	limit: int
	resets_at: float

	@property
	def allowed(self) -> bool:
		return 0 < self.limit and self.count <= self.limit

	def retry_after(self, now: float) -> int:
		return max(1, math.ceil(self.resets_at - now))


class RateLimitExceeded(Exception):
	"""The actor spent its budget for ``kind`` in the current window."""

	def __init__(self, kind: str, *, retry_after: Optional[int] = None) -> None:
		super().__init__(kind)
		self.reason = kind
		self.retry_after = retry_after


def _window_key(kind: str, actor_id: str, window: int, now: float) -> tuple[str, float]:
	slot = int(now // window)
	return f"rl:{kind}:{actor_id}:{window}:{slot}", float((slot + 1) * window)


async def consume(
	kind: str,
	actor_id: str,
	*,
	limit: int,
	window_seconds: int = 60,
	now: Optional[float] = None,
) -> WindowUsage:
	"""Count one hit against the budget and report the window state."""
	now = time.time() if now is None else now
	window = max(1, int(window_seconds))
	if limit <= 0:
		return WindowUsage(kind=kind, count=0, limit=limit, resets_at=now + window)
	key, resets_at = _window_key(kind, actor_id, window, now)
	try:
		async with redis_client.pipeline(transaction=True) as pipe:
			pipe.incr(key)
			pipe.expire(key, window)
			count, _ = await pipe.execute()
	except (RedisError, OSError) as exc:
		# outage surfaces as a retryable store failure, never as "allowed"
		obs_metrics.inc_store_error(f"rate_limit:{kind}")
		logger.warning("rate limit store unavailable", extra={"kind": kind, "error": type(exc).__name__})
		raise TransientError() from exc
	return WindowUsage(kind=kind, count=int(count), limit=limit, resets_at=resets_at)


async def enforce(kind: str, actor_id: str, *, limit: int, window_seconds: int = 60) -> WindowUsage:
	"""Count one hit and raise :class:`RateLimitExceeded` with a retry hint."""
	now = time.time()
	usage = await consume(kind, actor_id, limit=limit, window_seconds=window_seconds, now=now)
	if not usage.allowed:
		raise RateLimitExceeded(kind, retry_after=usage.retry_after(now))
	return usage
