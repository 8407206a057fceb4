"""Fixed-window action budgets kept in Redis."""

from __future__ import annotations

import math
import time
from dataclasses import dataclass
from typing import Optional

from matchcore.infra.redis import redis_client


@dataclass(slots=True, frozen=True)
class RateWindow:
	allowed: bool
	count: int
	limit: int
	retry_after: int

	@property
	def remaining(self) -> int:
		return max(0, self.limit - self.count)


class RateLimitExceeded(Exception):
	"""Raised when an actor has spent its budget for the current window."""

	def __init__(self, reason: str = "rate_limited", *, retry_after: int = 1) -> None:
		super().__init__(reason)
		self.reason = reason
		self.retry_after = retry_after


def window_key(action: str, actor_id: str, slot: int) -> str:
	return f"ratelimit:{action}:{actor_id}:{slot}"


async def hit(
	action: str,
	actor_id: str,
	*,
	limit: int,
	window_seconds: int = 60,
	now: Optional[float] = None,
) -> RateWindow:
	"""Count one ``action`` by ``actor_id`` against the current window.

	Windows are aligned to multiples of ``window_seconds``; ``retry_after`` is
	the number of whole seconds until the next one opens. A non-positive
	``limit`` denies without touching Redis.
	"""

	now = time.time() if now is None else now
	window = max(1, int(window_seconds))
	slot = int(math.floor(now / window))
	retry_after = max(1, math.ceil((slot + 1) * window - now))
	if limit <= 0:
		return RateWindow(allowed=False, count=0, limit=0, retry_after=retry_after)
	key = window_key(action, actor_id, slot)
	async with redis_client.pipeline(transaction=True) as pipe:
		pipe.incr(key)
		pipe.expire(key, window)
		count, _ = await pipe.execute()
	count = int(count)
	return RateWindow(allowed=count <= limit, count=count, limit=limit, retry_after=retry_after)
