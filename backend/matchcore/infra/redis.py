"""Shared Redis client used for swipe budgets.

``redis_client`` is a module-level proxy: callers import it once and keep the
reference, while the connection behind it is opened on first use and can be
replaced (tests install fakeredis) or closed on shutdown.
"""

from __future__ import annotations

from typing import Callable, Optional

import redis.asyncio as redis

from matchcore.settings import settings


def _connect() -> redis.Redis:
	return redis.from_url(settings.redis_url, decode_responses=True)


class RedisProxy:
	def __init__(self, factory: Callable[[], redis.Redis]) -> None:
		self._factory = factory
		self._client: Optional[redis.Redis] = None

	@property
	def client(self) -> redis.Redis:
		if self._client is None:
			self._client = self._factory()
		return self._client

	def set_client(self, client: Optional[redis.Redis]) -> None:
		self._client = client

	async def aclose(self) -> None:
		client, self._client = self._client, None
		if client is not None:
			await client.aclose()

	def __getattr__(self, item):
		return getattr(self.client, item)


redis_client: RedisProxy = RedisProxy(_connect)


def set_redis_client(client: Optional[redis.Redis]) -> None:
	redis_client.set_client(client)
