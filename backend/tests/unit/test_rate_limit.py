import pytest
from fakeredis.aioredis import FakeRedis

from matchcore.infra import rate_limit
from matchcore.infra.redis import RedisProxy


@pytest.mark.asyncio
async def test_budget_within_window(fake_redis):
	now = 1_700_000_000.0
	windows = [await rate_limit.hit("swipe", "actor", limit=2, now=now) for _ in range(3)]
	assert [w.allowed for w in windows] == [True, True, False]
	assert [w.remaining for w in windows] == [1, 0, 0]
	assert windows[-1].retry_after == 40


@pytest.mark.asyncio
async def test_new_window_resets_budget(fake_redis):
	now = 1_700_000_020.0
	assert (await rate_limit.hit("swipe", "actor", limit=1, now=now)).allowed
	assert not (await rate_limit.hit("swipe", "actor", limit=1, now=now + 1)).allowed
	assert (await rate_limit.hit("swipe", "actor", limit=1, now=now + 60)).allowed


@pytest.mark.asyncio
async def test_budgets_are_per_actor(fake_redis):
	now = 1_700_000_000.0
	assert (await rate_limit.hit("swipe", "a", limit=1, now=now)).allowed
	assert (await rate_limit.hit("swipe", "b", limit=1, now=now)).allowed
	slot = int(now // 60)
	assert await fake_redis.get(rate_limit.window_key("swipe", "a", slot)) == "1"
	assert 0 < await fake_redis.ttl(rate_limit.window_key("swipe", "a", slot)) <= 60


@pytest.mark.asyncio
async def test_zero_limit_denies_without_counting(fake_redis):
	window = await rate_limit.hit("swipe", "actor", limit=0, now=1_700_000_099.5)
	assert not window.allowed
	assert window.retry_after == 1
	assert await fake_redis.keys("ratelimit:*") == []


@pytest.mark.asyncio
async def test_redis_proxy_connects_lazily_and_closes():
	opened = []

	def factory():
		client = FakeRedis(decode_responses=True)
		opened.append(client)
		return client

	proxy = RedisProxy(factory)
	assert opened == []
	await proxy.set("k", "v")
	assert await proxy.get("k") == "v"
	assert len(opened) == 1
	await proxy.aclose()
	await proxy.aclose()
	await proxy.ping()
	assert len(opened) == 2
	await proxy.aclose()
