import json
from unittest.mock import AsyncMock, MagicMock
from uuid import UUID

import httpx
import pytest

from matchcore.infra.store import Filter, Order, PersistenceClient, RetryPolicy, StoreError
from matchcore.infra.store.rest import RestTransport, encode_filter, encode_order
from matchcore.infra.store.sql import SqlTransport


def _mock_pool(rows):
	conn = MagicMock()
	conn.fetch = AsyncMock(return_value=rows)
	pool = MagicMock()
	pool.acquire.return_value.__aenter__.return_value = conn
	pool.acquire.return_value.__aexit__.return_value = False

	async def _getter():
		return pool

	return _getter, conn


def _rest(handler) -> RestTransport:
	client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="https://store.test/rest/v1")
	return RestTransport("https://store.test", api_key="anon-key", client=client)


# --- SQL ---------------------------------------------------------------------


@pytest.mark.asyncio
async def test_sql_select_renders_filters_and_order():
	getter, conn = _mock_pool([{"id": "a"}])
	transport = SqlTransport(getter)
	rows = await transport.select(
		"discovery_profiles",
		filters=[
			Filter("onboarding_completed", "eq", True),
			Filter("gender", "in", ["female"]),
			Filter("looking_for", "contains", ["male"]),
			Filter("id", "not_in", ["u1", "u2"]),
		],
		order=[Order("last_active_at", descending=True), Order("id")],
		limit=10,
		offset=20,
	)
	assert rows == [{"id": "a"}]
	sql, *params = conn.fetch.await_args.args
	assert sql == (
		'SELECT * FROM "discovery_profiles" WHERE "onboarding_completed" = $1 AND "gender" = ANY($2)'
		' AND "looking_for" @> $3 AND NOT ("id" = ANY($4))'
		' ORDER BY "last_active_at" DESC NULLS LAST, "id" ASC NULLS LAST LIMIT $5 OFFSET $6'
	)
	assert params == [True, ["female"], ["male"], ["u1", "u2"], 10, 20]


@pytest.mark.asyncio
async def test_sql_empty_in_filter_matches_nothing():
	getter, conn = _mock_pool([])
	await SqlTransport(getter).select("likes", columns=["id"], filters=[Filter("id", "in", [])])
	sql = conn.fetch.await_args.args[0]
	assert sql == 'SELECT "id" FROM "likes" WHERE FALSE'


@pytest.mark.asyncio
async def test_sql_single_returns_first_row_or_none():
	getter, _ = _mock_pool([])
	assert await SqlTransport(getter).select("matches", single=True) is None


@pytest.mark.asyncio
async def test_sql_insert_returns_rows():
	getter, conn = _mock_pool([{"id": "l1", "liker_id": "a", "liked_id": "b"}])
	rows = await SqlTransport(getter).insert("likes", [{"liker_id": "a", "liked_id": "b"}])
	assert rows[0]["id"] == "l1"
	sql, *params = conn.fetch.await_args.args
	assert sql == 'INSERT INTO "likes" ("liker_id", "liked_id") VALUES ($1, $2) RETURNING *'
	assert params == ["a", "b"]


@pytest.mark.asyncio
async def test_sql_upsert_ignore_duplicates():
	getter, conn = _mock_pool([])
	await SqlTransport(getter).upsert(
		"passes", [{"passer_id": "a", "passed_id": "b"}], on_conflict=["passer_id", "passed_id"], ignore_duplicates=True
	)
	sql = conn.fetch.await_args.args[0]
	assert sql.endswith('ON CONFLICT ("passer_id", "passed_id") DO NOTHING RETURNING *')


@pytest.mark.asyncio
async def test_sql_delete_requires_filters():
	getter, _ = _mock_pool([])
	with pytest.raises(ValueError):
		await SqlTransport(getter).delete("likes", filters=[])


@pytest.mark.asyncio
async def test_sql_rpc_scalar_and_set_returning():
	getter, conn = _mock_pool([{"result": True}])
	transport = SqlTransport(getter)
	assert await transport.rpc("check_mutual_like", {"user1_id": "a", "user2_id": "b"}) is True
	assert conn.fetch.await_args.args[0] == 'SELECT "check_mutual_like"(user1_id => $1, user2_id => $2) AS result'

	conn.fetch.return_value = [("a",), ("b",)]
	ids = await transport.rpc("excluded_user_ids", {"target_user_id": "a"}, set_returning=True)
	assert ids == ["a", "b"]
	assert conn.fetch.await_args.args[0] == 'SELECT * FROM "excluded_user_ids"(target_user_id => $1)'


def test_filter_rejects_unsafe_identifiers():
	with pytest.raises(ValueError):
		Filter("id; drop table likes", "eq", 1)
	with pytest.raises(ValueError):
		Filter("id", "like", "x")


# --- REST --------------------------------------------------------------------


def test_encode_filter_forms():
	assert encode_filter(Filter("age", "gte", 25)) == ("age", "gte.25")
	assert encode_filter(Filter("onboarding_completed", "eq", True)) == ("onboarding_completed", "eq.true")
	assert encode_filter(Filter("gender", "in", ["female", "male"])) == ("gender", 'in.("female","male")')
	assert encode_filter(Filter("id", "not_in", ["a"])) == ("id", 'not.in.("a")')
	assert encode_filter(Filter("looking_for", "contains", ["male"])) == ("looking_for", 'cs.{"male"}')
	assert encode_filter(Filter("deleted_at", "is", None)) == ("deleted_at", "is.null")
	assert encode_order([Order("last_active_at", descending=True), Order("id")]) == (
		"last_active_at.desc.nullslast,id.asc.nullslast"
	)


@pytest.mark.asyncio
async def test_rest_select_sends_session_headers():
	seen = {}

	def handler(request: httpx.Request) -> httpx.Response:
		seen["request"] = request
		return httpx.Response(200, json=[{"id": "p1"}])

	transport = _rest(handler)
	rows = await transport.select("discovery_profiles", token="jwt-1", filters=[Filter("age", "lte", 40)], limit=5)
	assert rows == [{"id": "p1"}]
	request = seen["request"]
	assert request.url.path == "/rest/v1/discovery_profiles"
	assert request.url.params["age"] == "lte.40"
	assert request.url.params["limit"] == "5"
	assert request.headers["Authorization"] == "Bearer jwt-1"
	assert request.headers["apikey"] == "anon-key"


@pytest.mark.asyncio
async def test_rest_requires_token():
	transport = _rest(lambda request: httpx.Response(200, json=[]))
	with pytest.raises(StoreError) as exc:
		await transport.select("likes", token=None)
	assert exc.value.status == 401
	assert exc.value.message == "No authentication token found"


@pytest.mark.asyncio
async def test_rest_single_no_rows_returns_none():
	def handler(request: httpx.Request) -> httpx.Response:
		assert request.headers["Accept"] == "application/vnd.pgrst.object+json"
		return httpx.Response(406, json={"code": "PGRST116", "message": "JSON object requested, multiple (or no) rows returned"})

	assert await _rest(handler).select("matches", token="jwt", single=True) is None


@pytest.mark.asyncio
async def test_rest_error_body_becomes_store_error():
	def handler(request: httpx.Request) -> httpx.Response:
		return httpx.Response(409, json={"code": "23505", "message": "duplicate key value", "details": "Key exists"})

	with pytest.raises(StoreError) as exc:
		await _rest(handler).insert("likes", [{"liker_id": "a", "liked_id": "b"}], token="jwt")
	assert exc.value.status == 409
	assert exc.value.code == "23505"
	assert exc.value.is_conflict


@pytest.mark.asyncio
async def test_rest_upsert_and_rpc_payloads():
	requests = []

	def handler(request: httpx.Request) -> httpx.Response:
		requests.append(request)
		if request.url.path.endswith("/rpc/excluded_user_ids"):
			return httpx.Response(200, json=[{"excluded_user_ids": "a"}, {"excluded_user_ids": "b"}])
		return httpx.Response(201, json=[])

	transport = _rest(handler)
	await transport.upsert("passes", [{"passer_id": UUID(int=1), "passed_id": UUID(int=2)}], token="jwt", on_conflict=["passer_id", "passed_id"], ignore_duplicates=True)
	ids = await transport.rpc("excluded_user_ids", {"target_user_id": "a"}, token="jwt", set_returning=True)

	upsert, rpc = requests
	assert upsert.headers["Prefer"] == "resolution=ignore-duplicates,return=representation"
	assert upsert.url.params["on_conflict"] == "passer_id,passed_id"
	assert json.loads(upsert.content) == [{"passer_id": str(UUID(int=1)), "passed_id": str(UUID(int=2))}]
	assert json.loads(rpc.content) == {"target_user_id": "a"}
	assert ids == ["a", "b"]


# --- client ------------------------------------------------------------------


class _Down:
	def __init__(self):
		self.calls = 0

	async def select(self, table, **kwargs):
		self.calls += 1
		raise ConnectionRefusedError("connection refused")


class _Rest:
	def __init__(self):
		self.tokens = []

	async def select(self, table, *, token, **kwargs):
		self.tokens.append(token)
		return [{"id": "from-rest"}]


@pytest.mark.asyncio
async def test_client_falls_back_with_session_token():
	async def no_sleep(_delay):
		return None

	primary, rest = _Down(), _Rest()
	client = PersistenceClient(primary, rest, RetryPolicy(max_retries=1, base_delay=0, timeout=1), sleep=no_sleep)
	result = await client.with_session("user-token").select("matches")
	assert result.data == [{"id": "from-rest"}]
	assert result.outcome.used_fallback
	assert primary.calls == 2
	assert rest.tokens == ["user-token"]
