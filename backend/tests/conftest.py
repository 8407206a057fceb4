import asyncio
import sys
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Iterable

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from fakeredis.aioredis import FakeRedis

# Ensure backend package is importable when tests run from repo root
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
	sys.path.insert(0, str(BACKEND_ROOT))

from matchcore.domain.matching.models import UserProfile
from matchcore.domain.matching.repository import MatchingRepository
from matchcore.infra import postgres
from matchcore.infra.store import Filter, Order, PersistenceClient, RetryPolicy, StoreError, set_client
from matchcore.main import app
from matchcore.settings import settings

NOW = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)

_UNIQUE = {
	"likes": ("liker_id", "liked_id"),
	"passes": ("passer_id", "passed_id"),
	"matches": ("user1_id", "user2_id"),
}


def _norm(value: Any) -> Any:
	if isinstance(value, uuid.UUID):
		return str(value)
	return value


def _matches(row: dict, flt: Filter) -> bool:
	current = _norm(row.get(flt.column))
	value = flt.value
	if flt.op == "eq":
		return current == _norm(value)
	if flt.op == "neq":
		return current != _norm(value)
	if flt.op == "in":
		return current in {_norm(v) for v in value}
	if flt.op == "not_in":
		return current not in {_norm(v) for v in value}
	if flt.op == "contains":
		wanted = value if isinstance(value, (list, tuple, set)) else [value]
		return set(wanted).issubset(set(current or []))
	if flt.op == "is":
		return current is value
	if current is None:
		return False
	if flt.op == "gt":
		return current > value
	if flt.op == "gte":
		return current >= value
	if flt.op == "lt":
		return current < value
	return current <= value


def _ordered(rows: list[dict], order: Iterable[Order]) -> list[dict]:
	for item in reversed(list(order)):
		present = [r for r in rows if r.get(item.column) is not None]
		missing = [r for r in rows if r.get(item.column) is None]
		present = sorted(present, key=lambda r: _norm(r[item.column]), reverse=item.descending)
		rows = present + missing if item.nulls_last else missing + present
	return rows


class InMemoryTransport:
	"""Store transport backed by dicts, enforcing the same unique keys as the schema."""

	def __init__(self) -> None:
		self.tables: dict[str, list[dict]] = {
			"discovery_profiles": [],
			"likes": [],
			"passes": [],
			"matches": [],
			"blocks": [],
			"notifications": [],
		}
		self.failures: dict[str, list[BaseException]] = {}
		self.calls: dict[str, int] = {}

	def fail(self, operation: str, *errors: BaseException) -> None:
		"""Queue errors raised by the next calls to ``operation`` (e.g. ``insert:notifications``)."""
		self.failures.setdefault(operation, []).extend(errors)

	async def _enter(self, operation: str) -> None:
		self.calls[operation] = self.calls.get(operation, 0) + 1
		await asyncio.sleep(0)
		queued = self.failures.get(operation)
		if queued:
			raise queued.pop(0)

	def rows(self, table: str) -> list[dict]:
		return self.tables[table]

	def _check_unique(self, table: str, record: dict) -> None:
		key = _UNIQUE.get(table)
		if table == "matches" and record["user1_id"] >= record["user2_id"]:
			raise StoreError("new row violates check constraint matches_pair_ordered", code="23514")
		if not key:
			return
		for existing in self.tables[table]:
			if all(_norm(existing[col]) == _norm(record[col]) for col in key):
				raise StoreError(f"duplicate key value violates unique constraint on {table}", code="23505")

	async def select(self, table, *, columns="*", filters=(), order=(), limit=None, offset=None, single=False):
		await self._enter(f"select:{table}")
		rows = [dict(r) for r in self.tables[table] if all(_matches(r, f) for f in filters)]
		rows = _ordered(rows, order)
		if offset:
			rows = rows[offset:]
		if single:
			return rows[0] if rows else None
		if limit is not None:
			rows = rows[:limit]
		return rows

	async def insert(self, table, rows):
		await self._enter(f"insert:{table}")
		created = []
		for row in rows:
			record = {key: _norm(value) for key, value in dict(row).items()}
			record.setdefault("id", str(uuid.uuid4()))
			record.setdefault("created_at", datetime.now(timezone.utc))
			self._check_unique(table, record)
			self.tables[table].append(record)
			created.append(dict(record))
		return created

	async def upsert(self, table, rows, *, on_conflict, ignore_duplicates=False):
		await self._enter(f"upsert:{table}")
		out = []
		for row in rows:
			record = {key: _norm(value) for key, value in dict(row).items()}
			existing = next(
				(r for r in self.tables[table] if all(_norm(r.get(c)) == record.get(c) for c in on_conflict)),
				None,
			)
			if existing is None:
				record.setdefault("id", str(uuid.uuid4()))
				self.tables[table].append(record)
				out.append(dict(record))
			elif not ignore_duplicates:
				existing.update(record)
				out.append(dict(existing))
		return out

	async def update(self, table, values, *, filters):
		await self._enter(f"update:{table}")
		changed = []
		for row in self.tables[table]:
			if all(_matches(row, f) for f in filters):
				row.update({key: _norm(value) for key, value in values.items()})
				changed.append(dict(row))
		return changed

	async def delete(self, table, *, filters):
		await self._enter(f"delete:{table}")
		keep, removed = [], []
		for row in self.tables[table]:
			(removed if all(_matches(row, f) for f in filters) else keep).append(row)
		self.tables[table] = keep
		return removed

	async def rpc(self, function, params=None, *, set_returning=False):
		await self._enter(f"rpc:{function}")
		params = {key: _norm(value) for key, value in (params or {}).items()}
		if function == "check_mutual_like":
			a, b = params["user1_id"], params["user2_id"]
			likes = {(r["liker_id"], r["liked_id"]) for r in self.tables["likes"]}
			return (a, b) in likes and (b, a) in likes
		if function == "excluded_user_ids":
			uid = params["target_user_id"]
			ids = {uid}
			ids |= {r["liked_id"] for r in self.tables["likes"] if r["liker_id"] == uid}
			ids |= {r["passed_id"] for r in self.tables["passes"] if r["passer_id"] == uid}
			ids |= {r["user2_id"] for r in self.tables["matches"] if r["user1_id"] == uid}
			ids |= {r["user1_id"] for r in self.tables["matches"] if r["user2_id"] == uid}
			ids |= {r["blocked_id"] for r in self.tables["blocks"] if r["blocker_id"] == uid}
			ids |= {r["blocker_id"] for r in self.tables["blocks"] if r["blocked_id"] == uid}
			return sorted(ids)
		raise StoreError(f"function {function} does not exist", code="42883")


def build_profile(**overrides: Any) -> dict:
	"""A discovery_profiles row for a fully onboarded user."""
	record = {
		"id": str(uuid.uuid4()),
		"name": "Sam",
		"age": 30,
		"gender": "male",
		"looking_for": ["female"],
		"location_lat": None,
		"location_lng": None,
		"wants_kids": None,
		"drinking": None,
		"smoking": None,
		"marijuana_use": None,
		"religion": None,
		"politics": None,
		"onboarding_completed": True,
		"last_active_at": NOW - timedelta(hours=1),
		"openness": 50,
		"conscientiousness": 50,
		"extraversion": 50,
		"agreeableness": 50,
		"neuroticism": 50,
		"traits": [],
		"interests": [],
		"values": [],
	}
	record.update(overrides)
	return record


async def _no_sleep(_delay: float) -> None:
	return None


@pytest.fixture
def now() -> datetime:
	return NOW


@pytest.fixture
def memory_store() -> InMemoryTransport:
	return InMemoryTransport()


@pytest.fixture
def store_client(memory_store) -> PersistenceClient:
	policy = RetryPolicy(max_retries=2, base_delay=0.0, timeout=1.0, enable_fallback=False)
	return PersistenceClient(memory_store, None, policy, sleep=_no_sleep)


@pytest.fixture(autouse=True)
def install_store_client(store_client):
	set_client(store_client)
	try:
		yield store_client
	finally:
		set_client(None)


@pytest.fixture
def repo(store_client) -> MatchingRepository:
	return MatchingRepository(store_client)


@pytest.fixture
def add_profile(memory_store):
	def _add(**overrides: Any) -> dict:
		record = build_profile(**overrides)
		memory_store.tables["discovery_profiles"].append(record)
		return record

	return _add


@pytest.fixture
def make_user():
	def _make(**overrides: Any) -> UserProfile:
		return UserProfile.from_record(build_profile(**overrides))

	return _make


@pytest_asyncio.fixture(autouse=True)
async def fake_redis():
	from matchcore.infra.redis import redis_client, set_redis_client
	original = redis_client._client
	client = FakeRedis(decode_responses=True)
	set_redis_client(client)
	try:
		yield client
	finally:
		set_redis_client(original)
		await client.flushall()


@pytest.fixture(autouse=True)
def patch_postgres(monkeypatch):
	async def _noop():
		return None

	monkeypatch.setattr(postgres, "init_pool", _noop)
	monkeypatch.setattr(postgres, "close_pool", _noop)


@pytest.fixture(autouse=True)
def force_test_settings():
	"""API tests authenticate via X-User-Id, which is only accepted in dev mode."""
	original_env = settings.environment
	original_rate = settings.swipe_rate_per_minute
	settings.environment = "dev"
	try:
		yield
	finally:
		settings.environment = original_env
		settings.swipe_rate_per_minute = original_rate


@pytest_asyncio.fixture
async def api_client():
	transport = ASGITransport(app=app)
	async with AsyncClient(transport=transport, base_url="http://testserver") as client:
		yield client
