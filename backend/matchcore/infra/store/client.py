"""Resilient persistence client used by every matching operation."""

from __future__ import annotations

import asyncio
from typing import Any, Mapping, Optional, Sequence

from matchcore.infra.store.filters import Filter, Order
from matchcore.infra.store.rest import RestTransport
from matchcore.infra.store.retry import RetryPolicy, Sleep, StoreResult, with_retry_and_fallback
from matchcore.infra.store.sql import SqlTransport
from matchcore.settings import settings


class PersistenceClient:
	"""Typed CRUD facade over the SQL transport with a REST fallback.

	Every method returns a ``StoreResult``; callers inspect ``.error`` instead
	of catching exceptions. The session token is only used by the fallback.
	"""

	def __init__(
		self,
		primary: SqlTransport,
		fallback: Optional[RestTransport] = None,
		policy: Optional[RetryPolicy] = None,
		*,
		token: Optional[str] = None,
		sleep: Sleep = asyncio.sleep,
	) -> None:
		self.primary = primary
		self.fallback = fallback
		self.policy = policy or RetryPolicy.from_settings()
		self.token = token
		self._sleep = sleep

	def with_session(self, token: Optional[str]) -> "PersistenceClient":
		"""Return a client bound to the caller's in-memory session token."""
		return PersistenceClient(self.primary, self.fallback, self.policy, token=token, sleep=self._sleep)

	async def _run(self, name: str, primary, fallback) -> StoreResult[Any]:
		return await with_retry_and_fallback(
			primary,
			fallback if self.fallback is not None else None,
			self.policy,
			self.token,
			name=name,
			sleep=self._sleep,
		)

	async def select(
		self,
		table: str,
		*,
		columns: str | Sequence[str] = "*",
		filters: Sequence[Filter] = (),
		order: Sequence[Order] = (),
		limit: Optional[int] = None,
		offset: Optional[int] = None,
		single: bool = False,
	) -> StoreResult[Any]:
		kwargs = dict(columns=columns, filters=filters, order=order, limit=limit, offset=offset, single=single)
		return await self._run(
			f"select:{table}",
			lambda: self.primary.select(table, **kwargs),
			lambda token: self.fallback.select(table, token=token, **kwargs),
		)

	async def insert(self, table: str, rows: Mapping[str, Any] | Sequence[Mapping[str, Any]]) -> StoreResult[list[dict[str, Any]]]:
		batch = [rows] if isinstance(rows, Mapping) else list(rows)
		return await self._run(
			f"insert:{table}",
			lambda: self.primary.insert(table, batch),
			lambda token: self.fallback.insert(table, batch, token=token),
		)

	async def upsert(
		self,
		table: str,
		rows: Mapping[str, Any] | Sequence[Mapping[str, Any]],
		*,
		on_conflict: Sequence[str],
		ignore_duplicates: bool = False,
	) -> StoreResult[list[dict[str, Any]]]:
		batch = [rows] if isinstance(rows, Mapping) else list(rows)
		return await self._run(
			f"upsert:{table}",
			lambda: self.primary.upsert(table, batch, on_conflict=on_conflict, ignore_duplicates=ignore_duplicates),
			lambda token: self.fallback.upsert(
				table, batch, token=token, on_conflict=on_conflict, ignore_duplicates=ignore_duplicates
			),
		)

	async def update(
		self,
		table: str,
		values: Mapping[str, Any],
		*,
		filters: Sequence[Filter],
	) -> StoreResult[list[dict[str, Any]]]:
		return await self._run(
			f"update:{table}",
			lambda: self.primary.update(table, values, filters=filters),
			lambda token: self.fallback.update(table, values, token=token, filters=filters),
		)

	async def delete(self, table: str, *, filters: Sequence[Filter]) -> StoreResult[list[dict[str, Any]]]:
		return await self._run(
			f"delete:{table}",
			lambda: self.primary.delete(table, filters=filters),
			lambda token: self.fallback.delete(table, token=token, filters=filters),
		)

	async def rpc(
		self,
		function: str,
		params: Optional[Mapping[str, Any]] = None,
		*,
		set_returning: bool = False,
	) -> StoreResult[Any]:
		return await self._run(
			f"rpc:{function}",
			lambda: self.primary.rpc(function, params, set_returning=set_returning),
			lambda token: self.fallback.rpc(function, params, token=token, set_returning=set_returning),
		)


_client: Optional[PersistenceClient] = None


def build_client() -> PersistenceClient:
	fallback = None
	if settings.store_rest_url:
		fallback = RestTransport(
			settings.store_rest_url,
			api_key=settings.store_api_key,
			timeout=settings.store_timeout_seconds,
		)
	return PersistenceClient(SqlTransport(), fallback, RetryPolicy.from_settings())


def get_client() -> PersistenceClient:
	global _client
	if _client is None:
		_client = build_client()
	return _client


def set_client(client: Optional[PersistenceClient]) -> None:
	global _client
	_client = client


async def close_client() -> None:
	global _client
	if _client is not None and _client.fallback is not None:
		await _client.fallback.aclose()
	_client = None
