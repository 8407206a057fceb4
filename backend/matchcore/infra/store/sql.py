"""Primary store transport: parameterised SQL over the asyncpg pool."""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Iterable, Mapping, Optional, Sequence

import asyncpg

from matchcore.infra.postgres import get_pool
from matchcore.infra.store.filters import Filter, Order, check_identifier

PoolGetter = Callable[[], Awaitable[asyncpg.pool.Pool]]

_COMPARISONS = {"eq": "=", "neq": "<>", "gt": ">", "gte": ">=", "lt": "<", "lte": "<="}


class _Params:
	def __init__(self) -> None:
		self.values: list[Any] = []

	def add(self, value: Any) -> str:
		self.values.append(value)
		return f"${len(self.values)}"


def _quote(name: str) -> str:
	return f'"{check_identifier(name)}"'


def _columns(columns: str | Sequence[str]) -> str:
	if isinstance(columns, str):
		if columns.strip() == "*":
			return "*"
		columns = [part.strip() for part in columns.split(",") if part.strip()]
	return ", ".join(_quote(col) for col in columns)


def _condition(flt: Filter, params: _Params) -> str:
	col = _quote(flt.column)
	if flt.op in _COMPARISONS:
		if flt.value is None:
			return f"{col} IS NULL" if flt.op == "eq" else f"{col} IS NOT NULL"
		return f"{col} {_COMPARISONS[flt.op]} {params.add(flt.value)}"
	if flt.op == "in":
		values = list(flt.value)
		if not values:
			return "FALSE"
		return f"{col} = ANY({params.add(values)})"
	if flt.op == "not_in":
		values = list(flt.value)
		if not values:
			return "TRUE"
		return f"NOT ({col} = ANY({params.add(values)}))"
	if flt.op == "contains":
		value = flt.value if isinstance(flt.value, (list, tuple)) else [flt.value]
		return f"{col} @> {params.add(list(value))}"
	# is
	if flt.value is None:
		return f"{col} IS NULL"
	return f"{col} IS {'TRUE' if flt.value else 'FALSE'}"


def _where(filters: Iterable[Filter], params: _Params) -> str:
	parts = [_condition(flt, params) for flt in filters]
	if not parts:
		return ""
	return " WHERE " + " AND ".join(parts)


def _order_by(order: Sequence[Order]) -> str:
	if not order:
		return ""
	parts = []
	for item in order:
		direction = "DESC" if item.descending else "ASC"
		nulls = "NULLS LAST" if item.nulls_last else "NULLS FIRST"
		parts.append(f"{_quote(item.column)} {direction} {nulls}")
	return " ORDER BY " + ", ".join(parts)


def _row_columns(rows: Sequence[Mapping[str, Any]]) -> list[str]:
	if not rows:
		raise ValueError("at least one row is required")
	columns = list(rows[0].keys())
	for row in rows[1:]:
		if list(row.keys()) != columns:
			raise ValueError("all rows must share the same columns")
	for col in columns:
		check_identifier(col)
	return columns


def _values_clause(rows: Sequence[Mapping[str, Any]], columns: Sequence[str], params: _Params) -> str:
	groups = []
	for row in rows:
		groups.append("(" + ", ".join(params.add(row[col]) for col in columns) + ")")
	return ", ".join(groups)


def _flatten(records: Sequence[asyncpg.Record]) -> list[Any]:
	if records and all(len(record) == 1 for record in records):
		return [record[0] for record in records]
	return [dict(record) for record in records]


class SqlTransport:
	"""Builds one statement per call and runs it on a pooled connection."""

	def __init__(self, pool_getter: PoolGetter = get_pool) -> None:
		self._pool_getter = pool_getter

	async def _fetch(self, sql: str, params: _Params) -> list[asyncpg.Record]:
		pool = await self._pool_getter()
		async with pool.acquire() as conn:
			return await conn.fetch(sql, *params.values)

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
	) -> Any:
		params = _Params()
		sql = f"SELECT {_columns(columns)} FROM {_quote(table)}{_where(filters, params)}{_order_by(order)}"
		if single:
			limit = 1
		if limit is not None:
			sql += f" LIMIT {params.add(int(limit))}"
		if offset:
			sql += f" OFFSET {params.add(int(offset))}"
		rows = [dict(record) for record in await self._fetch(sql, params)]
		if single:
			return rows[0] if rows else None
		return rows

	async def insert(self, table: str, rows: Sequence[Mapping[str, Any]]) -> list[dict[str, Any]]:
		columns = _row_columns(rows)
		params = _Params()
		sql = (
			f"INSERT INTO {_quote(table)} ({', '.join(_quote(c) for c in columns)}) "
			f"VALUES {_values_clause(rows, columns, params)} RETURNING *"
		)
		return [dict(record) for record in await self._fetch(sql, params)]

	async def upsert(
		self,
		table: str,
		rows: Sequence[Mapping[str, Any]],
		*,
		on_conflict: Sequence[str],
		ignore_duplicates: bool = False,
	) -> list[dict[str, Any]]:
		columns = _row_columns(rows)
		if not on_conflict:
			raise ValueError("upsert requires conflict columns")
		params = _Params()
		target = ", ".join(_quote(c) for c in on_conflict)
		updates = [c for c in columns if c not in on_conflict]
		if ignore_duplicates or not updates:
			action = "DO NOTHING"
		else:
			action = "DO UPDATE SET " + ", ".join(f"{_quote(c)} = EXCLUDED.{_quote(c)}" for c in updates)
		sql = (
			f"INSERT INTO {_quote(table)} ({', '.join(_quote(c) for c in columns)}) "
			f"VALUES {_values_clause(rows, columns, params)} ON CONFLICT ({target}) {action} RETURNING *"
		)
		return [dict(record) for record in await self._fetch(sql, params)]

	async def update(
		self,
		table: str,
		values: Mapping[str, Any],
		*,
		filters: Sequence[Filter],
	) -> list[dict[str, Any]]:
		if not filters:
			raise ValueError("update requires at least one filter")
		if not values:
			raise ValueError("update requires values")
		params = _Params()
		assignments = ", ".join(f"{_quote(col)} = {params.add(val)}" for col, val in values.items())
		sql = f"UPDATE {_quote(table)} SET {assignments}{_where(filters, params)} RETURNING *"
		return [dict(record) for record in await self._fetch(sql, params)]

	async def delete(self, table: str, *, filters: Sequence[Filter]) -> list[dict[str, Any]]:
		if not filters:
			raise ValueError("delete requires at least one filter")
		params = _Params()
		sql = f"DELETE FROM {_quote(table)}{_where(filters, params)} RETURNING *"
		return [dict(record) for record in await self._fetch(sql, params)]

	async def rpc(self, function: str, params: Optional[Mapping[str, Any]] = None, *, set_returning: bool = False) -> Any:
		bound = _Params()
		args = ", ".join(f"{check_identifier(key)} => {bound.add(val)}" for key, val in (params or {}).items())
		if set_returning:
			sql = f"SELECT * FROM {_quote(function)}({args})"
			return _flatten(await self._fetch(sql, bound))
		sql = f"SELECT {_quote(function)}({args}) AS result"
		records = await self._fetch(sql, bound)
		return records[0]["result"] if records else None
