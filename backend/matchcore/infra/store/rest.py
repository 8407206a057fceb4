"""Secondary store transport: PostgREST-style HTTP calls made with httpx.

Used only after the primary SQL transport has exhausted its retries. It never
touches the asyncpg pool and authenticates with the caller's session token.
"""

from __future__ import annotations

import json
from datetime import date, datetime
from typing import Any, Mapping, Optional, Sequence
from uuid import UUID

import httpx

from matchcore.infra.store.errors import StoreError
from matchcore.infra.store.filters import Filter, Order, check_identifier

OBJECT_MEDIA_TYPE = "application/vnd.pgrst.object+json"
NO_ROWS_CODE = "PGRST116"

_SIMPLE_OPS = {"eq": "eq", "neq": "neq", "gt": "gt", "gte": "gte", "lt": "lt", "lte": "lte"}


def _json_default(value: Any) -> Any:
	if isinstance(value, (datetime, date)):
		return value.isoformat()
	if isinstance(value, UUID):
		return str(value)
	if isinstance(value, (set, frozenset, tuple)):
		return list(value)
	raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _literal(value: Any) -> str:
	if value is None:
		return "null"
	if isinstance(value, bool):
		return "true" if value else "false"
	if isinstance(value, (datetime, date)):
		return value.isoformat()
	return str(value)


def _list_literal(values: Sequence[Any]) -> str:
	quoted = []
	for value in values:
		text = _literal(value).replace("\\", "\\\\").replace('"', '\\"')
		quoted.append(f'"{text}"')
	return ",".join(quoted)


def encode_filter(flt: Filter) -> tuple[str, str]:
	"""Render a filter as a PostgREST ``column=op.value`` query pair."""

	if flt.op in _SIMPLE_OPS:
		if flt.value is None:
			return flt.column, "is.null" if flt.op == "eq" else "not.is.null"
		return flt.column, f"{_SIMPLE_OPS[flt.op]}.{_literal(flt.value)}"
	if flt.op == "in":
		return flt.column, f"in.({_list_literal(list(flt.value))})"
	if flt.op == "not_in":
		return flt.column, f"not.in.({_list_literal(list(flt.value))})"
	if flt.op == "contains":
		value = flt.value if isinstance(flt.value, (list, tuple, set, frozenset)) else [flt.value]
		return flt.column, "cs.{" + _list_literal(list(value)) + "}"
	return flt.column, f"is.{_literal(flt.value)}"


def encode_order(order: Sequence[Order]) -> str:
	parts = []
	for item in order:
		direction = "desc" if item.descending else "asc"
		nulls = "nullslast" if item.nulls_last else "nullsfirst"
		parts.append(f"{item.column}.{direction}.{nulls}")
	return ",".join(parts)


def _columns(columns: str | Sequence[str]) -> str:
	if isinstance(columns, str):
		return columns.replace(" ", "") or "*"
	return ",".join(check_identifier(col) for col in columns)


def _error_from_response(response: httpx.Response) -> StoreError:
	code: Optional[str] = None
	details: Any = None
	message = response.reason_phrase or f"HTTP {response.status_code}"
	try:
		body = response.json()
	except ValueError:
		body = None
	if isinstance(body, dict):
		code = body.get("code")
		message = body.get("message") or message
		details = body.get("details") or body.get("hint")
	return StoreError(message, status=response.status_code, code=code, details=details)


class RestTransport:
	"""Direct HTTP transport with the same operations as ``SqlTransport``.

	Every call takes ``token`` explicitly; the transport holds no session.
	"""

	def __init__(
		self,
		base_url: str,
		*,
		api_key: Optional[str] = None,
		timeout: float = 8.0,
		client: Optional[httpx.AsyncClient] = None,
	) -> None:
		self.base_url = base_url.rstrip("/")
		self.api_key = api_key
		self._timeout = timeout
		self._client = client
		self._owns_client = client is None

	def _http(self) -> httpx.AsyncClient:
		if self._client is None:
			self._client = httpx.AsyncClient(base_url=f"{self.base_url}/rest/v1", timeout=self._timeout)
		return self._client

	async def aclose(self) -> None:
		if self._client is not None and self._owns_client:
			await self._client.aclose()
			self._client = None

	def _headers(self, token: Optional[str], *, prefer: Optional[str] = None, accept: Optional[str] = None) -> dict[str, str]:
		if not token:
			raise StoreError("No authentication token found", status=401)
		headers = {
			"Authorization": f"Bearer {token}",
			"Content-Type": "application/json",
			"Accept": accept or "application/json",
		}
		if self.api_key:
			headers["apikey"] = self.api_key
		if prefer:
			headers["Prefer"] = prefer
		return headers

	async def _send(
		self,
		method: str,
		path: str,
		token: Optional[str],
		*,
		params: Optional[list[tuple[str, str]]] = None,
		payload: Any = None,
		prefer: Optional[str] = None,
		accept: Optional[str] = None,
	) -> httpx.Response:
		headers = self._headers(token, prefer=prefer, accept=accept)
		content = json.dumps(payload, default=_json_default) if payload is not None else None
		response = await self._http().request(method, path, params=params, content=content, headers=headers)
		return response

	@staticmethod
	def _body(response: httpx.Response) -> Any:
		if not response.is_success:
			raise _error_from_response(response)
		if not response.content:
			return None
		return response.json()

	async def select(
		self,
		table: str,
		*,
		token: Optional[str],
		columns: str | Sequence[str] = "*",
		filters: Sequence[Filter] = (),
		order: Sequence[Order] = (),
		limit: Optional[int] = None,
		offset: Optional[int] = None,
		single: bool = False,
	) -> Any:
		params = [("select", _columns(columns))]
		params.extend(encode_filter(flt) for flt in filters)
		if order:
			params.append(("order", encode_order(order)))
		if single:
			limit = 1
		if limit is not None:
			params.append(("limit", str(int(limit))))
		if offset:
			params.append(("offset", str(int(offset))))
		response = await self._send(
			"GET",
			f"/{check_identifier(table)}",
			token,
			params=params,
			accept=OBJECT_MEDIA_TYPE if single else None,
		)
		if single and response.status_code == 406:
			error = _error_from_response(response)
			if error.code == NO_ROWS_CODE:
				return None
			raise error
		body = self._body(response)
		if single:
			return body
		return list(body or [])

	async def insert(self, table: str, rows: Sequence[Mapping[str, Any]], *, token: Optional[str]) -> list[dict[str, Any]]:
		response = await self._send(
			"POST",
			f"/{check_identifier(table)}",
			token,
			payload=[dict(row) for row in rows],
			prefer="return=representation",
		)
		return list(self._body(response) or [])

	async def upsert(
		self,
		table: str,
		rows: Sequence[Mapping[str, Any]],
		*,
		token: Optional[str],
		on_conflict: Sequence[str],
		ignore_duplicates: bool = False,
	) -> list[dict[str, Any]]:
		resolution = "ignore-duplicates" if ignore_duplicates else "merge-duplicates"
		response = await self._send(
			"POST",
			f"/{check_identifier(table)}",
			token,
			params=[("on_conflict", ",".join(check_identifier(c) for c in on_conflict))],
			payload=[dict(row) for row in rows],
			prefer=f"resolution={resolution},return=representation",
		)
		return list(self._body(response) or [])

	async def update(
		self,
		table: str,
		values: Mapping[str, Any],
		*,
		token: Optional[str],
		filters: Sequence[Filter],
	) -> list[dict[str, Any]]:
		if not filters:
			raise ValueError("update requires at least one filter")
		response = await self._send(
			"PATCH",
			f"/{check_identifier(table)}",
			token,
			params=[encode_filter(flt) for flt in filters],
			payload=dict(values),
			prefer="return=representation",
		)
		return list(self._body(response) or [])

	async def delete(self, table: str, *, token: Optional[str], filters: Sequence[Filter]) -> list[dict[str, Any]]:
		if not filters:
			raise ValueError("delete requires at least one filter")
		response = await self._send(
			"DELETE",
			f"/{check_identifier(table)}",
			token,
			params=[encode_filter(flt) for flt in filters],
			prefer="return=representation",
		)
		return list(self._body(response) or [])

	async def rpc(
		self,
		function: str,
		params: Optional[Mapping[str, Any]] = None,
		*,
		token: Optional[str],
		set_returning: bool = False,
	) -> Any:
		response = await self._send(
			"POST",
			f"/rpc/{check_identifier(function)}",
			token,
			payload=dict(params or {}),
		)
		body = self._body(response)
		if set_returning:
			rows = list(body or [])
			if rows and all(isinstance(row, dict) and len(row) == 1 for row in rows):
				return [next(iter(row.values())) for row in rows]
			return rows
		return body
