"""Error classification for store operations."""

from __future__ import annotations

import asyncio
import enum
import errno
import socket
from typing import Any, Optional

import httpx

RETRYABLE_STATUS = frozenset({408, 429, 500, 502, 503, 504})
NON_RETRYABLE_STATUS = frozenset({400, 401, 403, 404, 409, 422})

RETRYABLE_ERRNO = frozenset(
	{"ETIMEDOUT", "ECONNREFUSED", "ECONNRESET", "ECONNABORTED", "ENETUNREACH", "EHOSTUNREACH", "EPIPE", "EAI_AGAIN"}
)

# getaddrinfo codes overlap errno values on some platforms, so they get their own table
_EAI_NAMES = {
	getattr(socket, name): name
	for name in ("EAI_AGAIN", "EAI_FAIL", "EAI_NONAME", "EAI_NODATA", "EAI_SERVICE")
	if hasattr(socket, name)
}

# connection exception, serialization failure, deadlock, admin shutdown, too many connections
RETRYABLE_SQLSTATE_PREFIXES = ("08", "40001", "40P01", "57P01", "57P03", "53300")
# integrity, data, syntax/access rule, auth, PostgREST request errors
NON_RETRYABLE_SQLSTATE_PREFIXES = ("23", "22", "42", "28", "PGRST")

_RETRYABLE_MESSAGE_HINTS = ("timeout", "timed out", "network", "connection")

UNIQUE_VIOLATION = "23505"
FOREIGN_KEY_VIOLATION = "23503"


class ErrorKind(str, enum.Enum):
	RETRYABLE = "retryable"
	NON_RETRYABLE = "non_retryable"
	UNKNOWN = "unknown"


class StoreError(Exception):
	"""Normalised store failure carried inside a StoreResult."""

	def __init__(
		self,
		message: str,
		*,
		status: Optional[int] = None,
		code: Optional[str] = None,
		details: Any = None,
		kind: Optional[ErrorKind] = None,
	) -> None:
		super().__init__(message)
		self.message = message
		self.status = status
		self.code = code
		self.details = details
		self.kind = kind or classify_error(self)

	@classmethod
	def from_exception(cls, exc: BaseException) -> "StoreError":
		if isinstance(exc, StoreError):
			return exc
		code = _code_of(exc) or _errno_name(exc)
		status = getattr(exc, "status", None)
		if isinstance(exc, httpx.HTTPStatusError):
			status = exc.response.status_code
		message = str(exc) or exc.__class__.__name__
		return cls(message, status=status, code=code, kind=classify_error(exc))

	@property
	def is_conflict(self) -> bool:
		if self.code:
			return self.code == UNIQUE_VIOLATION
		return self.status == 409

	@property
	def is_missing_reference(self) -> bool:
		return self.code == FOREIGN_KEY_VIOLATION

	@property
	def retryable(self) -> bool:
		return self.kind is ErrorKind.RETRYABLE

	def to_dict(self) -> dict[str, Any]:
		return {
			"message": self.message,
			"status": self.status,
			"code": self.code,
			"kind": self.kind.value,
		}

	def __repr__(self) -> str:
		return f"StoreError({self.message!r}, status={self.status}, code={self.code}, kind={self.kind.value})"


def _status_of(error: BaseException) -> Optional[int]:
	status = getattr(error, "status", None)
	if isinstance(error, httpx.HTTPStatusError):
		status = error.response.status_code
	try:
		return int(status) if status is not None else None
	except (TypeError, ValueError):
		return None


def _code_of(error: BaseException) -> Optional[str]:
	code = getattr(error, "sqlstate", None) or getattr(error, "code", None)
	if code is None:
		return None
	return str(code)


def _errno_name(error: BaseException) -> Optional[str]:
	if not isinstance(error, OSError) or error.errno is None:
		return None
	if isinstance(error, socket.gaierror):
		return _EAI_NAMES.get(error.errno)
	return errno.errorcode.get(error.errno)


def classify_error(error: BaseException) -> ErrorKind:
	"""Sort a failure into retryable, non-retryable or unknown.

	Status codes win over SQLSTATE codes, which win over errno names and
	message hints. Anything unrecognised is reported as UNKNOWN; callers
	treat UNKNOWN like NON_RETRYABLE.
	"""

	if isinstance(error, (asyncio.TimeoutError, TimeoutError, httpx.TimeoutException)):
		return ErrorKind.RETRYABLE
	status = _status_of(error)
	if status is not None:
		if status in RETRYABLE_STATUS:
			return ErrorKind.RETRYABLE
		if status in NON_RETRYABLE_STATUS:
			return ErrorKind.NON_RETRYABLE
	code = _code_of(error)
	if code:
		upper = code.upper()
		if upper in RETRYABLE_ERRNO:
			return ErrorKind.RETRYABLE
		if upper.startswith(RETRYABLE_SQLSTATE_PREFIXES):
			return ErrorKind.RETRYABLE
		if upper.startswith(NON_RETRYABLE_SQLSTATE_PREFIXES):
			return ErrorKind.NON_RETRYABLE
	name = _errno_name(error)
	if name is not None and name in RETRYABLE_ERRNO:
		return ErrorKind.RETRYABLE
	if isinstance(error, (ConnectionError, httpx.TransportError)):
		return ErrorKind.RETRYABLE
	message = str(error).lower()
	if any(hint in message for hint in _RETRYABLE_MESSAGE_HINTS):
		return ErrorKind.RETRYABLE
	return ErrorKind.UNKNOWN
