"""JSON logging for the matching service.

Every record carries the service identity plus whatever request context the
HTTP middleware bound (request id, route template and acting user). Extra
fields are sanitised: credentials, store DSNs and coordinates are redacted,
long strings and collections are clipped.
"""

from __future__ import annotations

import json
import logging
import random
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

from matchcore.settings import settings

CONTEXT_FIELDS = ("request_id", "route", "actor_id")

_CONTEXT: ContextVar[Mapping[str, str]] = ContextVar("matchcore_log_context", default={})

_REDACTED_KEYS = (
	"token",
	"secret",
	"authorization",
	"password",
	"dsn",
	"latitude",
	"longitude",
	"location_lat",
	"location_lng",
)

_MAX_STRING = 256
_MAX_ITEMS = 10

# attributes every LogRecord has; anything else came in through ``extra=``
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}


def bind_context(**fields: Optional[str]) -> Token:
	"""Layer request fields over the current context. Unknown names raise TypeError."""
	unknown = set(fields) - set(CONTEXT_FIELDS)
	if unknown:
		raise TypeError(f"unknown log context fields: {sorted(unknown)}")
	merged = dict(_CONTEXT.get())
	merged.update({key: value for key, value in fields.items() if value})
	return _CONTEXT.set(merged)


def reset_context(token: Token) -> None:
	_CONTEXT.reset(token)


def log_context() -> Mapping[str, str]:
	return _CONTEXT.get()


def current_request_id() -> Optional[str]:
	return _CONTEXT.get().get("request_id")


def _clip(value: Any) -> Any:
	if isinstance(value, str):
		return value if len(value) <= _MAX_STRING else f"{value[:_MAX_STRING]}…"
	if isinstance(value, Mapping):
		items = list(value.items())
		clipped = {str(key): _clean(str(key), nested) for key, nested in items[:_MAX_ITEMS]}
		if len(items) > _MAX_ITEMS:
			clipped["…"] = f"+{len(items) - _MAX_ITEMS} keys"
		return clipped
	if isinstance(value, (list, tuple, set, frozenset)):
		values = [_clip(item) for item in value]
		return values if len(values) <= _MAX_ITEMS else values[:_MAX_ITEMS] + ["…"]
	if isinstance(value, (int, float, bool)) or value is None:
		return value
	return str(value)


def _clean(key: str, value: Any) -> Any:
	lowered = key.lower()
	if any(marker in lowered for marker in _REDACTED_KEYS):
		return "[redacted]"
	return _clip(value)


class JSONLogFormatter(logging.Formatter):
	def format(self, record: logging.LogRecord) -> str:  # noqa: A003
		payload: Dict[str, Any] = {
			"ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
			"level": record.levelname.lower(),
			"msg": record.getMessage(),
			"logger": record.name,
			"service": settings.service_name,
			"env": settings.environment,
			"commit": settings.git_commit,
		}
		payload.update(_CONTEXT.get())
		if record.exc_info:
			payload["exc_info"] = self.formatException(record.exc_info)
		for key, value in record.__dict__.items():
			if key in _RECORD_ATTRS or key in payload:
				continue
			payload[key] = _clean(key, value)
		return json.dumps(payload, separators=(",", ":"), default=str)


class InfoSampler(logging.Filter):
	"""Keep a fraction of INFO records; other levels always pass."""

	def __init__(self, rate: Optional[float] = None) -> None:
		super().__init__()
		self.rate = settings.obs_log_sampling_rate_info if rate is None else rate

	def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
		if record.levelno != logging.INFO or self.rate >= 1.0:
			return True
		return random.random() < max(0.0, self.rate)


def configure_logging() -> logging.Logger:
	root = logging.getLogger()
	root.handlers.clear()
	handler = logging.StreamHandler()
	handler.setFormatter(JSONLogFormatter())
	handler.addFilter(InfoSampler())
	root.addHandler(handler)
	root.setLevel(settings.obs_log_level)
	return logging.getLogger("matchcore")
