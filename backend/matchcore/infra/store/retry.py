"""Timeout, retry and fallback wrapper for store operations.

Every call site gets a ``StoreResult`` back. Failures travel in
``StoreResult.error``; only task cancellation escapes as an exception.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

from matchcore.infra.store.errors import ErrorKind, StoreError
from matchcore.obs import metrics as obs_metrics
from matchcore.settings import settings

T = TypeVar("T")

logger = logging.getLogger(__name__)

Operation = Callable[[], Awaitable[T]]
FallbackOperation = Callable[[Optional[str]], Awaitable[T]]
Sleep = Callable[[float], Awaitable[Any]]


@dataclass(frozen=True, slots=True)
class RetryPolicy:
	max_retries: int = 3
	base_delay: float = 0.1
	timeout: float = 8.0
	enable_fallback: bool = True

	@classmethod
	def from_settings(cls) -> "RetryPolicy":
		return cls(
			max_retries=max(0, settings.store_max_retries),
			base_delay=max(0.0, settings.store_base_delay_seconds),
			timeout=settings.store_timeout_seconds,
			enable_fallback=settings.store_enable_fallback and bool(settings.store_rest_url),
		)

	def delay_for(self, retry_number: int) -> float:
		"""Delay before retry ``retry_number`` (1-based)."""
		return self.base_delay * (2 ** (retry_number - 1))


@dataclass(slots=True)
class RetryOutcome:
	attempts: int = 0
	used_fallback: bool = False
	duration_ms: float = 0.0


@dataclass(slots=True)
class StoreResult(Generic[T]):
	data: Optional[T] = None
	error: Optional[StoreError] = None
	outcome: RetryOutcome = field(default_factory=RetryOutcome)

	@property
	def ok(self) -> bool:
		return self.error is None


async def _attempt(op: Callable[[], Awaitable[T]], timeout: float) -> T:
	if timeout and timeout > 0:
		return await asyncio.wait_for(op(), timeout=timeout)
	return await op()


def _normalise(exc: BaseException, timeout: float) -> StoreError:
	if isinstance(exc, asyncio.TimeoutError):
		return StoreError(f"operation timed out after {timeout}s", code="ETIMEDOUT", kind=ErrorKind.RETRYABLE)
	return StoreError.from_exception(exc)


async def with_retry(
	op: Operation[T],
	policy: RetryPolicy,
	*,
	name: str = "store",
	sleep: Sleep = asyncio.sleep,
) -> StoreResult[T]:
	"""Run ``op`` with a per-attempt timeout, retrying retryable failures."""

	started = time.perf_counter()
	outcome = RetryOutcome()
	last_error: Optional[StoreError] = None
	total_attempts = 1 + max(0, policy.max_retries)
	for attempt in range(1, total_attempts + 1):
		outcome.attempts = attempt
		try:
			data = await _attempt(op, policy.timeout)
		except asyncio.CancelledError:
			raise
		except Exception as exc:
			last_error = _normalise(exc, policy.timeout)
		else:
			obs_metrics.inc_store_attempt(name, "ok")
			outcome.duration_ms = (time.perf_counter() - started) * 1000
			return StoreResult(data=data, outcome=outcome)

		obs_metrics.inc_store_attempt(name, last_error.kind.value)
		if last_error.kind is not ErrorKind.RETRYABLE:
			logger.info(
				"store_abort",
				extra={"op": name, "attempt": attempt, "error_kind": last_error.kind.value, "error": last_error.message},
			)
			break
		if attempt >= total_attempts:
			obs_metrics.inc_store_exhausted(name)
			logger.warning(
				"store_retries_exhausted",
				extra={"op": name, "attempt": attempt, "error_kind": last_error.kind.value, "error": last_error.message},
			)
			break
		delay = policy.delay_for(attempt)
		obs_metrics.inc_store_retry(name, last_error.kind.value)
		logger.info(
			"store_retry",
			extra={
				"op": name,
				"attempt": attempt,
				"delay_ms": round(delay * 1000, 1),
				"error_kind": last_error.kind.value,
				"error": last_error.message,
			},
		)
		await sleep(delay)

	outcome.duration_ms = (time.perf_counter() - started) * 1000
	return StoreResult(error=last_error, outcome=outcome)


async def with_retry_and_fallback(
	primary: Operation[T],
	fallback: Optional[FallbackOperation[T]],
	policy: RetryPolicy,
	token: Optional[str],
	*,
	name: str = "store",
	sleep: Sleep = asyncio.sleep,
) -> StoreResult[T]:
	"""Retry ``primary``; hand over to ``fallback`` once retries are exhausted.

	The fallback only runs when the primary's last failure was retryable, so
	constraint violations and bad requests are never replayed through a
	second transport. It receives the caller's session token explicitly.
	"""

	result = await with_retry(primary, policy, name=name, sleep=sleep)
	if result.ok or fallback is None or not policy.enable_fallback:
		return result
	assert result.error is not None
	if result.error.kind is not ErrorKind.RETRYABLE:
		return result

	started = time.perf_counter()
	outcome = result.outcome
	outcome.used_fallback = True
	outcome.attempts += 1
	logger.warning("store_fallback", extra={"op": name, "attempt": outcome.attempts})
	try:
		data = await _attempt(lambda: fallback(token), policy.timeout)
	except asyncio.CancelledError:
		raise
	except Exception as exc:
		error = _normalise(exc, policy.timeout)
		obs_metrics.inc_store_fallback(name, "error")
		logger.error(
			"store_fallback_failed",
			extra={"op": name, "error_kind": error.kind.value, "error": error.message},
		)
		outcome.duration_ms += (time.perf_counter() - started) * 1000
		return StoreResult(error=error, outcome=outcome)
	obs_metrics.inc_store_fallback(name, "ok")
	outcome.duration_ms += (time.perf_counter() - started) * 1000
	return StoreResult(data=data, outcome=outcome)
