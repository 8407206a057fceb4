"""Domain-level exceptions for discovery, swipes and matches."""

from __future__ import annotations

from typing import Optional

from matchcore.infra.rate_limit import RateLimitExceeded
from matchcore.infra.store.errors import ErrorKind, StoreError


class MatchingError(Exception):
    """Base class for matching feature errors."""

    reason: str = "unknown"

    def __init__(self, reason: str | None = None) -> None:
        super().__init__(reason or self.reason)
        if reason:
            self.reason = reason


class ValidationError(MatchingError):
    reason = "invalid_input"


class SelfSwipeError(ValidationError):
    reason = "self_swipe"


class ProfileNotFound(ValidationError):
    reason = "profile_not_found"


class InsufficientDataError(MatchingError):
    reason = "insufficient_data"


class ConflictError(MatchingError):
    reason = "conflict"


class NotificationError(MatchingError):
    reason = "notification_failed"


class StoreBackedError(MatchingError):
    """Carries the classified store failure that caused it."""

    def __init__(self, reason: str | None = None, *, error: Optional[StoreError] = None) -> None:
        super().__init__(reason)
        self.error = error


class TransientStoreError(StoreBackedError):
    reason = "store_unavailable"


class StoreFailure(StoreBackedError):
    reason = "store_failure"


def from_store_error(error: StoreError, *, operation: str) -> MatchingError:
    """Translate an already-classified store failure into a domain error."""
    # foreign key violation: the referenced user does not exist
    if error.is_missing_reference:
        return ValidationError("unknown_target")
    if error.is_conflict:
        return ConflictError(f"{operation}_conflict")
    if error.kind is ErrorKind.RETRYABLE:
        return TransientStoreError(f"{operation}_unavailable", error=error)
    return StoreFailure(f"{operation}_failed", error=error)


class SwipeRateLimitExceeded(RateLimitExceeded):
    """Raised when an actor swipes faster than the per-minute budget."""

    def __init__(self, reason: str = "swipe_rate", *, retry_after: int = 1) -> None:
        super().__init__(reason, retry_after=retry_after)
