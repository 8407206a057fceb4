"""Resilient persistence client: SQL primary, REST fallback, typed results."""

from .client import PersistenceClient, build_client, close_client, get_client, set_client  # noqa: F401
from .errors import ErrorKind, StoreError, classify_error  # noqa: F401
from .filters import Filter, Order  # noqa: F401
from .retry import RetryOutcome, RetryPolicy, StoreResult, with_retry, with_retry_and_fallback  # noqa: F401
