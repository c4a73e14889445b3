from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from functools import wraps
from typing import Any, Callable, TypeVar

from django.conf import settings
from django.db import DEFAULT_DB_ALIAS, OperationalError, connections, transaction

from apps.common.exceptions import ConcurrentConflict

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

# serialization_failure, deadlock_detected
RETRYABLE_SQLSTATES = {"40001", "40P01"}


@contextmanager
def serializable_atomic(using: str | None = None):
    """
    ``transaction.atomic`` that runs the outermost block at SERIALIZABLE
    isolation on PostgreSQL. Nested blocks join the enclosing transaction.
    """
    alias = using or DEFAULT_DB_ALIAS
    connection = connections[alias]
    outermost = not connection.in_atomic_block
    with transaction.atomic(using=alias):
        if outermost and connection.vendor == "postgresql":
            with connection.cursor() as cursor:
                cursor.execute("SET TRANSACTION ISOLATION LEVEL SERIALIZABLE")
        yield


def is_retryable_conflict(exc: BaseException) -> bool:
    cause = exc.__cause__
    code = getattr(cause, "sqlstate", None) or getattr(cause, "pgcode", None)
    return code in RETRYABLE_SQLSTATES


def retry_on_conflict(
    max_attempts: int | None = None,
    delay: float | None = None,
    backoff_factor: float = 2.0,
) -> Callable[[F], F]:
    """
    Retry a transactional operation that lost a serialization race.

    Only serialization failures and deadlocks are retried. Once attempts run
    out a ``ConcurrentConflict`` is raised. Retrying is only meaningful when
    the wrapped call owns the outermost transaction.
    """

    def decorator(func: F) -> F:
        @wraps(func)
        def wrapper(*args, **kwargs):
            attempts = max_attempts or settings.BILLING["CONFLICT_RETRY_ATTEMPTS"]
            current_delay = delay if delay is not None else settings.BILLING["CONFLICT_RETRY_DELAY"]
            last_exception = None

            for attempt in range(attempts):
                try:
                    return func(*args, **kwargs)
                except OperationalError as exc:
                    if not is_retryable_conflict(exc):
                        raise
                    if connections[DEFAULT_DB_ALIAS].in_atomic_block:
                        # An enclosing transaction is already aborted.
                        raise ConcurrentConflict(str(exc)) from exc
                    last_exception = exc
                    if attempt == attempts - 1:
                        break
                    logger.warning(
                        "Transaction conflict (attempt %s/%s): %s",
                        attempt + 1,
                        attempts,
                        exc,
                        extra={
                            "function": func.__name__,
                            "attempt": attempt + 1,
                            "max_attempts": attempts,
                        },
                    )
                    time.sleep(current_delay)
                    current_delay *= backoff_factor

            logger.error(
                "Transaction conflict persisted after %s attempts in %s",
                attempts,
                func.__name__,
            )
            raise ConcurrentConflict(
                f"Concurrent update conflict after {attempts} attempts"
            ) from last_exception

        return wrapper

    return decorator
