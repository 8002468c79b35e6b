"""
ledger_services.retry -- Bounded retry of operations that lost a race.

Responsibility:
    Re-run a whole operation (fresh session, fresh transaction) when it
    failed for a reason another attempt can fix: a lost idempotency insert
    race, or a database lock, deadlock or serialization failure.

Architecture position:
    Services.  Used only by ``LedgerCore``; kernel services never retry.

Invariants enforced:
    - At most ``max_attempts`` attempts, sleeping ``backoff_ms * attempt``
      between them.
    - Validation and conflict errors are never retried.
    - Exhaustion raises ``TransientContentionError`` chained to the last
      failure.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import TypeVar

from sqlalchemy.exc import OperationalError

from ledger_kernel.exceptions import IdempotencyRaceLostError, TransientContentionError
from ledger_kernel.logging_config import get_logger

logger = get_logger("services.retry")

T = TypeVar("T")

# SQLSTATEs: serialization_failure, deadlock_detected, lock_not_available
_RETRYABLE_PGCODES = frozenset({"40001", "40P01", "55P03"})

_RETRYABLE_MESSAGES = (
    "database is locked",
    "database table is locked",
    "deadlock detected",
    "could not serialize access",
    "lock timeout",
)


def is_transient(exc: BaseException) -> bool:
    """True for failures a fresh attempt can succeed after."""
    if isinstance(exc, IdempotencyRaceLostError):
        return True
    if isinstance(exc, OperationalError):
        pgcode = getattr(exc.orig, "pgcode", None)
        if pgcode in _RETRYABLE_PGCODES:
            return True
        message = str(exc.orig).lower()
        return any(fragment in message for fragment in _RETRYABLE_MESSAGES)
    return False


def run_with_retry(
    operation: str,
    attempt_fn: Callable[[], T],
    *,
    max_attempts: int,
    backoff_ms: int,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Call ``attempt_fn`` until it succeeds or a non-transient error escapes.

    Raises:
        TransientContentionError: Every attempt failed transiently.
        Any non-transient exception from ``attempt_fn`` unchanged.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return attempt_fn()
        except Exception as exc:
            if not is_transient(exc):
                raise
            if attempt >= max_attempts:
                logger.warning(
                    "contention_retries_exhausted",
                    extra={
                        "operation": operation,
                        "attempts": attempt,
                        "error_type": type(exc).__name__,
                    },
                )
                raise TransientContentionError(operation, attempt) from exc
            delay_ms = backoff_ms * attempt
            logger.warning(
                "contention_retry",
                extra={
                    "operation": operation,
                    "attempt": attempt,
                    "max_attempts": max_attempts,
                    "delay_ms": delay_ms,
                    "error_type": type(exc).__name__,
                },
            )
            if delay_ms:
                sleep(delay_ms / 1000)
