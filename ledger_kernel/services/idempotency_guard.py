"""
IdempotencyGuard -- durable deduplication of retried mutating requests.

Responsibility:
    Remembers, per company, which ``(operation_kind, key)`` pairs have
    already produced a result, so that a retried request (after a timeout,
    a process restart or a load-balancer retry) returns the original result
    instead of executing its side effects again.

Architecture position:
    Kernel > Services.  Called first and last by every mutating operation:
    ``lookup`` before validation, ``claim`` inside the same database
    transaction as the side effect it guards.

Invariants enforced:
    - Check-and-set is atomic: ``claim`` relies on the unique constraint
      uq_idempotency_operation_key, never on a read-then-write.
    - A key reused for a different request (different payload hash) is a
      conflict, not a replay.
    - Expired records are treated as absent and purged on sight.

Failure modes:
    - IdempotencyKeyConflictError on payload mismatch.
    - IdempotencyRaceLostError if the unique insert fails but the winning
      record is not yet visible; the operation is retried by LedgerCore.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ledger_kernel.domain.clock import Clock
from ledger_kernel.domain.dtos import IdempotentResult
from ledger_kernel.exceptions import (
    IdempotencyKeyConflictError,
    IdempotencyRaceLostError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.idempotency import IdempotencyRecord
from ledger_kernel.services.base import BaseService

logger = get_logger("services.idempotency")

DEFAULT_TTL = timedelta(hours=72)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; every stored timestamp is UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class IdempotencyGuard(BaseService[IdempotencyRecord]):
    """
    Lookup-or-insert over the idempotency record table.

    Contract:
        ``lookup`` returns the prior result for a live key (or None).
        ``claim`` inserts the key and returns None when this caller now owns
        it, or the winner's result when a concurrent caller got there first.

    Non-goals:
        Does not store result payloads.  Callers re-read the resulting
        record by id, so a replay always reflects current state (e.g. an
        invoice's later status).
    """

    def __init__(
        self,
        session: Session,
        company_id: UUID,
        clock: Clock | None = None,
        ttl: timedelta = DEFAULT_TTL,
    ):
        super().__init__(session, company_id, clock)
        self.ttl = ttl

    def _find(self, operation_kind: str, key: str) -> IdempotencyRecord | None:
        return self.session.execute(
            select(IdempotencyRecord).where(
                IdempotencyRecord.company_id == self.company_id,
                IdempotencyRecord.operation_kind == operation_kind,
                IdempotencyRecord.idempotency_key == key,
            )
        ).scalar_one_or_none()

    def lookup(
        self,
        operation_kind: str,
        key: str,
        request_hash: str | None = None,
    ) -> IdempotentResult | None:
        """
        Return the recorded result for ``key``, if any.

        Raises:
            IdempotencyKeyConflictError: The key was used for a different
                request (only checked when ``request_hash`` is given).
        """
        record = self._find(operation_kind, key)
        if record is None:
            return None

        if _as_utc(record.expires_at) <= self.clock.now():
            logger.info(
                "idempotency_record_expired",
                extra={"operation_kind": operation_kind, "key": key},
            )
            self.session.delete(record)
            self.session.flush()
            return None

        if request_hash is not None and record.request_hash != request_hash:
            logger.warning(
                "idempotency_key_conflict",
                extra={
                    "operation_kind": operation_kind,
                    "key": key,
                    "expected_hash": record.request_hash,
                    "received_hash": request_hash,
                },
            )
            raise IdempotencyKeyConflictError(
                operation_kind, key, record.request_hash, request_hash
            )

        logger.info(
            "idempotent_replay",
            extra={
                "operation_kind": operation_kind,
                "key": key,
                "result_type": record.result_type,
                "result_id": str(record.result_id),
            },
        )
        return IdempotentResult(
            operation_kind=record.operation_kind,
            idempotency_key=record.idempotency_key,
            result_type=record.result_type,
            result_id=record.result_id,
            request_hash=record.request_hash,
        )

    def claim(
        self,
        operation_kind: str,
        key: str,
        request_hash: str,
        result_type: str,
        result_id: UUID,
        *,
        actor_id: UUID,
    ) -> IdempotentResult | None:
        """
        Atomically record ``key`` as producing ``result_id``.

        The insert runs in a savepoint so that losing the race leaves the
        caller's transaction usable for reading the winner's record.

        Returns:
            None if the key is now owned by this caller, otherwise the
            result recorded by the concurrent winner.

        Raises:
            IdempotencyRaceLostError: Insert lost but the winner is not
                visible yet.
            IdempotencyKeyConflictError: Winner recorded a different request.
        """
        record = IdempotencyRecord(
            company_id=self.company_id,
            operation_kind=operation_kind,
            idempotency_key=key,
            request_hash=request_hash,
            result_type=result_type,
            result_id=result_id,
            expires_at=self.clock.now() + self.ttl,
            created_by_id=actor_id,
        )
        try:
            with self.session.begin_nested():
                self.session.add(record)
                self.session.flush()
        except IntegrityError:
            logger.warning(
                "concurrent_insert_conflict",
                extra={"operation_kind": operation_kind, "key": key},
            )
            winner = self.lookup(operation_kind, key, request_hash)
            if winner is None:
                raise IdempotencyRaceLostError(operation_kind, key) from None
            return winner

        logger.debug(
            "idempotency_key_claimed",
            extra={"operation_kind": operation_kind, "key": key},
        )
        return None

    def purge_expired(self) -> int:
        """Delete every expired record of the company.  Returns the count."""
        now = self.clock.now()
        records = self.session.execute(
            select(IdempotencyRecord).where(
                IdempotencyRecord.company_id == self.company_id,
            )
        ).scalars().all()
        purged = 0
        for record in records:
            if _as_utc(record.expires_at) <= now:
                self.session.delete(record)
                purged += 1
        self.session.flush()
        logger.info("idempotency_records_purged", extra={"count": purged})
        return purged
