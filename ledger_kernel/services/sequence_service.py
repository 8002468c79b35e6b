"""
SequenceService -- per-company monotonic sequence allocation via locked
counter rows.

Responsibility:
    Hands out strictly increasing numbers for ledger transactions.  The
    counter row for a company is locked with ``SELECT ... FOR UPDATE`` for
    the rest of the caller's transaction, which also makes it the point at
    which concurrent posts for one company serialize.

Invariants enforced:
    - Monotonic and gap-free: the locked counter row is the only source of
      the next value.  MAX(seq)+1 is never used.
    - Transactional: an increment is visible only after the caller commits;
      a rollback returns the value.

Failure modes:
    - IntegrityError when two writers create the same counter row at once;
      handled by a savepoint rollback and re-read.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.sequence import SequenceCounter

logger = get_logger("services.sequence")


class SequenceService:
    """
    Transactional sequence numbers scoped to one company.

    Non-goals:
        Does NOT call ``session.commit()``; the caller controls boundaries.
    """

    LEDGER_TRANSACTION = "ledger_transaction"

    def __init__(self, session: Session, company_id: UUID):
        self._session = session
        self._company_id = company_id

    def _locked_counter(self, sequence_name: str) -> SequenceCounter | None:
        return self._session.execute(
            select(SequenceCounter)
            .where(
                SequenceCounter.company_id == self._company_id,
                SequenceCounter.name == sequence_name,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def next_value(self, sequence_name: str) -> int:
        """
        Lock the counter row (creating it on first use) and increment it.

        Postconditions:
            - Returns a value > 0, strictly greater than any value
              previously returned for this company and name.
            - The counter row stays locked until the transaction ends.
        """
        counter = self._locked_counter(sequence_name)

        if counter is None:
            savepoint = self._session.begin_nested()
            try:
                counter = SequenceCounter(
                    company_id=self._company_id,
                    name=sequence_name,
                    current_value=1,
                )
                self._session.add(counter)
                self._session.flush()
                savepoint.commit()
                logger.debug(
                    "sequence_allocated",
                    extra={"sequence_name": sequence_name, "value": 1},
                )
                return 1
            except IntegrityError:
                logger.debug(
                    "sequence_counter_race_retry",
                    extra={"sequence_name": sequence_name},
                )
                savepoint.rollback()
                counter = self._locked_counter(sequence_name)
                if counter is None:
                    raise

        counter.current_value += 1
        self._session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": counter.current_value},
        )
        return counter.current_value

    def current_value(self, sequence_name: str) -> int | None:
        counter = self._session.execute(
            select(SequenceCounter).where(
                SequenceCounter.company_id == self._company_id,
                SequenceCounter.name == sequence_name,
            )
        ).scalar_one_or_none()
        return counter.current_value if counter else None
