"""
PeriodLock -- accounting period calendar and lock state.

Responsibility:
    Maintains the per-company calendar of accounting periods and their
    locked/unlocked state, and answers "is this date locked?".  It performs
    no ledger mutation; LedgerEngine asks ``assert_date_open`` at post time.

Architecture position:
    Kernel > Services.  Called by LedgerEngine (post and void) and by
    LedgerCore for the administrative lock/unlock operations.

Invariants enforced:
    - Periods never overlap and leave no gaps: a new period must abut the
      existing calendar at either end.
    - Every toggle carries a non-empty reason, records who/when on the
      period row, and appends a PeriodLockEvent.
    - Authorization (owner-level only) is the caller's concern.

Failure modes:
    - MissingReasonError, PeriodAlreadyLockedError, PeriodNotLockedError.
    - PeriodOverlapError / PeriodGapError / InvalidPeriodError on create.
    - PeriodLockedError from ``assert_date_open``.
"""

from datetime import date, timedelta
from uuid import UUID

from sqlalchemy import select

from ledger_kernel.domain.dtos import PeriodInfo
from ledger_kernel.exceptions import (
    InvalidPeriodError,
    MissingReasonError,
    PeriodAlreadyLockedError,
    PeriodGapError,
    PeriodLockedError,
    PeriodNotFoundError,
    PeriodNotLockedError,
    PeriodOverlapError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.accounting_period import (
    AccountingPeriod,
    PeriodLockAction,
    PeriodLockEvent,
)
from ledger_kernel.services.base import BaseService

logger = get_logger("services.period_lock")

ONE_DAY = timedelta(days=1)


class PeriodLock(BaseService[AccountingPeriod]):
    """
    Lock/unlock accounting periods and query lock state by date.

    Guarantees:
        - Returns PeriodInfo DTOs, never ORM rows.
        - Flush-only.
    """

    # ------------------------------------------------------------------
    # Calendar
    # ------------------------------------------------------------------

    def create_period(
        self,
        name: str,
        start_date: date,
        end_date: date,
        *,
        actor_id: UUID,
    ) -> PeriodInfo:
        """
        Add a period to the company calendar.

        Preconditions:
            start_date <= end_date.  When periods exist, the new one begins
            the day after the latest end or ends the day before the earliest
            start.

        Raises:
            InvalidPeriodError, PeriodOverlapError, PeriodGapError
        """
        if start_date > end_date:
            raise InvalidPeriodError(start_date, end_date, "start is after end")
        if not name or not name.strip():
            raise InvalidPeriodError(start_date, end_date, "name is required")

        existing = self._company_periods(for_update=True)
        for period in existing:
            if period.start_date <= end_date and start_date <= period.end_date:
                raise PeriodOverlapError(start_date, end_date, period.name)

        if existing:
            earliest = min(p.start_date for p in existing)
            latest = max(p.end_date for p in existing)
            if start_date != latest + ONE_DAY and end_date != earliest - ONE_DAY:
                raise PeriodGapError(start_date, end_date)

        period = AccountingPeriod(
            company_id=self.company_id,
            name=name.strip(),
            start_date=start_date,
            end_date=end_date,
            is_locked=False,
            created_by_id=actor_id,
        )
        self.session.add(period)
        self.session.flush()

        logger.info(
            "period_created",
            extra={
                "period_id": str(period.id),
                "period_name": period.name,
                "start_date": start_date.isoformat(),
                "end_date": end_date.isoformat(),
            },
        )
        return PeriodInfo.from_model(period)

    # ------------------------------------------------------------------
    # Lock toggles
    # ------------------------------------------------------------------

    def lock(self, period_id: UUID, reason: str, *, actor_id: UUID) -> PeriodInfo:
        reason = self._require_reason(reason, "lock a period")
        period = self._get_period_for_update(period_id)
        if period.is_locked:
            raise PeriodAlreadyLockedError(str(period_id))

        now = self.clock.now()
        period.is_locked = True
        period.lock_reason = reason
        period.locked_at = now
        period.locked_by_id = actor_id
        period.updated_by_id = actor_id
        self._append_event(period, PeriodLockAction.LOCK, reason, actor_id)
        self.session.flush()

        logger.info(
            "period_locked",
            extra={
                "period_id": str(period.id),
                "period_name": period.name,
                "reason": reason,
                "locked_by": str(actor_id),
            },
        )
        return PeriodInfo.from_model(period)

    def unlock(self, period_id: UUID, reason: str, *, actor_id: UUID) -> PeriodInfo:
        reason = self._require_reason(reason, "unlock a period")
        period = self._get_period_for_update(period_id)
        if not period.is_locked:
            raise PeriodNotLockedError(str(period_id))

        now = self.clock.now()
        period.is_locked = False
        period.unlock_reason = reason
        period.unlocked_at = now
        period.unlocked_by_id = actor_id
        period.updated_by_id = actor_id
        self._append_event(period, PeriodLockAction.UNLOCK, reason, actor_id)
        self.session.flush()

        logger.info(
            "period_unlocked",
            extra={
                "period_id": str(period.id),
                "period_name": period.name,
                "reason": reason,
                "unlocked_by": str(actor_id),
            },
        )
        return PeriodInfo.from_model(period)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def is_date_locked(self, check_date: date) -> bool:
        return self._locked_period_for(check_date) is not None

    def assert_date_open(self, check_date: date) -> None:
        """
        Raise if ``check_date`` falls inside a locked period.

        The covering period row is read with a shared lock so a concurrent
        lock toggle waits for the posting transaction (PostgreSQL).

        Raises:
            PeriodLockedError
        """
        period = self._locked_period_for(check_date, share_lock=True)
        if period is not None:
            logger.warning(
                "period_locked_rejection",
                extra={
                    "transaction_date": check_date.isoformat(),
                    "period_id": str(period.id),
                    "period_name": period.name,
                },
            )
            raise PeriodLockedError(check_date, period.name)

    def get_period(self, period_id: UUID) -> PeriodInfo:
        period = self.session.execute(
            select(AccountingPeriod).where(
                AccountingPeriod.company_id == self.company_id,
                AccountingPeriod.id == period_id,
            )
        ).scalar_one_or_none()
        if period is None:
            raise PeriodNotFoundError(str(period_id))
        return PeriodInfo.from_model(period)

    def find_period_for_date(self, check_date: date) -> PeriodInfo | None:
        period = self.session.execute(
            select(AccountingPeriod).where(
                AccountingPeriod.company_id == self.company_id,
                AccountingPeriod.start_date <= check_date,
                AccountingPeriod.end_date >= check_date,
            )
        ).scalar_one_or_none()
        return PeriodInfo.from_model(period) if period else None

    def list_periods(self) -> list[PeriodInfo]:
        return [PeriodInfo.from_model(p) for p in self._company_periods()]

    def lock_history(self, period_id: UUID) -> list[PeriodLockEvent]:
        return list(
            self.session.execute(
                select(PeriodLockEvent)
                .where(
                    PeriodLockEvent.company_id == self.company_id,
                    PeriodLockEvent.period_id == period_id,
                )
                .order_by(PeriodLockEvent.occurred_at, PeriodLockEvent.created_at)
            ).scalars()
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _require_reason(reason: str | None, action: str) -> str:
        if reason is None or not reason.strip():
            raise MissingReasonError(action)
        return reason.strip()

    def _company_periods(self, for_update: bool = False) -> list[AccountingPeriod]:
        stmt = (
            select(AccountingPeriod)
            .where(AccountingPeriod.company_id == self.company_id)
            .order_by(AccountingPeriod.start_date)
        )
        if for_update:
            stmt = stmt.with_for_update()
        return list(self.session.execute(stmt).scalars())

    def _get_period_for_update(self, period_id: UUID) -> AccountingPeriod:
        period = self.session.execute(
            select(AccountingPeriod)
            .where(
                AccountingPeriod.company_id == self.company_id,
                AccountingPeriod.id == period_id,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if period is None:
            raise PeriodNotFoundError(str(period_id))
        return period

    def _locked_period_for(
        self, check_date: date, share_lock: bool = False
    ) -> AccountingPeriod | None:
        stmt = select(AccountingPeriod).where(
            AccountingPeriod.company_id == self.company_id,
            AccountingPeriod.start_date <= check_date,
            AccountingPeriod.end_date >= check_date,
            AccountingPeriod.is_locked.is_(True),
        )
        if share_lock:
            stmt = stmt.with_for_update(read=True)
        return self.session.execute(stmt).scalar_one_or_none()

    def _append_event(
        self,
        period: AccountingPeriod,
        action: PeriodLockAction,
        reason: str,
        actor_id: UUID,
    ) -> None:
        self.session.add(
            PeriodLockEvent(
                company_id=self.company_id,
                period_id=period.id,
                action=action.value,
                reason=reason,
                occurred_at=self.clock.now(),
                created_by_id=actor_id,
            )
        )
