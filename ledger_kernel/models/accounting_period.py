"""
Module: ledger_kernel.models.accounting_period
Responsibility: ORM persistence for accounting periods and their lock audit
    trail.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Periods of one company never overlap and leave no gaps (checked by
      PeriodLock.create_period under the company's period rows).
    - Every lock/unlock toggle appends an immutable PeriodLockEvent carrying
      the mandatory reason.
"""

from datetime import date, datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TrackedBase, UUIDString


class AccountingPeriod(TrackedBase):
    """An inclusive date range that can be locked against postings."""

    __tablename__ = "accounting_periods"

    __table_args__ = (
        UniqueConstraint("company_id", "start_date", name="uq_period_start"),
        Index("idx_period_dates", "company_id", "start_date", "end_date"),
    )

    name: Mapped[str] = mapped_column(String(100), nullable=False)

    start_date: Mapped[date] = mapped_column(Date, nullable=False)

    end_date: Mapped[date] = mapped_column(Date, nullable=False)

    is_locked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    lock_reason: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    locked_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    locked_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    unlock_reason: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    unlocked_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    unlocked_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    def __repr__(self) -> str:
        state = "locked" if self.is_locked else "open"
        return f"<AccountingPeriod {self.name} {self.start_date}..{self.end_date} {state}>"

    def contains_date(self, check_date: date) -> bool:
        return self.start_date <= check_date <= self.end_date


class PeriodLockAction(str, Enum):
    LOCK = "lock"
    UNLOCK = "unlock"


class PeriodLockEvent(TrackedBase):
    """Append-only record of one lock or unlock toggle."""

    __tablename__ = "period_lock_events"

    __table_args__ = (Index("idx_period_lock_event_period", "period_id"),)

    period_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("accounting_periods.id"),
        nullable=False,
    )

    action: Mapped[PeriodLockAction] = mapped_column(String(10), nullable=False)

    reason: Mapped[str] = mapped_column(String(1000), nullable=False)

    occurred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
