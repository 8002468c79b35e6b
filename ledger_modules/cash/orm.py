"""
Cash ORM Models (``ledger_modules.cash.orm``).

Responsibility
--------------
SQLAlchemy persistence for imported bank statement lines.

Architecture position
---------------------
**Modules layer** -- persistence.  Imports from ``ledger_kernel.db.base``.
MUST NOT be imported by ``ledger_kernel``.

Invariants enforced
-------------------
* ``amount`` is signed: deposits positive, withdrawals negative.
* Rows are created by statement import and afterwards change only through
  match / unmatch, which write with ``WHERE is_reconciled = <expected>``.
* ``matched_transaction_id`` is set exactly when ``is_reconciled`` is true.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TrackedBase, UUIDString


class BankTransaction(TrackedBase):
    """One line of an imported bank statement."""

    __tablename__ = "bank_transactions"

    __table_args__ = (
        Index("idx_bank_txn_account_reconciled", "company_id", "account_id", "is_reconciled"),
        Index("idx_bank_txn_batch", "import_batch_id"),
        Index("idx_bank_txn_matched", "matched_transaction_id"),
    )

    account_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("accounts.id"), nullable=False
    )
    transaction_date: Mapped[date] = mapped_column(Date, nullable=False)
    description: Mapped[str] = mapped_column(String(1000), nullable=False, default="")
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    reference: Mapped[str | None] = mapped_column(String(255), nullable=True)
    import_batch_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    row_number: Mapped[int] = mapped_column(Integer, nullable=False)
    is_reconciled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    matched_transaction_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("ledger_transactions.id"), nullable=True
    )
    match_method: Mapped[str | None] = mapped_column(String(10), nullable=True)
    matched_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    matched_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    def __repr__(self) -> str:
        return f"<BankTransaction {self.transaction_date} {self.amount}>"
