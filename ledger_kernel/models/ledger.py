"""
Module: ledger_kernel.models.ledger
Responsibility: ORM persistence for ledger transactions and their posting
    lines -- the single source of financial truth.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Balance: sum(debit_amount) == sum(credit_amount) on every transaction.
      LedgerEngine checks it before the insert; is_balanced re-checks it for
      read-side assertions.
    - One side per line: exactly one of debit_amount / credit_amount is
      positive, the other is zero (validated before insert, since SQLite
      stores money as text and cannot compare it numerically).
    - Sequence: (company_id, seq) and (company_id, transaction_number) are
      unique; seq is allocated under the company counter lock.
    - Append-only: ORM listeners in db/immutability.py reject every UPDATE
      except the one-way void flag and the reconciliation flag, and every
      DELETE.

Failure modes:
    - IntegrityError on duplicate (company_id, seq) or transaction_number.
    - ImmutabilityViolationError on UPDATE/DELETE of financial columns.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ledger_kernel.db.base import TrackedBase, UUIDString

if TYPE_CHECKING:
    from ledger_kernel.models.account import Account


class TransactionType(str, Enum):
    """What produced a ledger transaction."""

    JOURNAL_ENTRY = "journal_entry"
    INVOICE = "invoice"
    PAYMENT = "payment"
    BANK = "bank"


class LedgerTransaction(TrackedBase):
    """
    A posted, balanced journal entry.

    Contract:
        Created atomically with all of its lines by LedgerEngine.  Never
        updated except to flip is_void (once, with its reason metadata) or
        to toggle is_reconciled.  "Deleting" means posting a reversal whose
        reversal_of_id points here and marking this row void.
    """

    __tablename__ = "ledger_transactions"

    __table_args__ = (
        UniqueConstraint("company_id", "seq", name="uq_ledger_txn_seq"),
        UniqueConstraint(
            "company_id", "transaction_number", name="uq_ledger_txn_number"
        ),
        Index("idx_ledger_txn_date", "company_id", "transaction_date"),
        Index("idx_ledger_txn_reversal_of", "reversal_of_id"),
    )

    seq: Mapped[int] = mapped_column(nullable=False)

    transaction_number: Mapped[str] = mapped_column(String(50), nullable=False)

    transaction_date: Mapped[date] = mapped_column(Date, nullable=False)

    transaction_type: Mapped[TransactionType] = mapped_column(
        String(20), nullable=False
    )

    total_amount: Mapped[Decimal] = mapped_column(nullable=False)

    reference: Mapped[str | None] = mapped_column(String(255), nullable=True)

    description: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    idempotency_key: Mapped[str | None] = mapped_column(String(300), nullable=True)

    is_void: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    void_reason: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    voided_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    voided_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    reversal_of_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("ledger_transactions.id"),
        nullable=True,
    )

    is_reconciled: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )

    lines: Mapped[list["TransactionLine"]] = relationship(
        back_populates="transaction",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="TransactionLine.line_number",
    )

    def __repr__(self) -> str:
        return f"<LedgerTransaction {self.transaction_number} {self.transaction_date}>"

    @property
    def total_debits(self) -> Decimal:
        return sum((line.debit_amount for line in self.lines), Decimal("0"))

    @property
    def total_credits(self) -> Decimal:
        return sum((line.credit_amount for line in self.lines), Decimal("0"))

    @property
    def is_balanced(self) -> bool:
        return self.total_debits == self.total_credits

    @property
    def is_reversal(self) -> bool:
        return self.reversal_of_id is not None

    def signed_amount_for(self, account_id: UUID) -> Decimal:
        """Net debit minus credit on one account, as a bank statement sees it."""
        return sum(
            (
                line.debit_amount - line.credit_amount
                for line in self.lines
                if line.account_id == account_id
            ),
            Decimal("0"),
        )

    def touches(self, account_id: UUID) -> bool:
        return any(line.account_id == account_id for line in self.lines)


class TransactionLine(TrackedBase):
    """One debit or credit against one account."""

    __tablename__ = "transaction_lines"

    __table_args__ = (
        UniqueConstraint("transaction_id", "line_number", name="uq_line_number"),
        Index("idx_line_account", "account_id"),
    )

    transaction_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("ledger_transactions.id"),
        nullable=False,
    )

    account_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("accounts.id"),
        nullable=False,
    )

    line_number: Mapped[int] = mapped_column(Integer, nullable=False)

    debit_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)

    credit_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)

    memo: Mapped[str | None] = mapped_column(String(500), nullable=True)

    transaction: Mapped[LedgerTransaction] = relationship(back_populates="lines")

    account: Mapped["Account"] = relationship(lazy="joined")

    def __repr__(self) -> str:
        side = "Dr" if self.debit_amount else "Cr"
        amount = self.debit_amount or self.credit_amount
        return f"<TransactionLine {self.line_number} {side} {amount}>"

    @property
    def is_debit(self) -> bool:
        return self.debit_amount > 0
