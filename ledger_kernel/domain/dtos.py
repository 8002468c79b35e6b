"""
Domain DTOs -- immutable values exchanged across the ledger's seams.

Responsibility:
    Frozen dataclasses for posting requests (LineSpec, TransactionDraft) and
    for read results (AccountInfo, TransactionInfo, PeriodInfo, ...).
    Services accept drafts and return Info objects; ORM rows never leave
    the session that loaded them.

Architecture position:
    Kernel > Domain.  ``from_model`` constructors import ORM types only for
    annotations.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Any
from uuid import UUID

from ledger_kernel.db.types import ZERO, to_money
from ledger_kernel.models.account import AccountType, NormalBalance
from ledger_kernel.models.ledger import TransactionType

if TYPE_CHECKING:
    from ledger_kernel.models.account import Account
    from ledger_kernel.models.accounting_period import AccountingPeriod
    from ledger_kernel.models.ledger import LedgerTransaction, TransactionLine


# ---------------------------------------------------------------------------
# Posting requests
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LineSpec:
    """
    One requested posting line.

    Exactly one of ``debit`` / ``credit`` is expected to be positive; that
    is checked by the posting validation, not here, so that a malformed
    request surfaces as a typed InvalidLineError with its line number.
    """

    account_id: UUID
    debit: Decimal = ZERO
    credit: Decimal = ZERO
    memo: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "debit", to_money(self.debit))
        object.__setattr__(self, "credit", to_money(self.credit))

    @classmethod
    def debit_line(cls, account_id: UUID, amount: Decimal | str, memo: str | None = None) -> LineSpec:
        return cls(account_id=account_id, debit=amount, memo=memo)

    @classmethod
    def credit_line(cls, account_id: UUID, amount: Decimal | str, memo: str | None = None) -> LineSpec:
        return cls(account_id=account_id, credit=amount, memo=memo)

    def mirrored(self) -> LineSpec:
        """Same account and amount with debit and credit swapped."""
        return LineSpec(
            account_id=self.account_id,
            debit=self.credit,
            credit=self.debit,
            memo=self.memo,
        )


@dataclass(frozen=True)
class TransactionDraft:
    """A transaction as requested, before validation and numbering."""

    transaction_date: date
    transaction_type: TransactionType
    lines: tuple[LineSpec, ...]
    reference: str | None = None
    description: str | None = None
    reversal_of_id: UUID | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "lines", tuple(self.lines))
        object.__setattr__(
            self, "transaction_type", TransactionType(self.transaction_type)
        )

    @property
    def total_debits(self) -> Decimal:
        return sum((line.debit for line in self.lines), ZERO)

    @property
    def total_credits(self) -> Decimal:
        return sum((line.credit for line in self.lines), ZERO)

    def to_payload(self) -> dict[str, Any]:
        """Canonical request body, used to detect idempotency key reuse."""
        return {
            "transaction_date": self.transaction_date,
            "transaction_type": self.transaction_type.value,
            "reference": self.reference,
            "description": self.description,
            "reversal_of_id": self.reversal_of_id,
            "lines": [
                {
                    "account_id": line.account_id,
                    "debit": line.debit,
                    "credit": line.credit,
                    "memo": line.memo,
                }
                for line in self.lines
            ],
        }


# ---------------------------------------------------------------------------
# Read results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AccountInfo:
    """Snapshot of one chart-of-accounts entry."""

    id: UUID
    code: str
    name: str
    account_type: AccountType
    normal_balance: NormalBalance
    is_active: bool
    parent_id: UUID | None
    cached_balance: Decimal
    description: str | None = None

    @classmethod
    def from_model(cls, model: Account) -> AccountInfo:
        return cls(
            id=model.id,
            code=model.code,
            name=model.name,
            account_type=AccountType(model.account_type),
            normal_balance=NormalBalance(model.normal_balance),
            is_active=model.is_active,
            parent_id=model.parent_id,
            cached_balance=model.cached_balance,
            description=model.description,
        )


@dataclass(frozen=True)
class AccountNode:
    """An account and its children, as returned by list_hierarchy."""

    account: AccountInfo
    children: tuple[AccountNode, ...] = ()


@dataclass(frozen=True)
class BalanceDiscrepancy:
    account_id: UUID
    account_code: str
    cached_balance: Decimal
    recomputed_balance: Decimal


@dataclass(frozen=True)
class TransactionLineInfo:
    line_number: int
    account_id: UUID
    debit: Decimal
    credit: Decimal
    memo: str | None = None

    @classmethod
    def from_model(cls, model: TransactionLine) -> TransactionLineInfo:
        return cls(
            line_number=model.line_number,
            account_id=model.account_id,
            debit=model.debit_amount,
            credit=model.credit_amount,
            memo=model.memo,
        )


@dataclass(frozen=True)
class TransactionInfo:
    """Snapshot of a posted ledger transaction and its lines."""

    id: UUID
    transaction_number: str
    seq: int
    transaction_date: date
    transaction_type: TransactionType
    total_amount: Decimal
    lines: tuple[TransactionLineInfo, ...]
    is_void: bool
    is_reconciled: bool
    reference: str | None = None
    description: str | None = None
    reversal_of_id: UUID | None = None
    void_reason: str | None = None
    voided_at: datetime | None = None

    @classmethod
    def from_model(cls, model: LedgerTransaction) -> TransactionInfo:
        return cls(
            id=model.id,
            transaction_number=model.transaction_number,
            seq=model.seq,
            transaction_date=model.transaction_date,
            transaction_type=TransactionType(model.transaction_type),
            total_amount=model.total_amount,
            lines=tuple(TransactionLineInfo.from_model(line) for line in model.lines),
            is_void=model.is_void,
            is_reconciled=model.is_reconciled,
            reference=model.reference,
            description=model.description,
            reversal_of_id=model.reversal_of_id,
            void_reason=model.void_reason,
            voided_at=model.voided_at,
        )

    @property
    def total_debits(self) -> Decimal:
        return sum((line.debit for line in self.lines), ZERO)

    @property
    def total_credits(self) -> Decimal:
        return sum((line.credit for line in self.lines), ZERO)

    def touches(self, account_id: UUID) -> bool:
        return any(line.account_id == account_id for line in self.lines)

    def signed_amount_for(self, account_id: UUID) -> Decimal:
        """Debits minus credits on one account: the bank-statement view."""
        return sum(
            (line.debit - line.credit for line in self.lines if line.account_id == account_id),
            ZERO,
        )


class PostingStatus(str, Enum):
    POSTED = "posted"
    ALREADY_POSTED = "already_posted"


@dataclass(frozen=True)
class PostingResult:
    """Outcome of LedgerEngine.post / void.

    ``ALREADY_POSTED`` means the idempotency key was seen before and the
    original transaction is returned unchanged.
    """

    status: PostingStatus
    transaction: TransactionInfo

    @classmethod
    def posted(cls, transaction: TransactionInfo) -> PostingResult:
        return cls(status=PostingStatus.POSTED, transaction=transaction)

    @classmethod
    def already_posted(cls, transaction: TransactionInfo) -> PostingResult:
        return cls(status=PostingStatus.ALREADY_POSTED, transaction=transaction)


@dataclass(frozen=True)
class PeriodInfo:
    id: UUID
    name: str
    start_date: date
    end_date: date
    is_locked: bool
    lock_reason: str | None = None
    locked_by_id: UUID | None = None
    locked_at: datetime | None = None
    unlock_reason: str | None = None
    unlocked_by_id: UUID | None = None
    unlocked_at: datetime | None = None

    def contains_date(self, check_date: date) -> bool:
        return self.start_date <= check_date <= self.end_date

    @classmethod
    def from_model(cls, model: AccountingPeriod) -> PeriodInfo:
        return cls(
            id=model.id,
            name=model.name,
            start_date=model.start_date,
            end_date=model.end_date,
            is_locked=model.is_locked,
            lock_reason=model.lock_reason,
            locked_by_id=model.locked_by_id,
            locked_at=model.locked_at,
            unlock_reason=model.unlock_reason,
            unlocked_by_id=model.unlocked_by_id,
            unlocked_at=model.unlocked_at,
        )


@dataclass(frozen=True)
class IdempotentResult:
    """Prior outcome found under an idempotency key."""

    operation_kind: str
    idempotency_key: str
    result_type: str
    result_id: UUID
    request_hash: str = field(repr=False, default="")
