"""
Module: ledger_kernel.models.account
Responsibility: ORM persistence for the chart of accounts.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Account.code is unique per company (uq_account_company_code).
    - normal_balance is derived from account_type and never stored apart
      from it.
    - Accounts referenced by posting lines are never deleted
      (see db/immutability.py); they are deactivated instead.
    - cached_balance is an optimization.  The source of truth is the sum of
      posting lines, and selectors can always recompute it.

The tree is an arena: each row holds a weak parent_id reference and
children are derived by lookup on demand.  There is no ORM relationship
from parent to children.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import Boolean, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TrackedBase, UUIDString


class AccountType(str, Enum):
    """Types of accounts in the chart of accounts."""

    ASSET = "asset"
    LIABILITY = "liability"
    EQUITY = "equity"
    REVENUE = "revenue"
    EXPENSE = "expense"

    @property
    def normal_balance(self) -> NormalBalance:
        if self in (AccountType.ASSET, AccountType.EXPENSE):
            return NormalBalance.DEBIT
        return NormalBalance.CREDIT


class NormalBalance(str, Enum):
    """Normal balance side for an account."""

    DEBIT = "debit"
    CREDIT = "credit"


def signed_amount(
    normal_balance: NormalBalance | str, debit: Decimal, credit: Decimal
) -> Decimal:
    """Balance effect of a debit/credit pair on an account with this normal side."""
    if NormalBalance(normal_balance) == NormalBalance.DEBIT:
        return debit - credit
    return credit - debit


class Account(TrackedBase):
    """
    Chart of Accounts entry.

    Contract:
        code is unique within the company.  account_type may not change once
        the account carries postings.

    Non-goals:
        Children do not inherit or validate their parent's type.  Shared
        normal-balance sign down a branch is a display convention only.
    """

    __tablename__ = "accounts"

    __table_args__ = (
        UniqueConstraint("company_id", "code", name="uq_account_company_code"),
        Index("idx_account_parent", "company_id", "parent_id"),
        Index("idx_account_active", "is_active"),
    )

    code: Mapped[str] = mapped_column(String(50), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    account_type: Mapped[AccountType] = mapped_column(String(20), nullable=False)

    normal_balance: Mapped[NormalBalance] = mapped_column(String(10), nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    description: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    # Weak reference; no FK so reparenting never cascades
    parent_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    cached_balance: Mapped[Decimal] = mapped_column(
        default=Decimal("0"),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<Account {self.code}: {self.name}>"

    @property
    def is_debit_normal(self) -> bool:
        return self.normal_balance == NormalBalance.DEBIT

    def balance_effect(self, debit: Decimal, credit: Decimal) -> Decimal:
        """Signed change to this account's balance from one posting line."""
        return signed_amount(self.normal_balance, debit, credit)
