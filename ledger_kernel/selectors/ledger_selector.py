"""
Module: ledger_kernel.selectors.ledger_selector
Responsibility: Read-only ledger queries: balances recomputed from posting
    lines, transaction listings, reconciliation candidates and the flat
    line-level view used by the ledger export.
Architecture position: Kernel > Selectors.  May import from models/ and
    domain DTOs.  MUST NOT import from services/ or outer layers.

Invariants enforced:
    - Balances derive from TransactionLine rows only; the cached column on
      Account is never read here.
    - A void pair (a voided original and its reversal) contributes nothing:
      lines of void transactions and of reversals are excluded together, so
      the recomputed figure equals the cached one, which absorbs both.
    - Money is summed in Python over exact Decimals, identically on every
      backend.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select

from ledger_kernel.db.types import ZERO
from ledger_kernel.domain.dtos import TransactionInfo
from ledger_kernel.models.account import Account, signed_amount
from ledger_kernel.models.ledger import (
    LedgerTransaction,
    TransactionLine,
    TransactionType,
)
from ledger_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class LedgerLine:
    """One posting line with its transaction and account context."""

    transaction_id: UUID
    transaction_number: str
    seq: int
    transaction_date: date
    transaction_type: str
    reference: str | None
    description: str | None
    is_void: bool
    reversal_of_id: UUID | None
    line_number: int
    account_id: UUID
    account_code: str
    account_name: str
    debit: Decimal
    credit: Decimal
    memo: str | None


def _counts_toward_balance():
    return (
        LedgerTransaction.is_void.is_(False),
        LedgerTransaction.reversal_of_id.is_(None),
    )


class LedgerSelector(BaseSelector):
    """Derived views over posted transactions of one company."""

    def account_balance(self, account_id: UUID, as_of: date | None = None) -> Decimal:
        """Signed balance of one account, recomputed from posting lines."""
        balances = self._balances(account_ids=[account_id], as_of=as_of)
        return balances.get(account_id, ZERO)

    def all_balances(self, as_of: date | None = None) -> dict[UUID, Decimal]:
        """Recomputed signed balance of every account that has postings."""
        return self._balances(account_ids=None, as_of=as_of)

    def _balances(
        self, account_ids: list[UUID] | None, as_of: date | None
    ) -> dict[UUID, Decimal]:
        query = (
            select(
                TransactionLine.account_id,
                Account.normal_balance,
                TransactionLine.debit_amount,
                TransactionLine.credit_amount,
            )
            .join(LedgerTransaction, TransactionLine.transaction_id == LedgerTransaction.id)
            .join(Account, TransactionLine.account_id == Account.id)
            .where(LedgerTransaction.company_id == self.company_id, *_counts_toward_balance())
        )
        if account_ids is not None:
            query = query.where(TransactionLine.account_id.in_(account_ids))
        if as_of is not None:
            query = query.where(LedgerTransaction.transaction_date <= as_of)

        totals: dict[UUID, Decimal] = {}
        for account_id, normal_balance, debit, credit in self.session.execute(query):
            totals[account_id] = totals.get(account_id, ZERO) + signed_amount(
                normal_balance, debit, credit
            )
        return totals

    def latest_posting_date(self, account_id: UUID) -> date | None:
        return self.session.execute(
            select(func.max(LedgerTransaction.transaction_date))
            .join(TransactionLine, TransactionLine.transaction_id == LedgerTransaction.id)
            .where(
                LedgerTransaction.company_id == self.company_id,
                TransactionLine.account_id == account_id,
            )
        ).scalar_one_or_none()

    def has_postings(self, account_id: UUID) -> bool:
        return self.latest_posting_date(account_id) is not None

    def transactions_between(
        self, start_date: date, end_date: date
    ) -> list[TransactionInfo]:
        """Every transaction dated in [start_date, end_date], void ones included."""
        rows = self.session.execute(
            select(LedgerTransaction)
            .where(
                LedgerTransaction.company_id == self.company_id,
                LedgerTransaction.transaction_date >= start_date,
                LedgerTransaction.transaction_date <= end_date,
            )
            .order_by(LedgerTransaction.transaction_date, LedgerTransaction.seq)
        ).scalars()
        return [TransactionInfo.from_model(txn) for txn in rows]

    def unreconciled_transactions_touching(self, account_id: UUID) -> list[TransactionInfo]:
        """Non-void, unreconciled transactions with a line on ``account_id``."""
        touching = (
            select(TransactionLine.transaction_id)
            .where(TransactionLine.account_id == account_id)
            .scalar_subquery()
        )
        rows = self.session.execute(
            select(LedgerTransaction)
            .where(
                LedgerTransaction.company_id == self.company_id,
                LedgerTransaction.is_void.is_(False),
                LedgerTransaction.is_reconciled.is_(False),
                LedgerTransaction.id.in_(touching),
            )
            .order_by(LedgerTransaction.seq)
        ).scalars()
        return [TransactionInfo.from_model(txn) for txn in rows]

    def ledger_lines(self, start_date: date, end_date: date) -> list[LedgerLine]:
        """Flat line-level view, ordered by date, sequence and line number."""
        rows = self.session.execute(
            select(LedgerTransaction, TransactionLine, Account)
            .join(TransactionLine, TransactionLine.transaction_id == LedgerTransaction.id)
            .join(Account, TransactionLine.account_id == Account.id)
            .where(
                LedgerTransaction.company_id == self.company_id,
                LedgerTransaction.transaction_date >= start_date,
                LedgerTransaction.transaction_date <= end_date,
            )
            .order_by(
                LedgerTransaction.transaction_date,
                LedgerTransaction.seq,
                TransactionLine.line_number,
            )
        )
        return [
            LedgerLine(
                transaction_id=txn.id,
                transaction_number=txn.transaction_number,
                seq=txn.seq,
                transaction_date=txn.transaction_date,
                transaction_type=TransactionType(txn.transaction_type).value,
                reference=txn.reference,
                description=txn.description,
                is_void=txn.is_void,
                reversal_of_id=txn.reversal_of_id,
                line_number=line.line_number,
                account_id=account.id,
                account_code=account.code,
                account_name=account.name,
                debit=line.debit_amount,
                credit=line.credit_amount,
                memo=line.memo,
            )
            for txn, line, account in rows
        ]
