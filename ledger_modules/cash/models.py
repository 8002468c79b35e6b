"""
Cash Domain Models (``ledger_modules.cash.models``).

Frozen value objects for bank statement rows (parsed, not yet stored) and
for stored bank transactions.  Zero I/O.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

if TYPE_CHECKING:
    from ledger_modules.cash.orm import BankTransaction


@dataclass(frozen=True)
class StatementRow:
    """A validated statement row.  ``row_number`` is 1-based over data rows."""

    row_number: int
    transaction_date: date
    description: str
    amount: Decimal
    reference: str | None = None


@dataclass(frozen=True)
class BankTransactionInfo:
    id: UUID
    account_id: UUID
    transaction_date: date
    description: str
    amount: Decimal
    reference: str | None
    import_batch_id: UUID
    is_reconciled: bool
    matched_transaction_id: UUID | None = None
    match_method: str | None = None
    matched_at: datetime | None = None

    @classmethod
    def from_model(cls, model: BankTransaction) -> BankTransactionInfo:
        return cls(
            id=model.id,
            account_id=model.account_id,
            transaction_date=model.transaction_date,
            description=model.description,
            amount=model.amount,
            reference=model.reference,
            import_batch_id=model.import_batch_id,
            is_reconciled=model.is_reconciled,
            matched_transaction_id=model.matched_transaction_id,
            match_method=model.match_method,
            matched_at=model.matched_at,
        )
