"""Domain models for the ledger kernel."""

from ledger_kernel.models.account import Account, AccountType, NormalBalance
from ledger_kernel.models.accounting_period import (
    AccountingPeriod,
    PeriodLockAction,
    PeriodLockEvent,
)
from ledger_kernel.models.idempotency import IdempotencyRecord
from ledger_kernel.models.ledger import (
    LedgerTransaction,
    TransactionLine,
    TransactionType,
)
from ledger_kernel.models.sequence import SequenceCounter

__all__ = [
    "Account",
    "AccountType",
    "AccountingPeriod",
    "IdempotencyRecord",
    "LedgerTransaction",
    "NormalBalance",
    "PeriodLockAction",
    "PeriodLockEvent",
    "SequenceCounter",
    "TransactionLine",
    "TransactionType",
]
