"""Services for the ledger kernel (write side)."""

from ledger_kernel.services.account_registry import AccountRegistry
from ledger_kernel.services.idempotency_guard import IdempotencyGuard
from ledger_kernel.services.ledger_engine import LedgerEngine
from ledger_kernel.services.period_lock import PeriodLock
from ledger_kernel.services.sequence_service import SequenceService

__all__ = [
    "AccountRegistry",
    "IdempotencyGuard",
    "LedgerEngine",
    "PeriodLock",
    "SequenceService",
]
