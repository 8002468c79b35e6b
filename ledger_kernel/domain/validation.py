"""
Pure posting validation.

No I/O.  Checks that a TransactionDraft is structurally sound and balanced
before LedgerEngine touches the database; account existence and period
locks need the session and are checked by the engine itself.
"""

from __future__ import annotations

from decimal import Decimal

from ledger_kernel.domain.dtos import TransactionDraft
from ledger_kernel.exceptions import InvalidLineError, UnbalancedEntryError

MIN_LINES = 2


def validate_structure(draft: TransactionDraft) -> None:
    """Each line carries exactly one positive side; at least two lines.

    Raises:
        InvalidLineError: First offending line (1-based).
    """
    if len(draft.lines) < MIN_LINES:
        raise InvalidLineError(
            len(draft.lines),
            f"a transaction needs at least {MIN_LINES} lines",
        )
    for number, line in enumerate(draft.lines, start=1):
        if line.debit < 0 or line.credit < 0:
            raise InvalidLineError(number, "amounts must not be negative")
        if line.debit > 0 and line.credit > 0:
            raise InvalidLineError(number, "line cannot be both debit and credit")
        if line.debit == 0 and line.credit == 0:
            raise InvalidLineError(number, "line must have a positive debit or credit")


def validate_balance(draft: TransactionDraft) -> Decimal:
    """Return the transaction total when debits equal credits exactly.

    Raises:
        UnbalancedEntryError: With both totals attached.
    """
    debits = draft.total_debits
    credits = draft.total_credits
    if debits != credits:
        raise UnbalancedEntryError(debits, credits)
    return debits


def validate_draft(draft: TransactionDraft) -> Decimal:
    validate_structure(draft)
    return validate_balance(draft)
