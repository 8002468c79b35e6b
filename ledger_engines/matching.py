"""
ledger_engines.matching -- Bank line to ledger transaction matching.

Responsibility:
    Decide which posted ledger transactions could explain one imported bank
    statement line, rank them, and classify the outcome.  Persistence and
    the conditional reconciliation writes belong to ReconciliationMatcher.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import ledger_kernel.domain and ledger_kernel.logging_config.

Invariants enforced:
    - Eligibility is exact: the candidate's signed amount on the bank
      account (debits minus credits) must equal the bank amount to the cent,
      with no tolerance.
    - Void and already-reconciled transactions are never eligible.
    - Ranking is total and deterministic: (date distance, seq).
    - Purity: no clock access, no I/O.

Usage:
    from ledger_engines.matching import BankLine, MatchCandidate, classify_candidates

    decision = classify_candidates(
        bank=BankLine(bank_id, account_id, date(2024, 3, 4), Decimal("-45.00")),
        candidates=[MatchCandidate.from_transaction(txn, account_id) for txn in pool],
        window_days=3,
    )
"""

from __future__ import annotations

import time
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID

from ledger_kernel.domain.dtos import TransactionInfo
from ledger_kernel.logging_config import get_logger

logger = get_logger("engines.matching")


class MatchStatus(str, Enum):
    """Outcome of matching one bank line."""

    MATCHED = "matched"  # exactly one eligible candidate, now linked
    UNMATCHED = "unmatched"  # no eligible candidate
    AMBIGUOUS = "ambiguous"  # several eligible; left for manual review
    ALREADY_RECONCILED = "already_reconciled"  # line (or winner) was taken


class MatchMethod(str, Enum):
    AUTO = "auto"
    MANUAL = "manual"


@dataclass(frozen=True)
class BankLine:
    """The bank-statement side of a match."""

    bank_transaction_id: UUID
    account_id: UUID
    transaction_date: date
    amount: Decimal


@dataclass(frozen=True)
class MatchCandidate:
    """
    A ledger transaction as seen from one bank account.

    ``signed_amount`` is debits minus credits on that account, so a deposit
    (debit to cash) is positive like the statement's deposit.
    """

    transaction_id: UUID
    seq: int
    transaction_date: date
    signed_amount: Decimal
    touches_account: bool
    is_void: bool = False
    is_reconciled: bool = False

    @classmethod
    def from_transaction(cls, txn: TransactionInfo, account_id: UUID) -> MatchCandidate:
        return cls(
            transaction_id=txn.id,
            seq=txn.seq,
            transaction_date=txn.transaction_date,
            signed_amount=txn.signed_amount_for(account_id),
            touches_account=txn.touches(account_id),
            is_void=txn.is_void,
            is_reconciled=txn.is_reconciled,
        )

    def days_from(self, other: date) -> int:
        return abs((self.transaction_date - other).days)


@dataclass(frozen=True)
class MatchDecision:
    """Classification of the candidate pool for one bank line."""

    status: MatchStatus
    ranked: tuple[MatchCandidate, ...] = ()

    @property
    def best(self) -> MatchCandidate | None:
        return self.ranked[0] if self.ranked else None


@dataclass(frozen=True)
class MatchResult:
    """
    Result of a match attempt, as returned to callers.

    ``candidate_ids`` lists every eligible transaction in rank order; for
    AMBIGUOUS results that is the review list.
    """

    bank_transaction_id: UUID
    status: MatchStatus
    transaction_id: UUID | None = None
    method: MatchMethod | None = None
    candidate_ids: tuple[UUID, ...] = ()

    @property
    def is_matched(self) -> bool:
        return self.status == MatchStatus.MATCHED


def is_eligible(bank: BankLine, candidate: MatchCandidate, window_days: int) -> bool:
    """Exact amount, same account, live and unreconciled, inside the window."""
    return (
        candidate.touches_account
        and not candidate.is_void
        and not candidate.is_reconciled
        and candidate.signed_amount == bank.amount
        and candidate.days_from(bank.transaction_date) <= window_days
    )


def rank_candidates(
    bank: BankLine,
    candidates: Iterable[MatchCandidate],
    window_days: int,
) -> tuple[MatchCandidate, ...]:
    """Eligible candidates, closest date first, then earliest seq."""
    if window_days < 0:
        raise ValueError(f"window_days must be >= 0, got {window_days}")
    eligible = [c for c in candidates if is_eligible(bank, c, window_days)]
    eligible.sort(key=lambda c: (c.days_from(bank.transaction_date), c.seq))
    return tuple(eligible)


def classify_candidates(
    bank: BankLine,
    candidates: Iterable[MatchCandidate],
    window_days: int,
) -> MatchDecision:
    """
    MATCHED for exactly one eligible candidate, AMBIGUOUS for several,
    UNMATCHED for none.
    """
    t0 = time.monotonic()
    candidates = tuple(candidates)
    ranked = rank_candidates(bank, candidates, window_days)

    if not ranked:
        status = MatchStatus.UNMATCHED
    elif len(ranked) == 1:
        status = MatchStatus.MATCHED
    else:
        status = MatchStatus.AMBIGUOUS

    logger.debug(
        "match_candidates_classified",
        extra={
            "bank_transaction_id": str(bank.bank_transaction_id),
            "candidates_evaluated": len(candidates),
            "eligible": len(ranked),
            "status": status.value,
            "duration_ms": round((time.monotonic() - t0) * 1000, 2),
        },
    )
    return MatchDecision(status=status, ranked=ranked)
