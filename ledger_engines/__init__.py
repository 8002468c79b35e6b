"""
Module: ledger_engines
Responsibility:
    Pure calculation engines used by the ledger modules.  Engines take
    every input as an explicit parameter and return frozen values.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import ledger_kernel.domain and ledger_kernel.logging_config.
    MUST NOT import ledger_services or ledger_modules.

Invariants enforced:
    - Purity: engines never read the clock; dates are passed in.
    - Decimal-only arithmetic.
    - Determinism: identical inputs always produce identical outputs.
"""

from ledger_engines.matching import (
    BankLine,
    MatchCandidate,
    MatchDecision,
    MatchMethod,
    MatchResult,
    MatchStatus,
    classify_candidates,
    is_eligible,
    rank_candidates,
)

__all__ = [
    "BankLine",
    "MatchCandidate",
    "MatchDecision",
    "MatchMethod",
    "MatchResult",
    "MatchStatus",
    "classify_candidates",
    "is_eligible",
    "rank_candidates",
]
