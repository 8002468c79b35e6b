"""
Cash Module.

Bank statement import and reconciliation of statement lines against
posted ledger transactions.
"""

from ledger_modules.cash.helpers import (
    normalize_statement_rows,
    parse_bank_statement_csv,
    parse_statement_amount,
    parse_statement_date,
)
from ledger_modules.cash.models import BankTransactionInfo, StatementRow
from ledger_modules.cash.service import ReconciliationMatcher

__all__ = [
    "BankTransactionInfo",
    "ReconciliationMatcher",
    "StatementRow",
    "normalize_statement_rows",
    "parse_bank_statement_csv",
    "parse_statement_amount",
    "parse_statement_date",
]
