"""
ledger_modules.cash.helpers
===========================

Responsibility:
    Pure helper functions for bank statement parsing.  Zero I/O, zero side
    effects.

Architecture:
    Module layer (ledger_modules).  Called by
    ``ReconciliationMatcher.import_statement``.

Invariants enforced:
    - All parsed ``amount`` values are ``Decimal`` -- never ``float``.
    - A statement is validated in full before anything is returned; the
      first bad row raises with its 1-based row number.

Failure modes:
    - ``MalformedImportRowError(row_number, reason)``.  Row number 0 means
      the header (a required column is missing).

Accepted formats:
    Columns ``Date, Description, Amount`` and optional ``Reference``,
    matched case-insensitively.  Dates are ``YYYY-MM-DD`` or ``MM/DD/YYYY``.
    Amounts may carry a ``$`` and thousands separators; withdrawals are
    negative.
"""

from __future__ import annotations

import csv
import io
from collections.abc import Iterable, Mapping
from datetime import date, datetime
from decimal import Decimal

from ledger_kernel.db.types import money_from_str
from ledger_kernel.exceptions import MalformedImportRowError
from ledger_modules.cash.models import StatementRow

REQUIRED_COLUMNS = ("date", "description", "amount")

DATE_FORMATS = ("%Y-%m-%d", "%m/%d/%Y")


def parse_statement_date(value) -> date:
    """Parse ``YYYY-MM-DD`` or ``MM/DD/YYYY``.  Raises ValueError."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value or "").strip()
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    raise ValueError(f"unrecognized date {text!r}")


def parse_statement_amount(value) -> Decimal:
    """
    Parse a signed statement amount.  Raises ValueError.

    >>> parse_statement_amount("-$1,250.00")
    Decimal('-1250.00')
    """
    if isinstance(value, float):
        raise ValueError("amount must not be a float")
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, int):
        amount = Decimal(value)
    else:
        text = str(value or "").strip().replace(",", "")
        negative = text.startswith("-")
        if negative:
            text = text[1:]
        if text.startswith("$"):
            text = text[1:]
        if text.startswith("-") and not negative:
            negative = True
            text = text[1:]
        if not text:
            raise ValueError("amount is empty")
        if text[0] in "+-":
            raise ValueError(f"invalid amount {value!r}")
        amount = money_from_str(text)
        if negative:
            amount = -amount
    if not amount.is_finite():
        raise ValueError(f"invalid amount {value!r}")
    if amount == 0:
        raise ValueError("amount must not be zero")
    return amount


def _normalized(row: Mapping) -> dict:
    return {str(key).strip().lower(): value for key, value in row.items() if key is not None}


def normalize_statement_rows(rows: Iterable[Mapping]) -> list[StatementRow]:
    """
    Validate caller-supplied row mappings.

    Keys are matched case-insensitively.  Values may already be ``date`` /
    ``Decimal`` or still be text.

    Raises:
        MalformedImportRowError: First row that fails, with its number.
    """
    return [_parse_row(row_number, raw) for row_number, raw in enumerate(rows, start=1)]


def _parse_row(row_number: int, raw: Mapping) -> StatementRow:
    row = _normalized(raw)
    missing = [column for column in REQUIRED_COLUMNS if column not in row]
    if missing:
        raise MalformedImportRowError(row_number, f"missing {', '.join(missing)}")
    try:
        transaction_date = parse_statement_date(row["date"])
    except ValueError as exc:
        raise MalformedImportRowError(row_number, str(exc)) from None
    try:
        amount = parse_statement_amount(row["amount"])
    except ValueError as exc:
        raise MalformedImportRowError(row_number, str(exc)) from None
    reference = row.get("reference")
    reference = str(reference).strip() if reference not in (None, "") else None
    return StatementRow(
        row_number=row_number,
        transaction_date=transaction_date,
        description=str(row["description"] or "").strip(),
        amount=amount,
        reference=reference or None,
    )


def parse_bank_statement_csv(text: str) -> list[StatementRow]:
    """
    Parse CSV statement text into validated rows.

    Row numbers count data lines after the header, blank lines included,
    so an error points at the line a person sees in the file.

    Raises:
        MalformedImportRowError: Row 0 for a bad header, otherwise the
            1-based data row that failed.
    """
    reader = csv.DictReader(io.StringIO(text.lstrip("\ufeff")))
    header = [name.strip().lower() for name in (reader.fieldnames or [])]
    missing = [column for column in REQUIRED_COLUMNS if column not in header]
    if missing:
        raise MalformedImportRowError(0, f"missing column(s): {', '.join(missing)}")

    parsed = []
    for raw in reader:
        row_number = reader.line_num - 1
        if None in raw:
            raise MalformedImportRowError(row_number, "too many fields")
        if not any((value or "").strip() for value in raw.values()):
            continue
        parsed.append(_parse_row(row_number, raw))
    return parsed
