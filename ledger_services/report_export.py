"""
ledger_services.report_export -- Ledger report as a downloadable file.

Responsibility:
    Render every posting line dated inside a range as CSV (one row per
    line) or JSON (transactions with nested lines plus totals) and hand it
    back as a binary stream positioned at 0.

Architecture position:
    Services.  Reads through ``LedgerSelector``; never mutates.

Invariants enforced:
    - Decimals are rendered as strings, never floats.
    - Amounts keep their full scale, padded to two places; nothing is
      rounded, so the report totals equal the ledger's own figures.
    - Void originals and their reversals both appear, flagged by
      ``is_void`` and ``reversal_of``, so the report reconciles to the
      posted lines.
    - Rows are ordered by date, seq, line number.
"""

from __future__ import annotations

import csv
import io
import json
from collections.abc import Sequence
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from ledger_kernel.db.types import ZERO
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.exceptions import InvalidPeriodError, UnsupportedExportFormatError
from ledger_kernel.logging_config import get_logger
from ledger_kernel.selectors.ledger_selector import LedgerLine, LedgerSelector

logger = get_logger("services.report_export")


class ExportFormat(str, Enum):
    JSON = "json"
    CSV = "csv"


CSV_COLUMNS = (
    "transaction_number",
    "date",
    "type",
    "reference",
    "description",
    "is_void",
    "line_number",
    "account_code",
    "account_name",
    "debit",
    "credit",
)


def _parse_format(export_format: str | ExportFormat) -> ExportFormat:
    try:
        return ExportFormat(str(getattr(export_format, "value", export_format)).lower())
    except ValueError:
        raise UnsupportedExportFormatError(str(export_format)) from None


CENTS = Decimal("0.01")


def _money(value: Decimal) -> str:
    """Exact decimal text, padded to at least two places and never rounded."""
    exact = value.normalize()
    if exact.as_tuple().exponent > -2:
        exact = exact.quantize(CENTS)
    return f"{exact:f}"


def render_csv(lines: Sequence[LedgerLine]) -> bytes:
    buffer = io.StringIO(newline="")
    writer = csv.writer(buffer)
    writer.writerow(CSV_COLUMNS)
    for line in lines:
        writer.writerow(
            [
                line.transaction_number,
                line.transaction_date.isoformat(),
                line.transaction_type,
                line.reference or "",
                line.description or "",
                "true" if line.is_void else "false",
                line.line_number,
                line.account_code,
                line.account_name,
                _money(line.debit),
                _money(line.credit),
            ]
        )
    return buffer.getvalue().encode("utf-8")


def _group_transactions(lines: Sequence[LedgerLine]) -> list[dict[str, Any]]:
    grouped: dict[UUID, dict[str, Any]] = {}
    for line in lines:
        entry = grouped.get(line.transaction_id)
        if entry is None:
            entry = grouped[line.transaction_id] = {
                "id": str(line.transaction_id),
                "transaction_number": line.transaction_number,
                "date": line.transaction_date.isoformat(),
                "type": line.transaction_type,
                "reference": line.reference,
                "description": line.description,
                "is_void": line.is_void,
                "reversal_of": str(line.reversal_of_id) if line.reversal_of_id else None,
                "lines": [],
            }
        entry["lines"].append(
            {
                "line_number": line.line_number,
                "account_code": line.account_code,
                "account_name": line.account_name,
                "debit": _money(line.debit),
                "credit": _money(line.credit),
                "memo": line.memo,
            }
        )
    return list(grouped.values())


def render_json(
    lines: Sequence[LedgerLine],
    *,
    company_id: UUID,
    start_date: date,
    end_date: date,
    generated_at: str,
) -> bytes:
    document = {
        "company_id": str(company_id),
        "start_date": start_date.isoformat(),
        "end_date": end_date.isoformat(),
        "generated_at": generated_at,
        "transactions": _group_transactions(lines),
        "totals": {
            "debit": _money(sum((line.debit for line in lines), ZERO)),
            "credit": _money(sum((line.credit for line in lines), ZERO)),
        },
    }
    return json.dumps(document, indent=2).encode("utf-8")


def export_ledger_report(
    session: Session,
    company_id: UUID,
    start_date: date,
    end_date: date,
    export_format: str | ExportFormat,
    clock: Clock | None = None,
) -> io.BytesIO:
    """
    Build the ledger report for ``[start_date, end_date]``.

    Raises:
        UnsupportedExportFormatError: Format other than json or csv.
        InvalidPeriodError: ``start_date`` after ``end_date``.
    """
    fmt = _parse_format(export_format)
    if start_date > end_date:
        raise InvalidPeriodError(start_date, end_date, "start date is after end date")

    clock = clock or SystemClock()
    lines = LedgerSelector(session, company_id).ledger_lines(start_date, end_date)

    if fmt is ExportFormat.CSV:
        payload = render_csv(lines)
    else:
        payload = render_json(
            lines,
            company_id=company_id,
            start_date=start_date,
            end_date=end_date,
            generated_at=clock.now().isoformat(),
        )

    logger.info(
        "ledger_report_exported",
        extra={
            "format": fmt.value,
            "start_date": start_date.isoformat(),
            "end_date": end_date.isoformat(),
            "line_count": len(lines),
            "size_bytes": len(payload),
        },
    )
    return io.BytesIO(payload)
