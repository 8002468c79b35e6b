"""
ledger_services -- the ledger's operation surface.

``LedgerCore`` wires settings into kernel and module services and runs
every operation in its own transaction with retry and idempotency.
"""

from ledger_services.ledger_core import LedgerCore
from ledger_services.report_export import CSV_COLUMNS, ExportFormat, export_ledger_report
from ledger_services.retry import is_transient, run_with_retry

__all__ = [
    "CSV_COLUMNS",
    "ExportFormat",
    "LedgerCore",
    "export_ledger_report",
    "is_transient",
    "run_with_retry",
]
