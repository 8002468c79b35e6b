"""
Ledger Modules.

Thin orchestration layers over the Ledger Kernel and Engines.

Modules:
- AR: Customer invoices and their lifecycle postings
- Cash: Bank statement import and reconciliation

Actual posting logic lives in the kernel; matching logic in the engines.
"""
