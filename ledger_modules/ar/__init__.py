"""
Accounts Receivable Module.

Customer invoices: drafting, the status workflow, and the finalize,
cash-receipt and cancellation postings it drives.
"""

from ledger_modules.ar.config import ARConfig
from ledger_modules.ar.models import InvoiceInfo, InvoiceLineInfo, InvoiceLineSpec, InvoiceStatus
from ledger_modules.ar.service import InvoiceLifecycle
from ledger_modules.ar.workflows import (
    INVOICE_WORKFLOW,
    PostingEffect,
    TransitionPlan,
    plan_transition,
)

__all__ = [
    "ARConfig",
    "INVOICE_WORKFLOW",
    "InvoiceInfo",
    "InvoiceLifecycle",
    "InvoiceLineInfo",
    "InvoiceLineSpec",
    "InvoiceStatus",
    "PostingEffect",
    "TransitionPlan",
    "plan_transition",
]
