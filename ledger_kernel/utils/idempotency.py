"""
Idempotency key conventions.

Keys are deduplicated per ``(operation_kind, key)``.  Callers supply opaque
keys for their own requests; keys the ledger derives for internal postings
(invoice finalize, cash receipt, void) follow ``{record_id}:{action}`` so
that retried workflow steps never double-post.
"""

from uuid import UUID

# Operation kinds
LEDGER_POST = "ledger.post"
LEDGER_VOID = "ledger.void"
ACCOUNT_CREATE = "account.create"
INVOICE_CREATE = "invoice.create"
INVOICE_TRANSITION = "invoice.transition"
BANK_IMPORT = "bank.import"
PERIOD_CREATE = "period.create"
PERIOD_LOCK = "period.lock"
PERIOD_UNLOCK = "period.unlock"


def derive_idempotency_key(record_id: UUID | str, action: str) -> str:
    """
    Key for a posting the ledger makes on a record's behalf.

    Example:
        >>> derive_idempotency_key(invoice_id, "finalize")
        "6f1c...:finalize"
    """
    return f"{record_id}:{action}"
