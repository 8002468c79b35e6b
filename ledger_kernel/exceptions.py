"""
Typed exception hierarchy for the ledger core.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the ledger must tell three situations apart without parsing
message text:

  - the request is wrong and must be fixed before resubmitting;
  - the request is well formed but conflicts with ledger state, so a
    blind retry will not help;
  - the request lost a race and can be retried as-is.

Every exception therefore has a CODE class attribute (machine-readable,
API-safe), carries its context as structured attributes, and derives from
exactly one of the three category bases below.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    LedgerKernelError (base)
    |
    +-- LedgerValidationError
    |   +-- UnbalancedEntryError
    |   +-- InvalidLineError
    |   +-- AccountNotFoundError
    |   +-- AccountInactiveError
    |   +-- InvalidAccountError
    |   +-- DuplicateCodeError
    |   +-- InvalidParentError
    |   +-- InvalidTransitionError
    |   +-- MalformedImportRowError
    |   +-- MissingReasonError
    |   +-- InvalidPeriodError
    |   +-- PeriodOverlapError
    |   +-- PeriodGapError
    |   +-- InvoiceValidationError
    |   +-- DuplicateInvoiceNumberError
    |   +-- UnsupportedExportFormatError
    |   +-- RecordNotFoundError
    |       +-- TransactionNotFoundError
    |       +-- InvoiceNotFoundError
    |       +-- BankTransactionNotFoundError
    |       +-- PeriodNotFoundError
    |
    +-- LedgerConflictError
    |   +-- PeriodLockedError
    |   +-- PeriodAlreadyLockedError
    |   +-- PeriodNotLockedError
    |   +-- TransactionAlreadyVoidError
    |   +-- ReversalNotAllowedError
    |   +-- TransactionVoidError
    |   +-- AlreadyReconciledError
    |   +-- NotReconciledError
    |   +-- AccountMismatchError
    |   +-- InvoiceImmutableError
    |   +-- IdempotencyKeyConflictError
    |
    +-- LedgerConcurrencyError
    |   +-- IdempotencyRaceLostError
    |   +-- TransientContentionError
    |
    +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                       | When Raised
-------------|----------------------------|------------------------------------
Validation   | UNBALANCED_ENTRY           | Debits != Credits
             | INVALID_LINE               | Line has both/neither side, or <= 0
             | ACCOUNT_NOT_FOUND          | Account id unknown to the company
             | ACCOUNT_INACTIVE           | Posting to a deactivated account
             | DUPLICATE_CODE             | Account code already used
             | INVALID_PARENT             | Parent missing or would form a cycle
             | INVALID_TRANSITION         | Invoice edge not in the workflow
             | MALFORMED_IMPORT_ROW       | Bank statement row unparseable
             | MISSING_REASON             | Lock/unlock/void without a reason
             | PERIOD_OVERLAP             | Period date range collides
             | PERIOD_GAP                 | Period leaves a hole in the calendar
             | *_NOT_FOUND                | Referenced record does not exist
-------------|----------------------------|------------------------------------
Conflict     | PERIOD_LOCKED              | Posting dated inside locked period
             | TRANSACTION_ALREADY_VOID   | Voiding twice
             | ALREADY_RECONCILED         | Matching a reconciled line
             | INVOICE_IMMUTABLE          | Editing a finalized invoice
             | IDEMPOTENCY_KEY_CONFLICT   | Same key, different request
-------------|----------------------------|------------------------------------
Concurrency  | IDEMPOTENCY_RACE_LOST      | Another writer claimed the key first
             | TRANSIENT_CONTENTION       | Still contended after retries
-------------|----------------------------|------------------------------------
Immutability | IMMUTABILITY_VIOLATION     | Mutating an append-only record
"""

from datetime import date
from decimal import Decimal


class LedgerKernelError(Exception):
    """Base exception for all ledger core errors."""

    code: str = "LEDGER_KERNEL_ERROR"


class LedgerValidationError(LedgerKernelError):
    """The request itself is invalid. Nothing was written."""

    code: str = "VALIDATION_ERROR"


class LedgerConflictError(LedgerKernelError):
    """The request conflicts with current ledger state."""

    code: str = "CONFLICT_ERROR"


class LedgerConcurrencyError(LedgerKernelError):
    """The request lost a race. Retrying may succeed."""

    code: str = "CONCURRENCY_ERROR"


# Validation errors


class UnbalancedEntryError(LedgerValidationError):
    """Transaction debits do not equal credits."""

    code: str = "UNBALANCED_ENTRY"

    def __init__(self, debits: Decimal, credits: Decimal):
        self.debits = debits
        self.credits = credits
        super().__init__(
            f"Transaction is not balanced. Debits: {debits}, Credits: {credits}"
        )


class InvalidLineError(LedgerValidationError):
    """A posting line is structurally invalid."""

    code: str = "INVALID_LINE"

    def __init__(self, line_number: int, reason: str):
        self.line_number = line_number
        self.reason = reason
        super().__init__(f"Invalid line {line_number}: {reason}")


class AccountNotFoundError(LedgerValidationError):
    code: str = "ACCOUNT_NOT_FOUND"

    def __init__(self, account_id: str):
        self.account_id = account_id
        super().__init__(f"Account not found: {account_id}")


class AccountInactiveError(LedgerValidationError):
    """Account is deactivated and cannot receive postings."""

    code: str = "ACCOUNT_INACTIVE"

    def __init__(self, account_id: str, account_code: str):
        self.account_id = account_id
        self.account_code = account_code
        super().__init__(f"Account {account_code} ({account_id}) is inactive")


class InvalidAccountError(LedgerValidationError):
    """Account attributes are invalid (empty code or name, unknown type)."""

    code: str = "INVALID_ACCOUNT"

    def __init__(self, account_code: str, reason: str):
        self.account_code = account_code
        self.reason = reason
        super().__init__(f"Invalid account {account_code!r}: {reason}")


class DuplicateCodeError(LedgerValidationError):
    code: str = "DUPLICATE_CODE"

    def __init__(self, account_code: str):
        self.account_code = account_code
        super().__init__(f"Account code already exists: {account_code}")


class InvalidParentError(LedgerValidationError):
    """Parent account does not exist or would create a cycle."""

    code: str = "INVALID_PARENT"

    def __init__(self, account_id: str | None, parent_id: str, reason: str):
        self.account_id = account_id
        self.parent_id = parent_id
        self.reason = reason
        super().__init__(f"Invalid parent {parent_id}: {reason}")


class InvalidTransitionError(LedgerValidationError):
    """Invoice status change is not an edge of the workflow."""

    code: str = "INVALID_TRANSITION"

    def __init__(self, from_status: str, to_status: str):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Invalid invoice transition: {from_status} -> {to_status}"
        )


class MalformedImportRowError(LedgerValidationError):
    """A bank statement row could not be parsed."""

    code: str = "MALFORMED_IMPORT_ROW"

    def __init__(self, row_number: int, reason: str):
        self.row_number = row_number
        self.reason = reason
        super().__init__(f"Malformed statement row {row_number}: {reason}")


class MissingReasonError(LedgerValidationError):
    code: str = "MISSING_REASON"

    def __init__(self, action: str):
        self.action = action
        super().__init__(f"A non-empty reason is required to {action}")


class InvalidPeriodError(LedgerValidationError):
    code: str = "INVALID_PERIOD"

    def __init__(self, start_date: date, end_date: date, reason: str):
        self.start_date = start_date
        self.end_date = end_date
        self.reason = reason
        super().__init__(f"Invalid period {start_date}..{end_date}: {reason}")


class PeriodOverlapError(LedgerValidationError):
    """New period overlaps an existing one."""

    code: str = "PERIOD_OVERLAP"

    def __init__(self, start_date: date, end_date: date, existing_period: str):
        self.start_date = start_date
        self.end_date = end_date
        self.existing_period = existing_period
        super().__init__(
            f"Period {start_date}..{end_date} overlaps existing period "
            f"{existing_period}"
        )


class PeriodGapError(LedgerValidationError):
    """New period is not contiguous with the existing calendar."""

    code: str = "PERIOD_GAP"

    def __init__(self, start_date: date, end_date: date):
        self.start_date = start_date
        self.end_date = end_date
        super().__init__(
            f"Period {start_date}..{end_date} is not contiguous with existing periods"
        )


class InvoiceValidationError(LedgerValidationError):
    code: str = "INVOICE_INVALID"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid invoice: {reason}")


class DuplicateInvoiceNumberError(LedgerValidationError):
    code: str = "DUPLICATE_INVOICE_NUMBER"

    def __init__(self, invoice_number: str):
        self.invoice_number = invoice_number
        super().__init__(f"Invoice number already exists: {invoice_number}")


class UnsupportedExportFormatError(LedgerValidationError):
    code: str = "UNSUPPORTED_EXPORT_FORMAT"

    def __init__(self, export_format: str):
        self.export_format = export_format
        super().__init__(f"Unsupported export format: {export_format}")


class RecordNotFoundError(LedgerValidationError):
    """Base for references to records that do not exist."""

    code: str = "NOT_FOUND"
    record_type: str = "record"

    def __init__(self, record_id: str):
        self.record_id = record_id
        super().__init__(f"{self.record_type} not found: {record_id}")


class TransactionNotFoundError(RecordNotFoundError):
    code: str = "TRANSACTION_NOT_FOUND"
    record_type = "Transaction"


class InvoiceNotFoundError(RecordNotFoundError):
    code: str = "INVOICE_NOT_FOUND"
    record_type = "Invoice"


class BankTransactionNotFoundError(RecordNotFoundError):
    code: str = "BANK_TRANSACTION_NOT_FOUND"
    record_type = "Bank transaction"


class PeriodNotFoundError(RecordNotFoundError):
    code: str = "PERIOD_NOT_FOUND"
    record_type = "Accounting period"


# Conflict errors


class PeriodLockedError(LedgerConflictError):
    """Posting date falls inside a locked accounting period."""

    code: str = "PERIOD_LOCKED"

    def __init__(self, transaction_date: date, period_name: str):
        self.transaction_date = transaction_date
        self.period_name = period_name
        super().__init__(
            f"Cannot post on {transaction_date}: period {period_name} is locked"
        )


class PeriodAlreadyLockedError(LedgerConflictError):
    code: str = "PERIOD_ALREADY_LOCKED"

    def __init__(self, period_id: str):
        self.period_id = period_id
        super().__init__(f"Period {period_id} is already locked")


class PeriodNotLockedError(LedgerConflictError):
    code: str = "PERIOD_NOT_LOCKED"

    def __init__(self, period_id: str):
        self.period_id = period_id
        super().__init__(f"Period {period_id} is not locked")


class TransactionAlreadyVoidError(LedgerConflictError):
    code: str = "TRANSACTION_ALREADY_VOID"

    def __init__(self, transaction_id: str, transaction_number: str):
        self.transaction_id = transaction_id
        self.transaction_number = transaction_number
        super().__init__(f"Transaction {transaction_number} is already void")


class ReversalNotAllowedError(LedgerConflictError):
    """Reversing transactions cannot themselves be voided."""

    code: str = "REVERSAL_NOT_ALLOWED"

    def __init__(self, transaction_id: str, transaction_number: str):
        self.transaction_id = transaction_id
        self.transaction_number = transaction_number
        super().__init__(
            f"Transaction {transaction_number} is a reversal and cannot be voided"
        )


class TransactionVoidError(LedgerConflictError):
    """Operation requires a non-void transaction."""

    code: str = "TRANSACTION_VOID"

    def __init__(self, transaction_id: str):
        self.transaction_id = transaction_id
        super().__init__(f"Transaction {transaction_id} is void")


class AlreadyReconciledError(LedgerConflictError):
    code: str = "ALREADY_RECONCILED"

    def __init__(self, record_type: str, record_id: str):
        self.record_type = record_type
        self.record_id = record_id
        super().__init__(f"{record_type} {record_id} is already reconciled")


class NotReconciledError(LedgerConflictError):
    code: str = "NOT_RECONCILED"

    def __init__(self, bank_transaction_id: str):
        self.bank_transaction_id = bank_transaction_id
        super().__init__(f"Bank transaction {bank_transaction_id} is not matched")


class AccountMismatchError(LedgerConflictError):
    """Ledger transaction does not touch the bank line's account."""

    code: str = "ACCOUNT_MISMATCH"

    def __init__(self, bank_transaction_id: str, transaction_id: str, account_id: str):
        self.bank_transaction_id = bank_transaction_id
        self.transaction_id = transaction_id
        self.account_id = account_id
        super().__init__(
            f"Transaction {transaction_id} does not touch account {account_id} "
            f"of bank transaction {bank_transaction_id}"
        )


class InvoiceImmutableError(LedgerConflictError):
    """Invoice content can only change while it is a draft."""

    code: str = "INVOICE_IMMUTABLE"

    def __init__(self, invoice_id: str, status: str):
        self.invoice_id = invoice_id
        self.status = status
        super().__init__(f"Invoice {invoice_id} is {status} and cannot be edited")


class IdempotencyKeyConflictError(LedgerConflictError):
    """Idempotency key was reused for a different request."""

    code: str = "IDEMPOTENCY_KEY_CONFLICT"

    def __init__(
        self,
        operation_kind: str,
        idempotency_key: str,
        expected_hash: str,
        received_hash: str,
    ):
        self.operation_kind = operation_kind
        self.idempotency_key = idempotency_key
        self.expected_hash = expected_hash
        self.received_hash = received_hash
        super().__init__(
            f"Idempotency key {idempotency_key!r} for {operation_kind} was "
            f"already used with a different request"
        )


# Concurrency errors


class IdempotencyRaceLostError(LedgerConcurrencyError):
    """A concurrent writer claimed the same idempotency key first."""

    code: str = "IDEMPOTENCY_RACE_LOST"

    def __init__(self, operation_kind: str, idempotency_key: str):
        self.operation_kind = operation_kind
        self.idempotency_key = idempotency_key
        super().__init__(
            f"Lost race for idempotency key {idempotency_key!r} ({operation_kind})"
        )


class TransientContentionError(LedgerConcurrencyError):
    """Operation still contended after the retry bound."""

    code: str = "TRANSIENT_CONTENTION"

    def __init__(self, operation: str, attempts: int):
        self.operation = operation
        self.attempts = attempts
        super().__init__(
            f"Operation {operation} still contended after {attempts} attempts"
        )


# Immutability


class ImmutabilityViolationError(LedgerKernelError):
    """Attempt to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Cannot modify {entity_type} {entity_id}: {reason}"
        )
