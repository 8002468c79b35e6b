"""
ORM-level append-only enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

Posted ledger transactions are the audit trail.  A posting may be voided,
which leaves it in place and adds a mirror-image reversal, but it is never
edited and never deleted.  Services already follow that rule; these
listeners make any code path that tries otherwise fail at flush time,
before SQL reaches the database.

    session.flush()
         |
         v
    [before_update / before_delete] --> _check_*() --> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity            | Rule
------------------|----------------------------------------------------------
LedgerTransaction | Only is_void (false -> true, once, with its metadata) and
                  | is_reconciled may change.  Never deleted.
TransactionLine   | Never updated, never deleted.
Account           | code / account_type / normal_balance frozen once posted
                  | to.  Never deleted once posted to.
IdempotencyRecord | Never updated.  Deletion allowed (expiry purge).
PeriodLockEvent   | Never updated, never deleted.

updated_at / updated_by_id are audit metadata and may always change.

Bulk ``UPDATE`` statements bypass mapper events.  The only bulk statements
in the ledger are the conditional reconciliation-flag writes in
ReconciliationMatcher, which touch nothing but is_reconciled.
"""

from sqlalchemy import event, exists, inspect, select
from sqlalchemy.orm import Session

from ledger_kernel.exceptions import ImmutabilityViolationError
from ledger_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

AUDIT_FIELDS = frozenset({"updated_at", "updated_by_id"})

TRANSACTION_MUTABLE_FIELDS = frozenset(
    {"is_void", "void_reason", "voided_at", "voided_by_id", "is_reconciled"}
) | AUDIT_FIELDS

# Set together with is_void; may only go from NULL to a value
VOID_METADATA_FIELDS = frozenset({"void_reason", "voided_at", "voided_by_id"})

ACCOUNT_STRUCTURAL_FIELDS = frozenset({"code", "account_type", "normal_balance"})


def _violation(entity_type: str, entity_id, field: str | None, reason: str):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "field": field,
        },
    )
    return ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=reason,
    )


def _changed_fields(target) -> list[str]:
    return [
        attr.key for attr in inspect(target).attrs if attr.history.has_changes()
    ]


# =============================================================================
# LedgerTransaction / TransactionLine
# =============================================================================


def _check_transaction_update(mapper, connection, target):
    """Allow only the one-way void flag and the reconciliation flag."""
    for key in _changed_fields(target):
        if key not in TRANSACTION_MUTABLE_FIELDS:
            raise _violation(
                "LedgerTransaction",
                target.id,
                key,
                f"Cannot modify field '{key}' on a posted transaction",
            )

    void_history = inspect(target).attrs.is_void.history
    if void_history.deleted and void_history.deleted[0] and not target.is_void:
        raise _violation(
            "LedgerTransaction",
            target.id,
            "is_void",
            "A void transaction cannot be un-voided",
        )

    for key in VOID_METADATA_FIELDS:
        hist = inspect(target).attrs[key].history
        if hist.deleted and hist.deleted[0] is not None:
            raise _violation(
                "LedgerTransaction",
                target.id,
                key,
                f"Void metadata '{key}' is already recorded",
            )


def _check_transaction_delete(mapper, connection, target):
    raise _violation(
        "LedgerTransaction",
        target.id,
        None,
        "Posted transactions cannot be deleted; void them instead",
    )


def _check_line_update(mapper, connection, target):
    for key in _changed_fields(target):
        if key in AUDIT_FIELDS:
            continue
        raise _violation(
            "TransactionLine",
            target.id,
            key,
            f"Cannot modify field '{key}' on a posting line",
        )


def _check_line_delete(mapper, connection, target):
    raise _violation(
        "TransactionLine",
        target.id,
        None,
        "Posting lines cannot be deleted",
    )


# =============================================================================
# Account
# =============================================================================


def _account_has_postings(connection, account_id) -> bool:
    from ledger_kernel.models.ledger import TransactionLine

    return bool(
        connection.execute(
            select(exists().where(TransactionLine.account_id == account_id))
        ).scalar()
    )


def _check_account_update(mapper, connection, target):
    changed = set(_changed_fields(target)) & ACCOUNT_STRUCTURAL_FIELDS
    if changed and _account_has_postings(connection, target.id):
        field = sorted(changed)[0]
        raise _violation(
            "Account",
            target.id,
            field,
            f"Cannot change '{field}' on an account that has postings",
        )


def _check_account_deletion_before_flush(session, flush_context, instances):
    """
    Block deletion of accounts that carry postings.

    Runs at before_flush because mapper-level before_delete fires after the
    flush plan is fixed.
    """
    from ledger_kernel.models.account import Account
    from ledger_kernel.models.ledger import TransactionLine

    for obj in list(session.deleted):
        if not isinstance(obj, Account):
            continue
        with session.no_autoflush:
            referenced = session.execute(
                select(exists().where(TransactionLine.account_id == obj.id))
            ).scalar()
        if referenced:
            raise _violation(
                "Account",
                obj.id,
                None,
                "Accounts with postings cannot be deleted; deactivate them instead",
            )


# =============================================================================
# IdempotencyRecord / PeriodLockEvent
# =============================================================================


def _check_idempotency_update(mapper, connection, target):
    raise _violation(
        "IdempotencyRecord",
        target.id,
        None,
        "Idempotency records are write-once",
    )


def _check_lock_event_update(mapper, connection, target):
    raise _violation(
        "PeriodLockEvent",
        target.id,
        None,
        "Period lock events are append-only",
    )


def _check_lock_event_delete(mapper, connection, target):
    raise _violation(
        "PeriodLockEvent",
        target.id,
        None,
        "Period lock events are append-only",
    )


# =============================================================================
# Registration
# =============================================================================


def _listeners():
    from ledger_kernel.models.account import Account
    from ledger_kernel.models.accounting_period import PeriodLockEvent
    from ledger_kernel.models.idempotency import IdempotencyRecord
    from ledger_kernel.models.ledger import LedgerTransaction, TransactionLine

    return (
        (Session, "before_flush", _check_account_deletion_before_flush),
        (LedgerTransaction, "before_update", _check_transaction_update),
        (LedgerTransaction, "before_delete", _check_transaction_delete),
        (TransactionLine, "before_update", _check_line_update),
        (TransactionLine, "before_delete", _check_line_delete),
        (Account, "before_update", _check_account_update),
        (IdempotencyRecord, "before_update", _check_idempotency_update),
        (PeriodLockEvent, "before_update", _check_lock_event_update),
        (PeriodLockEvent, "before_delete", _check_lock_event_delete),
    )


def register_immutability_listeners() -> None:
    """Register every append-only listener.  Safe to call repeatedly."""
    for target, event_name, fn in _listeners():
        if not event.contains(target, event_name, fn):
            event.listen(target, event_name, fn)


def unregister_immutability_listeners() -> None:
    """Remove the listeners.  FOR TESTING ONLY."""
    for target, event_name, fn in _listeners():
        if event.contains(target, event_name, fn):
            event.remove(target, event_name, fn)
