"""
LedgerEngine -- the only writer of ledger transactions.

Responsibility:
    Validates and appends balanced transactions, voids them by posting a
    mirror-image reversal, and flips the reconciliation flag on behalf of
    ReconciliationMatcher.  Every write it makes for one call happens in the
    caller's database transaction, so a posting is all-or-nothing.

Architecture position:
    Kernel > Services.  Consumes AccountRegistry, IdempotencyGuard,
    PeriodLock and SequenceService.  Called by InvoiceLifecycle,
    ReconciliationMatcher and LedgerCore.

Posting pipeline:

    lookup(key) --hit--> already_posted
        |
    validate_structure --> require_postable --> validate_balance
        |
    assert_date_open(transaction_date)
        |
    claim(key) --lost--> winner's transaction
        |
    next seq (locks the company counter row)
        |
    insert transaction + lines --> cached balance deltas

Invariants enforced:
    - sum(debits) == sum(credits) on every transaction, exactly.
    - Transactions and lines are never updated or deleted, except the
      one-way void flag and the reconciliation flag (see db/immutability.py).
    - seq is gap-free per company and equals creation order.
    - No posting is dated inside a locked period; reversals are checked
      on their own date.

Failure modes:
    - LedgerValidationError subclasses before any write.
    - PeriodLockedError, TransactionAlreadyVoidError, ReversalNotAllowedError.
    - IdempotencyKeyConflictError / IdempotencyRaceLostError from the guard.
"""

from __future__ import annotations

import time
from datetime import date
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from ledger_kernel.domain.clock import Clock
from ledger_kernel.domain.dtos import (
    LineSpec,
    PostingResult,
    TransactionDraft,
    TransactionInfo,
)
from ledger_kernel.domain.validation import validate_balance, validate_structure
from ledger_kernel.exceptions import (
    AlreadyReconciledError,
    MissingReasonError,
    ReversalNotAllowedError,
    TransactionAlreadyVoidError,
    TransactionNotFoundError,
    UnbalancedEntryError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.ledger import LedgerTransaction, TransactionLine
from ledger_kernel.selectors.ledger_selector import LedgerSelector
from ledger_kernel.services.account_registry import AccountRegistry
from ledger_kernel.services.base import BaseService
from ledger_kernel.services.idempotency_guard import DEFAULT_TTL, IdempotencyGuard
from ledger_kernel.services.period_lock import PeriodLock
from ledger_kernel.services.sequence_service import SequenceService
from ledger_kernel.utils.hashing import hash_payload
from ledger_kernel.utils.idempotency import (
    LEDGER_POST,
    LEDGER_VOID,
    derive_idempotency_key,
)

logger = get_logger("services.ledger_engine")

DEFAULT_NUMBER_PREFIX = "T"

RESULT_TYPE = "ledger_transaction"


class LedgerEngine(BaseService[LedgerTransaction]):
    """
    Append-only double-entry posting for one company.

    Contract:
        ``post`` and ``void`` return a PostingResult whose status tells a
        fresh posting apart from an idempotent replay.  Replays return the
        original transaction as it is now (a replayed post of a since-voided
        transaction shows ``is_void=True``).

    Non-goals:
        Does NOT commit.  Does NOT retry; LedgerCore retries the whole
        operation on concurrency errors.
    """

    def __init__(
        self,
        session: Session,
        company_id: UUID,
        clock: Clock | None = None,
        *,
        number_prefix: str = DEFAULT_NUMBER_PREFIX,
        idempotency_ttl=DEFAULT_TTL,
    ):
        super().__init__(session, company_id, clock)
        self.number_prefix = number_prefix
        self.accounts = AccountRegistry(session, company_id, self.clock)
        self.periods = PeriodLock(session, company_id, self.clock)
        self.guard = IdempotencyGuard(session, company_id, self.clock, ttl=idempotency_ttl)
        self._sequence = SequenceService(session, company_id)

    # ------------------------------------------------------------------
    # Posting
    # ------------------------------------------------------------------

    def post(
        self,
        draft: TransactionDraft,
        idempotency_key: str,
        *,
        actor_id: UUID,
    ) -> PostingResult:
        """
        Validate and append a balanced transaction.

        Preconditions:
            ``draft.reversal_of_id`` is None; reversals go through ``void``.

        Raises:
            InvalidLineError, AccountNotFoundError, AccountInactiveError,
            UnbalancedEntryError, PeriodLockedError,
            IdempotencyKeyConflictError, IdempotencyRaceLostError
        """
        started = time.monotonic()
        request_hash = hash_payload(draft.to_payload())

        prior = self.guard.lookup(LEDGER_POST, idempotency_key, request_hash)
        if prior is not None:
            return PostingResult.already_posted(self.get_transaction(prior.result_id))

        validate_structure(draft)
        self.accounts.require_postable(line.account_id for line in draft.lines)
        try:
            validate_balance(draft)
        except UnbalancedEntryError as exc:
            logger.warning(
                "unbalanced_entry",
                extra={
                    "debits": str(exc.debits),
                    "credits": str(exc.credits),
                    "transaction_date": draft.transaction_date.isoformat(),
                },
            )
            raise
        self.periods.assert_date_open(draft.transaction_date)

        transaction_id = uuid4()
        winner = self.guard.claim(
            LEDGER_POST,
            idempotency_key,
            request_hash,
            RESULT_TYPE,
            transaction_id,
            actor_id=actor_id,
        )
        if winner is not None:
            return PostingResult.already_posted(self.get_transaction(winner.result_id))

        txn = self._append(transaction_id, draft, idempotency_key, actor_id)

        logger.info(
            "transaction_posted",
            extra={
                "transaction_id": str(txn.id),
                "transaction_number": txn.transaction_number,
                "transaction_type": draft.transaction_type.value,
                "transaction_date": draft.transaction_date.isoformat(),
                "total_amount": str(txn.total_amount),
                "line_count": len(draft.lines),
                "duration_ms": round((time.monotonic() - started) * 1000, 2),
            },
        )
        return PostingResult.posted(TransactionInfo.from_model(txn))

    def _append(
        self,
        transaction_id: UUID,
        draft: TransactionDraft,
        idempotency_key: str,
        actor_id: UUID,
    ) -> LedgerTransaction:
        seq = self._sequence.next_value(SequenceService.LEDGER_TRANSACTION)
        total = draft.total_debits

        txn = LedgerTransaction(
            id=transaction_id,
            company_id=self.company_id,
            seq=seq,
            transaction_number=f"{self.number_prefix}-{seq:06d}",
            transaction_date=draft.transaction_date,
            transaction_type=draft.transaction_type.value,
            total_amount=total,
            reference=draft.reference,
            description=draft.description,
            idempotency_key=idempotency_key,
            is_void=False,
            is_reconciled=False,
            reversal_of_id=draft.reversal_of_id,
            created_by_id=actor_id,
        )
        for number, spec in enumerate(draft.lines, start=1):
            txn.lines.append(
                TransactionLine(
                    company_id=self.company_id,
                    line_number=number,
                    account_id=spec.account_id,
                    debit_amount=spec.debit,
                    credit_amount=spec.credit,
                    memo=spec.memo,
                    created_by_id=actor_id,
                )
            )
        self.session.add(txn)
        self.session.flush()

        self.accounts.apply_balance_deltas(self._balance_deltas(draft))
        return txn

    def _balance_deltas(self, draft: TransactionDraft) -> dict[UUID, Decimal]:
        accounts = self.accounts.require_postable(
            (line.account_id for line in draft.lines), allow_inactive=True
        )
        deltas: dict[UUID, Decimal] = {}
        for line in draft.lines:
            effect = accounts[line.account_id].balance_effect(line.debit, line.credit)
            deltas[line.account_id] = deltas.get(line.account_id, Decimal("0")) + effect
        return deltas

    # ------------------------------------------------------------------
    # Voiding
    # ------------------------------------------------------------------

    def void(
        self,
        transaction_id: UUID,
        reason: str,
        *,
        actor_id: UUID,
        reversal_date: date | None = None,
        idempotency_key: str | None = None,
    ) -> PostingResult:
        """
        Void a transaction by posting its mirror image.

        The reversal has the same accounts and amounts with debit and credit
        swapped, is dated ``reversal_date`` (default: today) and points back
        through ``reversal_of_id``.  The original keeps every line and only
        gains its void flag and metadata.

        Returns:
            PostingResult carrying the reversal.

        Raises:
            MissingReasonError, TransactionNotFoundError,
            TransactionAlreadyVoidError, ReversalNotAllowedError,
            AlreadyReconciledError (matched to a bank line), PeriodLockedError
        """
        if reason is None or not reason.strip():
            raise MissingReasonError("void a transaction")
        reason = reason.strip()

        key = idempotency_key or derive_idempotency_key(transaction_id, "void")
        request_hash = hash_payload(
            {"transaction_id": transaction_id, "action": "void"}
        )
        prior = self.guard.lookup(LEDGER_VOID, key, request_hash)
        if prior is not None:
            return PostingResult.already_posted(self.get_transaction(prior.result_id))

        original = self._get_for_update(transaction_id)
        if original.is_void:
            raise TransactionAlreadyVoidError(str(original.id), original.transaction_number)
        if original.reversal_of_id is not None:
            raise ReversalNotAllowedError(str(original.id), original.transaction_number)
        if original.is_reconciled:
            # the bank line must be unmatched first
            raise AlreadyReconciledError("Transaction", str(original.id))

        reversal_date = reversal_date or self.clock.today()
        self.periods.assert_date_open(reversal_date)

        draft = TransactionDraft(
            transaction_date=reversal_date,
            transaction_type=original.transaction_type,
            lines=tuple(
                LineSpec(
                    account_id=line.account_id,
                    debit=line.debit_amount,
                    credit=line.credit_amount,
                    memo=line.memo,
                ).mirrored()
                for line in original.lines
            ),
            reference=original.reference,
            description=f"Reversal of {original.transaction_number}: {reason}",
            reversal_of_id=original.id,
        )

        reversal_id = uuid4()
        winner = self.guard.claim(
            LEDGER_VOID,
            key,
            request_hash,
            RESULT_TYPE,
            reversal_id,
            actor_id=actor_id,
        )
        if winner is not None:
            return PostingResult.already_posted(self.get_transaction(winner.result_id))

        reversal = self._append(reversal_id, draft, key, actor_id)

        original.is_void = True
        original.void_reason = reason
        original.voided_at = self.clock.now()
        original.voided_by_id = actor_id
        original.updated_by_id = actor_id
        self.session.flush()

        logger.info(
            "transaction_voided",
            extra={
                "transaction_id": str(original.id),
                "transaction_number": original.transaction_number,
                "reversal_id": str(reversal.id),
                "reversal_number": reversal.transaction_number,
                "reversal_date": reversal_date.isoformat(),
                "reason": reason,
            },
        )
        return PostingResult.posted(TransactionInfo.from_model(reversal))

    # ------------------------------------------------------------------
    # Reconciliation flag
    # ------------------------------------------------------------------

    def set_reconciled(self, transaction_id: UUID, reconciled: bool) -> bool:
        """
        Flip ``is_reconciled`` only if it currently holds the opposite value.

        Returns:
            True if this call changed the row, False if another writer got
            there first (or the transaction is void when reconciling).
        """
        conditions = [
            LedgerTransaction.company_id == self.company_id,
            LedgerTransaction.id == transaction_id,
            LedgerTransaction.is_reconciled.is_(not reconciled),
        ]
        if reconciled:
            conditions.append(LedgerTransaction.is_void.is_(False))
        result = self.session.execute(
            update(LedgerTransaction)
            .where(*conditions)
            .values(is_reconciled=reconciled)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount == 1

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_transaction(self, transaction_id: UUID) -> TransactionInfo:
        txn = self.session.execute(
            select(LedgerTransaction).where(
                LedgerTransaction.company_id == self.company_id,
                LedgerTransaction.id == transaction_id,
            )
        ).scalar_one_or_none()
        if txn is None:
            raise TransactionNotFoundError(str(transaction_id))
        return TransactionInfo.from_model(txn)

    def list_transactions(
        self, start_date: date, end_date: date
    ) -> tuple[TransactionInfo, ...]:
        return tuple(
            LedgerSelector(self.session, self.company_id).transactions_between(
                start_date, end_date
            )
        )

    def _get_for_update(self, transaction_id: UUID) -> LedgerTransaction:
        txn = self.session.execute(
            select(LedgerTransaction)
            .where(
                LedgerTransaction.company_id == self.company_id,
                LedgerTransaction.id == transaction_id,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if txn is None:
            raise TransactionNotFoundError(str(transaction_id))
        return txn
