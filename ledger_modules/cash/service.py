"""
Cash Module Service -- bank statement import and reconciliation.

Thin glue layer that:
1. Validates and stores imported statement lines
2. Calls the pure ``ledger_engines.matching`` engine to pick candidates
3. Links bank lines to ledger transactions with conditional updates

A match writes ``is_reconciled`` on both rows with ``WHERE is_reconciled =
false``.  If either write changes zero rows another writer got there first,
the savepoint is rolled back and the attempt reports ALREADY_RECONCILED, so
a line is never half-matched.

Usage:
    matcher = ReconciliationMatcher(session, company_id, engine, clock)
    lines = matcher.import_statement(cash_id, csv_text, actor_id=actor_id)
    results = matcher.auto_match(cash_id, actor_id=actor_id)
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from uuid import UUID, uuid4

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from ledger_engines.matching import (
    BankLine,
    MatchCandidate,
    MatchMethod,
    MatchResult,
    MatchStatus,
    classify_candidates,
)
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.exceptions import (
    AccountMismatchError,
    AlreadyReconciledError,
    BankTransactionNotFoundError,
    InvalidAccountError,
    NotReconciledError,
    TransactionVoidError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.account import AccountType
from ledger_kernel.selectors.ledger_selector import LedgerSelector
from ledger_kernel.services.ledger_engine import LedgerEngine
from ledger_modules.cash.helpers import normalize_statement_rows, parse_bank_statement_csv
from ledger_modules.cash.models import BankTransactionInfo
from ledger_modules.cash.orm import BankTransaction

logger = get_logger("modules.cash.service")

DEFAULT_MATCH_WINDOW_DAYS = 3


class ReconciliationMatcher:
    """
    Matches imported bank lines against unreconciled ledger transactions.

    Guarantees:
        - A bank line is linked to at most one ledger transaction, and a
          ledger transaction to at most one bank line.
        - Unmatching clears both flags and never touches ledger content.

    Non-goals:
        Partial and many-to-one matches.  Amount equality is exact.
    """

    def __init__(
        self,
        session: Session,
        company_id: UUID,
        engine: LedgerEngine,
        clock: Clock | None = None,
        *,
        match_window_days: int = DEFAULT_MATCH_WINDOW_DAYS,
    ):
        self._session = session
        self._company_id = company_id
        self._engine = engine
        self._clock = clock or SystemClock()
        self._window_days = match_window_days

    # =========================================================================
    # Import
    # =========================================================================

    def import_statement(
        self,
        account_id: UUID,
        rows: str | Iterable[Mapping],
        *,
        actor_id: UUID,
        import_batch_id: UUID | None = None,
    ) -> tuple[BankTransactionInfo, ...]:
        """
        Store a bank statement against an active asset account.

        ``rows`` is CSV text or an iterable of ``{date, description, amount,
        reference?}`` mappings.  Every row is validated before anything is
        written.

        Raises:
            AccountNotFoundError, AccountInactiveError, InvalidAccountError,
            MalformedImportRowError
        """
        account = self._engine.accounts.require_postable([account_id])[account_id]
        if AccountType(account.account_type) != AccountType.ASSET:
            raise InvalidAccountError(
                account.code, "bank statements can only be imported into asset accounts"
            )

        if isinstance(rows, str):
            parsed = parse_bank_statement_csv(rows)
        else:
            parsed = normalize_statement_rows(rows)

        batch_id = import_batch_id or uuid4()
        created = [
            BankTransaction(
                company_id=self._company_id,
                account_id=account_id,
                transaction_date=row.transaction_date,
                description=row.description,
                amount=row.amount,
                reference=row.reference,
                import_batch_id=batch_id,
                row_number=row.row_number,
                is_reconciled=False,
                created_by_id=actor_id,
            )
            for row in parsed
        ]
        self._session.add_all(created)
        self._session.flush()

        logger.info(
            "bank_statement_imported",
            extra={
                "account_id": str(account_id),
                "import_batch_id": str(batch_id),
                "row_count": len(created),
            },
        )
        return tuple(BankTransactionInfo.from_model(line) for line in created)

    # =========================================================================
    # Matching
    # =========================================================================

    def match(
        self,
        bank_transaction_id: UUID,
        *,
        actor_id: UUID,
        date_window: int | None = None,
    ) -> MatchResult:
        """Auto-match one bank line.  A reconciled line yields ALREADY_RECONCILED."""
        bank = self._get(bank_transaction_id)
        if bank.is_reconciled:
            return MatchResult(bank.id, MatchStatus.ALREADY_RECONCILED)
        pool = self._candidate_pool(bank.account_id)
        return self._match_one(bank, pool, self._window(date_window), actor_id)

    def auto_match(
        self,
        account_id: UUID,
        date_window: int | None = None,
        *,
        actor_id: UUID,
    ) -> tuple[MatchResult, ...]:
        """
        Auto-match every unreconciled bank line of an account.

        Candidates are read once per run.  A transaction matched earlier in
        the run leaves the pool for the lines after it.
        """
        window = self._window(date_window)
        bank_lines = self._session.execute(
            select(BankTransaction)
            .where(
                BankTransaction.company_id == self._company_id,
                BankTransaction.account_id == account_id,
                BankTransaction.is_reconciled.is_(False),
            )
            .order_by(
                BankTransaction.transaction_date,
                BankTransaction.row_number,
                BankTransaction.id,
            )
        ).scalars().all()
        pool = self._candidate_pool(account_id)

        results = []
        for bank in bank_lines:
            result = self._match_one(bank, pool, window, actor_id)
            if result.is_matched:
                pool = [c for c in pool if c.transaction_id != result.transaction_id]
            results.append(result)

        logger.info(
            "auto_match_completed",
            extra={
                "account_id": str(account_id),
                "bank_lines": len(bank_lines),
                "matched": sum(1 for r in results if r.status == MatchStatus.MATCHED),
                "ambiguous": sum(1 for r in results if r.status == MatchStatus.AMBIGUOUS),
                "unmatched": sum(1 for r in results if r.status == MatchStatus.UNMATCHED),
            },
        )
        return tuple(results)

    def manual_match(
        self,
        bank_transaction_id: UUID,
        transaction_id: UUID,
        *,
        actor_id: UUID,
    ) -> MatchResult:
        """
        Link a bank line to a chosen ledger transaction, ignoring amounts.

        Raises:
            AlreadyReconciledError: Either side is already reconciled.
            TransactionVoidError: The ledger transaction is void.
            AccountMismatchError: It has no line on the bank line's account.
        """
        bank = self._get(bank_transaction_id)
        if bank.is_reconciled:
            raise AlreadyReconciledError("Bank transaction", str(bank.id))

        txn = self._engine.get_transaction(transaction_id)
        if txn.is_void:
            raise TransactionVoidError(str(txn.id))
        if not txn.touches(bank.account_id):
            raise AccountMismatchError(str(bank.id), str(txn.id), str(bank.account_id))
        if txn.is_reconciled:
            raise AlreadyReconciledError("Transaction", str(txn.id))

        result = self._link(bank, txn.id, MatchMethod.MANUAL, actor_id)
        if not result.is_matched:
            raise AlreadyReconciledError("Bank transaction", str(bank.id))
        return result

    def unmatch(self, bank_transaction_id: UUID, *, actor_id: UUID) -> BankTransactionInfo:
        """
        Clear a match on both sides.  Ledger content is unchanged.

        Raises:
            NotReconciledError: The bank line is not matched.
        """
        bank = self._get(bank_transaction_id)
        transaction_id = bank.matched_transaction_id
        if not bank.is_reconciled or transaction_id is None:
            raise NotReconciledError(str(bank.id))

        cleared = self._session.execute(
            update(BankTransaction)
            .where(
                BankTransaction.company_id == self._company_id,
                BankTransaction.id == bank.id,
                BankTransaction.is_reconciled.is_(True),
            )
            .values(
                is_reconciled=False,
                matched_transaction_id=None,
                match_method=None,
                matched_at=None,
                matched_by_id=None,
                updated_by_id=actor_id,
            )
            .execution_options(synchronize_session="fetch")
        )
        if cleared.rowcount != 1:
            raise NotReconciledError(str(bank.id))
        self._engine.set_reconciled(transaction_id, False)
        self._session.flush()
        self._session.refresh(bank)

        logger.info(
            "bank_transaction_unmatched",
            extra={
                "bank_transaction_id": str(bank.id),
                "transaction_id": str(transaction_id),
            },
        )
        return BankTransactionInfo.from_model(bank)

    # =========================================================================
    # Reads
    # =========================================================================

    def get_bank_transaction(self, bank_transaction_id: UUID) -> BankTransactionInfo:
        return BankTransactionInfo.from_model(self._get(bank_transaction_id))

    def list_bank_transactions(
        self,
        account_id: UUID,
        *,
        unreconciled_only: bool = False,
    ) -> tuple[BankTransactionInfo, ...]:
        stmt = select(BankTransaction).where(
            BankTransaction.company_id == self._company_id,
            BankTransaction.account_id == account_id,
        )
        if unreconciled_only:
            stmt = stmt.where(BankTransaction.is_reconciled.is_(False))
        stmt = stmt.order_by(BankTransaction.transaction_date, BankTransaction.row_number)
        return tuple(
            BankTransactionInfo.from_model(line)
            for line in self._session.execute(stmt).scalars()
        )

    def list_batch(self, import_batch_id: UUID) -> tuple[BankTransactionInfo, ...]:
        """Lines of one import, in statement order."""
        stmt = (
            select(BankTransaction)
            .where(
                BankTransaction.company_id == self._company_id,
                BankTransaction.import_batch_id == import_batch_id,
            )
            .order_by(BankTransaction.row_number)
        )
        return tuple(
            BankTransactionInfo.from_model(line)
            for line in self._session.execute(stmt).scalars()
        )

    # =========================================================================
    # Internals
    # =========================================================================

    def _window(self, date_window: int | None) -> int:
        return self._window_days if date_window is None else date_window

    def _candidate_pool(self, account_id: UUID) -> list[MatchCandidate]:
        selector = LedgerSelector(self._session, self._company_id)
        return [
            MatchCandidate.from_transaction(txn, account_id)
            for txn in selector.unreconciled_transactions_touching(account_id)
        ]

    def _match_one(
        self,
        bank: BankTransaction,
        pool: list[MatchCandidate],
        window: int,
        actor_id: UUID,
    ) -> MatchResult:
        decision = classify_candidates(
            BankLine(bank.id, bank.account_id, bank.transaction_date, bank.amount),
            pool,
            window,
        )
        candidate_ids = tuple(c.transaction_id for c in decision.ranked)
        if decision.status != MatchStatus.MATCHED:
            return MatchResult(bank.id, decision.status, candidate_ids=candidate_ids)
        return self._link(bank, decision.best.transaction_id, MatchMethod.AUTO, actor_id)

    def _link(
        self,
        bank: BankTransaction,
        transaction_id: UUID,
        method: MatchMethod,
        actor_id: UUID,
    ) -> MatchResult:
        savepoint = self._session.begin_nested()
        bank_claimed = self._session.execute(
            update(BankTransaction)
            .where(
                BankTransaction.company_id == self._company_id,
                BankTransaction.id == bank.id,
                BankTransaction.is_reconciled.is_(False),
            )
            .values(
                is_reconciled=True,
                matched_transaction_id=transaction_id,
                match_method=method.value,
                matched_at=self._clock.now(),
                matched_by_id=actor_id,
                updated_by_id=actor_id,
            )
            .execution_options(synchronize_session="fetch")
        ).rowcount == 1
        if not bank_claimed or not self._engine.set_reconciled(transaction_id, True):
            savepoint.rollback()
            logger.warning(
                "match_lost_race",
                extra={
                    "bank_transaction_id": str(bank.id),
                    "transaction_id": str(transaction_id),
                    "bank_claimed": bank_claimed,
                },
            )
            return MatchResult(bank.id, MatchStatus.ALREADY_RECONCILED)
        savepoint.commit()

        logger.info(
            "bank_transaction_matched",
            extra={
                "bank_transaction_id": str(bank.id),
                "transaction_id": str(transaction_id),
                "method": method.value,
            },
        )
        return MatchResult(
            bank_transaction_id=bank.id,
            status=MatchStatus.MATCHED,
            transaction_id=transaction_id,
            method=method,
            candidate_ids=(transaction_id,),
        )

    def _get(self, bank_transaction_id: UUID) -> BankTransaction:
        bank = self._session.execute(
            select(BankTransaction)
            .where(
                BankTransaction.company_id == self._company_id,
                BankTransaction.id == bank_transaction_id,
            )
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if bank is None:
            raise BankTransactionNotFoundError(str(bank_transaction_id))
        return bank
