"""
ledger_services.ledger_core -- Operation surface of the ledger.

Responsibility:
    One method per external operation.  Each call:

    1. binds ``LogContext`` (company, actor, idempotency key, operation);
    2. opens a fresh ``session_scope`` (commit on success, rollback on error);
    3. builds every service for that session exactly once;
    4. dedupes on ``(operation_kind, idempotency_key)`` when a key is given;
    5. is retried as a whole on concurrency errors.

Architecture position:
    Services -- the top layer.  The only place where ``ledger_config``
    settings meet kernel and module services; those receive plain values.

Invariants enforced:
    - No service outlives the session it was built on.
    - A caller-supplied key never executes side effects twice: a replay
      returns the recorded result re-read from the database.
    - Input sequences are materialized before the first attempt so a retry
      sees the same request.

Failure modes:
    - Every ``LedgerValidationError`` / ``LedgerConflictError`` propagates
      unchanged after rollback.
    - ``TransientContentionError`` once ``concurrency.max_retries`` attempts
      have lost races.

Usage:
    from ledger_kernel.db.engine import init_engine_from_url
    from ledger_modules._orm_registry import create_all_tables
    from ledger_services import LedgerCore

    init_engine_from_url("sqlite:///ledger.db")
    create_all_tables()

    core = LedgerCore(company_id, actor_id)
    cash = core.create_account("1000", "Cash", "asset")
"""

from __future__ import annotations

import dataclasses
import io
import time
from collections.abc import Callable, Iterable, Mapping
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, TypeVar
from uuid import UUID, uuid4

from sqlalchemy.orm import Session, sessionmaker

from ledger_config import LedgerSettings, get_active_config
from ledger_engines.matching import MatchResult
from ledger_kernel.db.engine import get_session_factory, session_scope
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dtos import (
    AccountInfo,
    AccountNode,
    BalanceDiscrepancy,
    LineSpec,
    PeriodInfo,
    TransactionDraft,
    TransactionInfo,
)
from ledger_kernel.exceptions import IdempotencyRaceLostError
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.account import AccountType
from ledger_kernel.models.ledger import TransactionType
from ledger_kernel.services.ledger_engine import LedgerEngine
from ledger_kernel.utils import idempotency as ops
from ledger_kernel.utils.hashing import hash_payload
from ledger_modules.ar import ARConfig, InvoiceInfo, InvoiceLifecycle, InvoiceLineSpec, InvoiceStatus
from ledger_modules.cash import BankTransactionInfo, ReconciliationMatcher
from ledger_services.report_export import ExportFormat, export_ledger_report
from ledger_services.retry import run_with_retry

logger = get_logger("services.ledger_core")

T = TypeVar("T")


class _Services:
    """Every service for one attempt, sharing its session and clock."""

    def __init__(
        self,
        session: Session,
        company_id: UUID,
        settings: LedgerSettings,
        clock: Clock,
    ) -> None:
        self.session = session
        self.engine = LedgerEngine(
            session,
            company_id,
            clock,
            number_prefix=settings.posting.transaction_number_prefix,
            idempotency_ttl=timedelta(hours=settings.idempotency.ttl_hours),
        )
        self.accounts = self.engine.accounts
        self.periods = self.engine.periods
        self.guard = self.engine.guard
        self.invoices = InvoiceLifecycle(
            session,
            company_id,
            self.engine,
            ARConfig(**dataclasses.asdict(settings.invoicing)),
            clock,
        )
        self.reconciliation = ReconciliationMatcher(
            session,
            company_id,
            self.engine,
            clock,
            match_window_days=settings.reconciliation.match_window_days,
        )


def _enum_value(value: Any) -> Any:
    return getattr(value, "value", value)


def _line_spec(line: LineSpec | Mapping[str, Any]) -> LineSpec:
    if isinstance(line, LineSpec):
        return line
    return LineSpec(
        account_id=line["account_id"],
        debit=line.get("debit") or Decimal("0"),
        credit=line.get("credit") or Decimal("0"),
        memo=line.get("memo"),
    )


def _invoice_line_spec(line: InvoiceLineSpec | Mapping[str, Any]) -> InvoiceLineSpec:
    if isinstance(line, InvoiceLineSpec):
        return line
    return InvoiceLineSpec(**line)


def _invoice_line_payload(line: InvoiceLineSpec) -> dict[str, Any]:
    return {
        "description": line.description,
        "quantity": line.quantity,
        "unit_price": line.unit_price,
        "tax_amount": line.tax_amount,
        "revenue_account_code": line.revenue_account_code,
    }


class LedgerCore:
    """
    Facade over the ledger for one company and one acting user.

    Contract:
        Each public method is one atomic operation.  Mutations accept an
        optional opaque ``idempotency_key``; repeating a call with the same
        key and payload returns the first result without new side effects.

    Non-goals:
        Authentication and authorization.  ``actor_id`` is recorded, not
        checked.
    """

    def __init__(
        self,
        company_id: UUID,
        actor_id: UUID,
        *,
        settings: LedgerSettings | None = None,
        session_factory: sessionmaker[Session] | None = None,
        clock: Clock | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.company_id = company_id
        self.actor_id = actor_id
        self.settings = settings or get_active_config()
        self._session_factory = session_factory or get_session_factory()
        self._clock = clock or SystemClock()
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    def _run(
        self,
        operation: str,
        fn: Callable[[_Services], T],
        *,
        idempotency_key: str | None = None,
    ) -> T:
        def attempt() -> T:
            with session_scope(self._session_factory) as session:
                return fn(_Services(session, self.company_id, self.settings, self._clock))

        with LogContext.bind(
            company_id=self.company_id,
            actor_id=self.actor_id,
            idempotency_key=idempotency_key,
            operation=operation,
        ):
            t0 = time.monotonic()
            result = run_with_retry(
                operation,
                attempt,
                max_attempts=self.settings.concurrency.max_retries,
                backoff_ms=self.settings.concurrency.retry_backoff_ms,
                sleep=self._sleep,
            )
            logger.debug(
                "operation_completed",
                extra={"duration_ms": round((time.monotonic() - t0) * 1000, 2)},
            )
            return result

    def _once(
        self,
        services: _Services,
        operation_kind: str,
        idempotency_key: str | None,
        payload: dict[str, Any],
        result_type: str,
        execute: Callable[[], tuple[T, UUID]],
        replay: Callable[[UUID], T],
    ) -> T:
        """Run ``execute`` at most once per key; replays re-read by id."""
        if idempotency_key is None:
            result, _ = execute()
            return result

        request_hash = hash_payload(payload)
        prior = services.guard.lookup(operation_kind, idempotency_key, request_hash)
        if prior is not None:
            return replay(prior.result_id)

        result, result_id = execute()
        winner = services.guard.claim(
            operation_kind,
            idempotency_key,
            request_hash,
            result_type,
            result_id,
            actor_id=self.actor_id,
        )
        if winner is not None:
            # roll this attempt back; the retry replays the winner
            raise IdempotencyRaceLostError(operation_kind, idempotency_key)
        return result

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def create_account(
        self,
        code: str,
        name: str,
        account_type: AccountType | str,
        parent_id: UUID | None = None,
        *,
        description: str | None = None,
        idempotency_key: str | None = None,
    ) -> AccountInfo:
        payload = {
            "code": code,
            "name": name,
            "account_type": _enum_value(account_type),
            "parent_id": parent_id,
            "description": description,
        }

        def op(s: _Services) -> AccountInfo:
            def execute():
                info = s.accounts.create_account(
                    code,
                    name,
                    account_type,
                    parent_id,
                    actor_id=self.actor_id,
                    description=description,
                )
                return info, info.id

            return self._once(
                s, ops.ACCOUNT_CREATE, idempotency_key, payload, "account",
                execute, s.accounts.get_account,
            )

        return self._run("create_account", op, idempotency_key=idempotency_key)

    def deactivate_account(self, account_id: UUID) -> AccountInfo:
        return self._run(
            "deactivate_account",
            lambda s: s.accounts.deactivate(account_id, actor_id=self.actor_id),
        )

    def reparent_account(self, account_id: UUID, new_parent_id: UUID | None) -> AccountInfo:
        return self._run(
            "reparent_account",
            lambda s: s.accounts.reparent(account_id, new_parent_id, actor_id=self.actor_id),
        )

    def get_account(self, account_id: UUID) -> AccountInfo:
        return self._run("get_account", lambda s: s.accounts.get_account(account_id))

    def get_account_by_code(self, code: str) -> AccountInfo:
        return self._run("get_account_by_code", lambda s: s.accounts.get_account_by_code(code))

    def get_balance(self, account_id: UUID, as_of: date | None = None) -> Decimal:
        return self._run("get_balance", lambda s: s.accounts.get_balance(account_id, as_of))

    def list_hierarchy(
        self,
        root_id: UUID | None = None,
        *,
        include_inactive: bool = True,
    ) -> tuple[AccountNode, ...]:
        return self._run(
            "list_hierarchy",
            lambda s: s.accounts.list_hierarchy(root_id, include_inactive=include_inactive),
        )

    def verify_cached_balances(self) -> tuple[BalanceDiscrepancy, ...]:
        return self._run("verify_cached_balances", lambda s: s.accounts.verify_cached_balances())

    # ------------------------------------------------------------------
    # Ledger
    # ------------------------------------------------------------------

    def post_transaction(
        self,
        transaction_date: date,
        transaction_type: TransactionType | str,
        lines: Iterable[LineSpec | Mapping[str, Any]],
        reference: str | None,
        idempotency_key: str,
        description: str | None = None,
    ) -> TransactionInfo:
        """
        Append a balanced transaction.

        Raises:
            UnbalancedEntryError, InvalidLineError, AccountNotFoundError,
            AccountInactiveError, PeriodLockedError,
            IdempotencyKeyConflictError
        """
        draft = TransactionDraft(
            transaction_date=transaction_date,
            transaction_type=TransactionType(transaction_type),
            lines=tuple(_line_spec(line) for line in lines),
            reference=reference,
            description=description,
        )
        return self._run(
            "post_transaction",
            lambda s: s.engine.post(draft, idempotency_key, actor_id=self.actor_id).transaction,
            idempotency_key=idempotency_key,
        )

    def void_transaction(
        self,
        transaction_id: UUID,
        reason: str,
        *,
        reversal_date: date | None = None,
        idempotency_key: str | None = None,
    ) -> TransactionInfo:
        """Void by reversal.  Returns the reversing transaction."""
        return self._run(
            "void_transaction",
            lambda s: s.engine.void(
                transaction_id,
                reason,
                actor_id=self.actor_id,
                reversal_date=reversal_date,
                idempotency_key=idempotency_key,
            ).transaction,
            idempotency_key=idempotency_key,
        )

    def get_transaction(self, transaction_id: UUID) -> TransactionInfo:
        return self._run("get_transaction", lambda s: s.engine.get_transaction(transaction_id))

    def list_transactions(self, start_date: date, end_date: date) -> tuple[TransactionInfo, ...]:
        return self._run(
            "list_transactions",
            lambda s: s.engine.list_transactions(start_date, end_date),
        )

    # ------------------------------------------------------------------
    # Invoices
    # ------------------------------------------------------------------

    def create_invoice(
        self,
        invoice_number: str,
        customer_id: UUID,
        issue_date: date,
        due_date: date,
        lines: Iterable[InvoiceLineSpec | Mapping[str, Any]],
        *,
        idempotency_key: str | None = None,
    ) -> InvoiceInfo:
        specs = tuple(_invoice_line_spec(line) for line in lines)
        payload = {
            "invoice_number": invoice_number,
            "customer_id": customer_id,
            "issue_date": issue_date,
            "due_date": due_date,
            "lines": [_invoice_line_payload(line) for line in specs],
        }

        def op(s: _Services) -> InvoiceInfo:
            def execute():
                info = s.invoices.create_draft(
                    invoice_number,
                    customer_id,
                    issue_date,
                    due_date,
                    specs,
                    actor_id=self.actor_id,
                )
                return info, info.id

            return self._once(
                s, ops.INVOICE_CREATE, idempotency_key, payload, "invoice",
                execute, s.invoices.get_invoice,
            )

        return self._run("create_invoice", op, idempotency_key=idempotency_key)

    def update_invoice_draft(
        self,
        invoice_id: UUID,
        *,
        lines: Iterable[InvoiceLineSpec | Mapping[str, Any]] | None = None,
        due_date: date | None = None,
        customer_id: UUID | None = None,
    ) -> InvoiceInfo:
        specs = None if lines is None else tuple(_invoice_line_spec(line) for line in lines)
        return self._run(
            "update_invoice_draft",
            lambda s: s.invoices.update_draft(
                invoice_id,
                lines=specs,
                due_date=due_date,
                customer_id=customer_id,
                actor_id=self.actor_id,
            ),
        )

    def finalize_invoice(
        self,
        invoice_id: UUID,
        target_status: InvoiceStatus | str,
        idempotency_key: str | None = None,
    ) -> InvoiceInfo:
        """
        Move an invoice along its workflow, posting as the edge requires.

        Raises:
            InvalidTransitionError, InvoiceValidationError, PeriodLockedError
        """
        payload = {"invoice_id": invoice_id, "target_status": _enum_value(target_status)}

        def op(s: _Services) -> InvoiceInfo:
            def execute():
                info = s.invoices.transition(invoice_id, target_status, actor_id=self.actor_id)
                return info, info.id

            return self._once(
                s, ops.INVOICE_TRANSITION, idempotency_key, payload, "invoice",
                execute, s.invoices.get_invoice,
            )

        return self._run("finalize_invoice", op, idempotency_key=idempotency_key)

    def get_invoice(self, invoice_id: UUID) -> InvoiceInfo:
        return self._run("get_invoice", lambda s: s.invoices.get_invoice(invoice_id))

    def mark_overdue_invoices(self, as_of: date | None = None) -> tuple[InvoiceInfo, ...]:
        return self._run(
            "mark_overdue_invoices",
            lambda s: s.invoices.mark_overdue(as_of, actor_id=self.actor_id),
        )

    # ------------------------------------------------------------------
    # Bank reconciliation
    # ------------------------------------------------------------------

    def import_bank_statement(
        self,
        account_id: UUID,
        rows: str | Iterable[Mapping[str, Any]],
        *,
        idempotency_key: str | None = None,
    ) -> tuple[BankTransactionInfo, ...]:
        """
        Store a statement (CSV text or row mappings) against a bank account.

        With ``reconciliation.auto_match_on_import`` the account is
        auto-matched in the same transaction and the returned lines carry
        their match state.

        Raises:
            MalformedImportRowError, InvalidAccountError,
            AccountNotFoundError, AccountInactiveError
        """
        if not isinstance(rows, str):
            rows = [dict(row) for row in rows]
        payload = {"account_id": account_id, "rows": rows}
        auto_match = self.settings.reconciliation.auto_match_on_import

        def op(s: _Services) -> tuple[BankTransactionInfo, ...]:
            def execute():
                batch_id = uuid4()
                imported = s.reconciliation.import_statement(
                    account_id, rows, actor_id=self.actor_id, import_batch_id=batch_id
                )
                if auto_match and imported:
                    s.reconciliation.auto_match(account_id, actor_id=self.actor_id)
                    imported = s.reconciliation.list_batch(batch_id)
                return imported, batch_id

            return self._once(
                s, ops.BANK_IMPORT, idempotency_key, payload, "bank_import_batch",
                execute, s.reconciliation.list_batch,
            )

        return self._run("import_bank_statement", op, idempotency_key=idempotency_key)

    def match_bank_transaction(
        self,
        bank_transaction_id: UUID,
        *,
        date_window: int | None = None,
    ) -> MatchResult:
        return self._run(
            "match_bank_transaction",
            lambda s: s.reconciliation.match(
                bank_transaction_id, actor_id=self.actor_id, date_window=date_window
            ),
        )

    def auto_match(
        self,
        account_id: UUID,
        date_window: int | None = None,
    ) -> tuple[MatchResult, ...]:
        return self._run(
            "auto_match",
            lambda s: s.reconciliation.auto_match(account_id, date_window, actor_id=self.actor_id),
        )

    def manual_match(self, bank_transaction_id: UUID, transaction_id: UUID) -> MatchResult:
        return self._run(
            "manual_match",
            lambda s: s.reconciliation.manual_match(
                bank_transaction_id, transaction_id, actor_id=self.actor_id
            ),
        )

    def unmatch(self, bank_transaction_id: UUID) -> BankTransactionInfo:
        return self._run(
            "unmatch",
            lambda s: s.reconciliation.unmatch(bank_transaction_id, actor_id=self.actor_id),
        )

    def get_bank_transaction(self, bank_transaction_id: UUID) -> BankTransactionInfo:
        return self._run(
            "get_bank_transaction",
            lambda s: s.reconciliation.get_bank_transaction(bank_transaction_id),
        )

    def list_bank_transactions(
        self,
        account_id: UUID,
        *,
        unreconciled_only: bool = False,
    ) -> tuple[BankTransactionInfo, ...]:
        return self._run(
            "list_bank_transactions",
            lambda s: s.reconciliation.list_bank_transactions(
                account_id, unreconciled_only=unreconciled_only
            ),
        )

    # ------------------------------------------------------------------
    # Periods
    # ------------------------------------------------------------------

    def create_period(
        self,
        name: str,
        start_date: date,
        end_date: date,
        *,
        idempotency_key: str | None = None,
    ) -> PeriodInfo:
        payload = {"name": name, "start_date": start_date, "end_date": end_date}

        def op(s: _Services) -> PeriodInfo:
            def execute():
                info = s.periods.create_period(name, start_date, end_date, actor_id=self.actor_id)
                return info, info.id

            return self._once(
                s, ops.PERIOD_CREATE, idempotency_key, payload, "period",
                execute, s.periods.get_period,
            )

        return self._run("create_period", op, idempotency_key=idempotency_key)

    def _toggle_period(
        self,
        operation: str,
        operation_kind: str,
        period_id: UUID,
        reason: str,
        idempotency_key: str | None,
    ) -> PeriodInfo:
        payload = {"period_id": period_id, "reason": reason}

        def op(s: _Services) -> PeriodInfo:
            action = s.periods.lock if operation_kind == ops.PERIOD_LOCK else s.periods.unlock

            def execute():
                info = action(period_id, reason, actor_id=self.actor_id)
                return info, info.id

            return self._once(
                s, operation_kind, idempotency_key, payload, "period",
                execute, s.periods.get_period,
            )

        return self._run(operation, op, idempotency_key=idempotency_key)

    def lock_period(
        self,
        period_id: UUID,
        reason: str,
        *,
        idempotency_key: str | None = None,
    ) -> PeriodInfo:
        """Raises MissingReasonError, PeriodAlreadyLockedError."""
        return self._toggle_period("lock_period", ops.PERIOD_LOCK, period_id, reason, idempotency_key)

    def unlock_period(
        self,
        period_id: UUID,
        reason: str,
        *,
        idempotency_key: str | None = None,
    ) -> PeriodInfo:
        """Raises MissingReasonError, PeriodNotLockedError."""
        return self._toggle_period(
            "unlock_period", ops.PERIOD_UNLOCK, period_id, reason, idempotency_key
        )

    def get_period(self, period_id: UUID) -> PeriodInfo:
        return self._run("get_period", lambda s: s.periods.get_period(period_id))

    def list_periods(self) -> list[PeriodInfo]:
        return self._run("list_periods", lambda s: s.periods.list_periods())

    def is_date_locked(self, check_date: date) -> bool:
        return self._run("is_date_locked", lambda s: s.periods.is_date_locked(check_date))

    # ------------------------------------------------------------------
    # Reporting and housekeeping
    # ------------------------------------------------------------------

    def export_ledger_report(
        self,
        company_id: UUID,
        start_date: date,
        end_date: date,
        export_format: ExportFormat | str = ExportFormat.JSON,
    ) -> io.BytesIO:
        """
        Ledger lines dated in ``[start_date, end_date]`` as a binary stream.

        Raises:
            UnsupportedExportFormatError: Format other than json or csv.
        """
        return self._run(
            "export_ledger_report",
            lambda s: export_ledger_report(
                s.session, company_id, start_date, end_date, export_format, self._clock
            ),
        )

    def purge_expired_idempotency_keys(self) -> int:
        return self._run("purge_expired_idempotency_keys", lambda s: s.guard.purge_expired())
