"""
Accounts Receivable Module Service -- invoice lifecycle.

Thin glue layer that:
1. Validates status changes with the pure planner in ``workflows``
2. Turns the planned posting effects into LedgerEngine calls
3. Records the resulting transaction ids and status timestamps

All posting lives in the kernel.  The caller owns the transaction
boundary, so a transition and its postings commit or roll back together.

Usage:
    lifecycle = InvoiceLifecycle(session, company_id, engine, ARConfig(), clock)
    draft = lifecycle.create_draft(
        "INV-010", customer_id, date(2024, 3, 1), date(2024, 3, 31),
        [InvoiceLineSpec("Consulting", Decimal("10"), Decimal("150.00"))],
        actor_id=actor_id,
    )
    sent = lifecycle.transition(draft.id, InvoiceStatus.SENT, actor_id=actor_id)
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ledger_kernel.db.types import ZERO
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dtos import LineSpec, TransactionDraft
from ledger_kernel.exceptions import (
    DuplicateInvoiceNumberError,
    InvalidTransitionError,
    InvoiceImmutableError,
    InvoiceNotFoundError,
    InvoiceValidationError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.ledger import TransactionType
from ledger_kernel.services.ledger_engine import LedgerEngine
from ledger_kernel.utils.idempotency import derive_idempotency_key
from ledger_modules.ar.config import ARConfig
from ledger_modules.ar.models import InvoiceInfo, InvoiceLineSpec, InvoiceStatus
from ledger_modules.ar.orm import Invoice, InvoiceLine
from ledger_modules.ar.workflows import PostingEffect, plan_transition

logger = get_logger("modules.ar.service")


class InvoiceLifecycle:
    """
    Draft editing and status transitions for customer invoices.

    Finalize and cash-receipt postings are keyed ``{invoice_id}:finalize``
    and ``{invoice_id}:payment``, so retrying a transition after a crash
    never posts twice.
    """

    def __init__(
        self,
        session: Session,
        company_id: UUID,
        engine: LedgerEngine,
        config: ARConfig | None = None,
        clock: Clock | None = None,
    ):
        self._session = session
        self._company_id = company_id
        self._engine = engine
        self._config = config or ARConfig()
        self._clock = clock or SystemClock()

    # =========================================================================
    # Drafts
    # =========================================================================

    def create_draft(
        self,
        invoice_number: str,
        customer_id: UUID,
        issue_date: date,
        due_date: date,
        lines: Sequence[InvoiceLineSpec],
        *,
        actor_id: UUID,
    ) -> InvoiceInfo:
        """
        Create an invoice in ``draft``.

        Raises:
            InvoiceValidationError: No lines, non-positive quantity, negative
                price or tax, or due date before issue date.
            DuplicateInvoiceNumberError: Number already used by the company.
        """
        invoice_number = (invoice_number or "").strip()
        if not invoice_number:
            raise InvoiceValidationError("invoice number is required")
        self._validate_dates(issue_date, due_date)
        self._validate_lines(lines)

        if self._find_by_number(invoice_number) is not None:
            raise DuplicateInvoiceNumberError(invoice_number)

        invoice = Invoice(
            company_id=self._company_id,
            invoice_number=invoice_number,
            customer_id=customer_id,
            issue_date=issue_date,
            due_date=due_date,
            status=InvoiceStatus.DRAFT.value,
            created_by_id=actor_id,
        )
        self._replace_lines(invoice, lines, actor_id)

        try:
            with self._session.begin_nested():
                self._session.add(invoice)
                self._session.flush()
        except IntegrityError:
            logger.warning(
                "concurrent_insert_conflict",
                extra={"entity": "invoice", "invoice_number": invoice_number},
            )
            raise DuplicateInvoiceNumberError(invoice_number) from None

        logger.info(
            "invoice_draft_created",
            extra={
                "invoice_id": str(invoice.id),
                "invoice_number": invoice_number,
                "total": str(invoice.total),
                "line_count": len(lines),
            },
        )
        return InvoiceInfo.from_model(invoice)

    def update_draft(
        self,
        invoice_id: UUID,
        *,
        lines: Sequence[InvoiceLineSpec] | None = None,
        due_date: date | None = None,
        customer_id: UUID | None = None,
        actor_id: UUID,
    ) -> InvoiceInfo:
        """
        Edit a draft.  Omitted arguments keep their current values.

        Raises:
            InvoiceImmutableError: The invoice is no longer a draft.
        """
        invoice = self._get_for_update(invoice_id)
        if invoice.status != InvoiceStatus.DRAFT.value:
            raise InvoiceImmutableError(str(invoice.id), invoice.status)

        if due_date is not None:
            self._validate_dates(invoice.issue_date, due_date)
            invoice.due_date = due_date
        if customer_id is not None:
            invoice.customer_id = customer_id
        if lines is not None:
            self._validate_lines(lines)
            invoice.lines.clear()
            # old line numbers must be gone before the new ones insert
            self._session.flush()
            self._replace_lines(invoice, lines, actor_id)
        invoice.updated_by_id = actor_id
        self._session.flush()

        logger.info(
            "invoice_draft_updated",
            extra={"invoice_id": str(invoice.id), "total": str(invoice.total)},
        )
        return InvoiceInfo.from_model(invoice)

    @staticmethod
    def _validate_dates(issue_date: date, due_date: date) -> None:
        if due_date < issue_date:
            raise InvoiceValidationError("due date is before issue date")

    @staticmethod
    def _validate_lines(lines: Sequence[InvoiceLineSpec]) -> None:
        if not lines:
            raise InvoiceValidationError("an invoice needs at least one line")
        for number, line in enumerate(lines, start=1):
            if line.quantity <= 0:
                raise InvoiceValidationError(f"line {number}: quantity must be positive")
            if line.unit_price < 0:
                raise InvoiceValidationError(f"line {number}: unit price must not be negative")
            if line.tax_amount < 0:
                raise InvoiceValidationError(f"line {number}: tax must not be negative")

    def _replace_lines(
        self,
        invoice: Invoice,
        lines: Sequence[InvoiceLineSpec],
        actor_id: UUID,
    ) -> None:
        for number, spec in enumerate(lines, start=1):
            invoice.lines.append(
                InvoiceLine(
                    company_id=self._company_id,
                    line_number=number,
                    description=spec.description,
                    quantity=spec.quantity,
                    unit_price=spec.unit_price,
                    amount=spec.amount,
                    tax_amount=spec.tax_amount,
                    revenue_account_code=spec.revenue_account_code,
                    created_by_id=actor_id,
                )
            )
        invoice.subtotal = sum((spec.amount for spec in lines), ZERO)
        invoice.tax_total = sum((spec.tax_amount for spec in lines), ZERO)
        invoice.total = invoice.subtotal + invoice.tax_total

    # =========================================================================
    # Transitions
    # =========================================================================

    def transition(
        self,
        invoice_id: UUID,
        target_status: InvoiceStatus | str,
        *,
        actor_id: UUID,
    ) -> InvoiceInfo:
        """
        Move the invoice along one workflow edge and make its postings.

        Raises:
            InvalidTransitionError: Edge not in the workflow; nothing changes.
            InvoiceValidationError: Finalizing an invoice with a zero total.
            PeriodLockedError, AccountNotFoundError: From the postings.
        """
        invoice = self._get_for_update(invoice_id)
        plan = plan_transition(
            invoice.status,
            target_status,
            has_posting=invoice.posted_transaction_id is not None,
            has_payment=invoice.payment_transaction_id is not None,
        )
        if plan.to_status == InvoiceStatus.OVERDUE and not InvoiceInfo.from_model(
            invoice
        ).is_overdue_on(self._clock.today()):
            # overdue follows from the due date; it cannot be declared early
            raise InvalidTransitionError(plan.from_status.value, plan.to_status.value)

        for effect in plan.effects:
            if effect == PostingEffect.FINALIZE:
                invoice.posted_transaction_id = self._post_finalize(invoice, actor_id)
            elif effect == PostingEffect.CASH_RECEIPT:
                invoice.payment_transaction_id = self._post_cash_receipt(invoice, actor_id)
            elif effect == PostingEffect.VOID_FINALIZE:
                self._void_finalize(invoice, actor_id)

        now = self._clock.now()
        invoice.status = plan.to_status.value
        if plan.to_status == InvoiceStatus.SENT and invoice.sent_at is None:
            invoice.sent_at = now
        elif plan.to_status == InvoiceStatus.PAID:
            invoice.paid_at = now
        elif plan.to_status == InvoiceStatus.CANCELLED:
            invoice.cancelled_at = now
        invoice.updated_by_id = actor_id
        self._session.flush()

        logger.info(
            "invoice_transitioned",
            extra={
                "invoice_id": str(invoice.id),
                "invoice_number": invoice.invoice_number,
                "from_status": plan.from_status.value,
                "to_status": plan.to_status.value,
                "effects": [effect.value for effect in plan.effects],
            },
        )
        return InvoiceInfo.from_model(invoice)

    def mark_overdue(
        self,
        as_of: date | None = None,
        *,
        actor_id: UUID,
    ) -> tuple[InvoiceInfo, ...]:
        """
        Flag sent or viewed invoices whose due date has passed.

        Overdue is a status change only; it never posts.
        """
        as_of = as_of or self._clock.today()
        candidates = self._session.execute(
            select(Invoice)
            .where(
                Invoice.company_id == self._company_id,
                Invoice.status.in_((InvoiceStatus.SENT.value, InvoiceStatus.VIEWED.value)),
            )
            .order_by(Invoice.due_date, Invoice.invoice_number)
            .with_for_update()
        ).scalars().all()

        marked = []
        for invoice in candidates:
            if not InvoiceInfo.from_model(invoice).is_overdue_on(as_of):
                continue
            plan = plan_transition(
                invoice.status,
                InvoiceStatus.OVERDUE,
                has_posting=invoice.posted_transaction_id is not None,
                has_payment=invoice.payment_transaction_id is not None,
            )
            invoice.status = plan.to_status.value
            invoice.updated_by_id = actor_id
            marked.append(invoice)
        self._session.flush()

        logger.info(
            "invoices_marked_overdue",
            extra={"as_of": as_of.isoformat(), "count": len(marked)},
        )
        return tuple(InvoiceInfo.from_model(invoice) for invoice in marked)

    # =========================================================================
    # Postings
    # =========================================================================

    def _account_id(self, code: str) -> UUID:
        return self._engine.accounts.get_account_by_code(code).id

    def _post_finalize(self, invoice: Invoice, actor_id: UUID) -> UUID:
        if invoice.total <= 0:
            raise InvoiceValidationError(
                f"invoice {invoice.invoice_number} has a zero total and cannot be finalized"
            )

        revenue: dict[str, Decimal] = {}
        for line in invoice.lines:
            code = line.revenue_account_code or self._config.revenue_account_code
            revenue[code] = revenue.get(code, ZERO) + line.amount

        lines = [
            LineSpec.debit_line(
                self._account_id(self._config.receivable_account_code),
                invoice.total,
                memo=f"Invoice {invoice.invoice_number}",
            )
        ]
        for code in sorted(revenue):
            if revenue[code] > 0:
                lines.append(LineSpec.credit_line(self._account_id(code), revenue[code]))
        if invoice.tax_total > 0:
            lines.append(
                LineSpec.credit_line(
                    self._account_id(self._config.tax_liability_account_code),
                    invoice.tax_total,
                )
            )

        result = self._engine.post(
            TransactionDraft(
                transaction_date=invoice.issue_date,
                transaction_type=TransactionType.INVOICE,
                lines=tuple(lines),
                reference=invoice.invoice_number,
                description=f"Invoice {invoice.invoice_number}",
            ),
            derive_idempotency_key(invoice.id, "finalize"),
            actor_id=actor_id,
        )
        return result.transaction.id

    def _post_cash_receipt(self, invoice: Invoice, actor_id: UUID) -> UUID:
        result = self._engine.post(
            TransactionDraft(
                transaction_date=self._clock.today(),
                transaction_type=TransactionType.PAYMENT,
                lines=(
                    LineSpec.debit_line(
                        self._account_id(self._config.cash_account_code), invoice.total
                    ),
                    LineSpec.credit_line(
                        self._account_id(self._config.receivable_account_code), invoice.total
                    ),
                ),
                reference=invoice.invoice_number,
                description=f"Payment for invoice {invoice.invoice_number}",
            ),
            derive_idempotency_key(invoice.id, "payment"),
            actor_id=actor_id,
        )
        return result.transaction.id

    def _void_finalize(self, invoice: Invoice, actor_id: UUID) -> None:
        posting = self._engine.get_transaction(invoice.posted_transaction_id)
        if posting.is_void:
            return
        self._engine.void(
            posting.id,
            f"invoice {invoice.invoice_number} cancelled",
            actor_id=actor_id,
            idempotency_key=derive_idempotency_key(invoice.id, "cancel"),
        )

    # =========================================================================
    # Reads
    # =========================================================================

    def get_invoice(self, invoice_id: UUID) -> InvoiceInfo:
        invoice = self._session.execute(
            select(Invoice).where(
                Invoice.company_id == self._company_id,
                Invoice.id == invoice_id,
            )
        ).scalar_one_or_none()
        if invoice is None:
            raise InvoiceNotFoundError(str(invoice_id))
        return InvoiceInfo.from_model(invoice)

    def _find_by_number(self, invoice_number: str) -> Invoice | None:
        return self._session.execute(
            select(Invoice).where(
                Invoice.company_id == self._company_id,
                Invoice.invoice_number == invoice_number,
            )
        ).scalar_one_or_none()

    def _get_for_update(self, invoice_id: UUID) -> Invoice:
        invoice = self._session.execute(
            select(Invoice)
            .where(
                Invoice.company_id == self._company_id,
                Invoice.id == invoice_id,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if invoice is None:
            raise InvoiceNotFoundError(str(invoice_id))
        return invoice
