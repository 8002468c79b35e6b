"""
InvoiceLifecycle against the ledger.

Verifies:
- Finalize posts Dr receivable / Cr revenue per account / Cr tax liability
- Payment posts Dr cash / Cr receivable dated today
- Cancel of a posted invoice voids the finalize posting
- Drafts are editable, finalized invoices are not
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from ledger_kernel.exceptions import (
    DuplicateInvoiceNumberError,
    InvalidTransitionError,
    InvoiceImmutableError,
    InvoiceNotFoundError,
    InvoiceValidationError,
    PeriodLockedError,
)
from ledger_kernel.models.ledger import TransactionType
from ledger_modules.ar import InvoiceLineSpec, InvoiceStatus

ISSUE = date(2024, 3, 1)
DUE = date(2024, 3, 10)


def _lines():
    return [
        InvoiceLineSpec("Consulting", Decimal("10"), Decimal("150.00"), Decimal("90.00")),
        InvoiceLineSpec(
            "Support plan", Decimal("1"), Decimal("500.00"), revenue_account_code="4100"
        ),
    ]


@pytest.fixture
def draft(invoices, chart, actor_id):
    return invoices.create_draft("INV-001", uuid4(), ISSUE, DUE, _lines(), actor_id=actor_id)


def _entries(txn, chart):
    by_id = {account.id: code for code, account in chart.items()}
    return sorted((by_id[l.account_id], l.debit, l.credit) for l in txn.lines)


class TestDrafts:
    def test_totals(self, draft):
        assert draft.status == InvoiceStatus.DRAFT
        assert draft.subtotal == Decimal("2000.00")
        assert draft.tax_total == Decimal("90.00")
        assert draft.total == Decimal("2090.00")
        assert [line.amount for line in draft.lines] == [Decimal("1500.00"), Decimal("500.00")]
        assert draft.posted_transaction_id is None

    def test_draft_does_not_post(self, ledger, draft):
        assert ledger.list_transactions(date(2024, 1, 1), date(2024, 12, 31)) == ()

    def test_duplicate_number(self, invoices, draft, actor_id):
        with pytest.raises(DuplicateInvoiceNumberError):
            invoices.create_draft("INV-001", uuid4(), ISSUE, DUE, _lines(), actor_id=actor_id)

    @pytest.mark.parametrize(
        "lines,due",
        [
            ([], DUE),
            ([InvoiceLineSpec("x", Decimal("0"), Decimal("1"))], DUE),
            ([InvoiceLineSpec("x", Decimal("1"), Decimal("-1"))], DUE),
            ([InvoiceLineSpec("x", Decimal("1"), Decimal("1"), Decimal("-1"))], DUE),
            ([InvoiceLineSpec("x", Decimal("1"), Decimal("1"))], date(2024, 2, 28)),
        ],
        ids=["no-lines", "zero-qty", "negative-price", "negative-tax", "due-before-issue"],
    )
    def test_invalid_drafts(self, invoices, actor_id, lines, due):
        with pytest.raises(InvoiceValidationError):
            invoices.create_draft("INV-X", uuid4(), ISSUE, due, lines, actor_id=actor_id)

    def test_update_draft_replaces_lines(self, invoices, draft, actor_id):
        updated = invoices.update_draft(
            draft.id,
            lines=[InvoiceLineSpec("Hours", Decimal("2.5"), Decimal("100.00"))],
            due_date=date(2024, 3, 31),
            actor_id=actor_id,
        )

        assert updated.total == Decimal("250.00")
        assert [line.line_number for line in updated.lines] == [1]
        assert updated.due_date == date(2024, 3, 31)

    def test_update_after_finalize_rejected(self, invoices, draft, actor_id):
        invoices.transition(draft.id, InvoiceStatus.SENT, actor_id=actor_id)
        with pytest.raises(InvoiceImmutableError):
            invoices.update_draft(draft.id, due_date=date(2024, 4, 1), actor_id=actor_id)

    def test_unknown_invoice(self, invoices):
        with pytest.raises(InvoiceNotFoundError):
            invoices.get_invoice(uuid4())


class TestFinalize:
    def test_send_posts_receivable_revenue_and_tax(self, invoices, ledger, draft, chart, actor_id):
        sent = invoices.transition(draft.id, InvoiceStatus.SENT, actor_id=actor_id)

        assert sent.status == InvoiceStatus.SENT
        assert sent.sent_at is not None
        txn = ledger.get_transaction(sent.posted_transaction_id)
        assert txn.transaction_type == TransactionType.INVOICE
        assert txn.transaction_date == ISSUE
        assert txn.reference == "INV-001"
        assert _entries(txn, chart) == [
            ("1200", Decimal("2090.00"), Decimal("0")),
            ("2200", Decimal("0"), Decimal("90.00")),
            ("4000", Decimal("0"), Decimal("1500.00")),
            ("4100", Decimal("0"), Decimal("500.00")),
        ]

    def test_second_send_rejected_without_posting(self, invoices, ledger, draft, actor_id):
        invoices.transition(draft.id, InvoiceStatus.SENT, actor_id=actor_id)

        with pytest.raises(InvalidTransitionError):
            invoices.transition(draft.id, "sent", actor_id=actor_id)
        assert len(ledger.list_transactions(ISSUE, ISSUE)) == 1

    def test_zero_total_cannot_finalize(self, invoices, chart, actor_id):
        free = invoices.create_draft(
            "INV-0", uuid4(), ISSUE, DUE, [InvoiceLineSpec("Free", Decimal("1"), Decimal("0"))], actor_id=actor_id
        )
        with pytest.raises(InvoiceValidationError):
            invoices.transition(free.id, InvoiceStatus.SENT, actor_id=actor_id)

    def test_locked_issue_date_blocks_finalize(self, invoices, periods, draft, actor_id):
        period = periods.create_period("2024-03", date(2024, 3, 1), date(2024, 3, 31), actor_id=actor_id)
        periods.lock(period.id, "closed", actor_id=actor_id)

        with pytest.raises(PeriodLockedError):
            invoices.transition(draft.id, InvoiceStatus.SENT, actor_id=actor_id)

    def test_invalid_status_string(self, invoices, draft, actor_id):
        with pytest.raises(InvalidTransitionError):
            invoices.transition(draft.id, "shipped", actor_id=actor_id)


class TestPaymentAndCancel:
    def test_payment_receives_cash_today(
        self, invoices, ledger, registry, draft, chart, actor_id, deterministic_clock
    ):
        # draft -> paid is not an edge
        with pytest.raises(InvalidTransitionError):
            invoices.transition(draft.id, InvoiceStatus.PAID, actor_id=actor_id)

        invoices.transition(draft.id, InvoiceStatus.SENT, actor_id=actor_id)
        paid = invoices.transition(draft.id, InvoiceStatus.PAID, actor_id=actor_id)

        payment = ledger.get_transaction(paid.payment_transaction_id)
        assert payment.transaction_type == TransactionType.PAYMENT
        assert payment.transaction_date == deterministic_clock.today()
        assert _entries(payment, chart) == [
            ("1000", Decimal("2090.00"), Decimal("0")),
            ("1200", Decimal("0"), Decimal("2090.00")),
        ]
        assert registry.get_balance(chart["1200"].id) == Decimal("0")
        assert registry.get_balance(chart["1000"].id) == Decimal("2090.00")

    def test_paid_is_terminal(self, invoices, draft, actor_id):
        invoices.transition(draft.id, InvoiceStatus.SENT, actor_id=actor_id)
        invoices.transition(draft.id, InvoiceStatus.PAID, actor_id=actor_id)
        with pytest.raises(InvalidTransitionError):
            invoices.transition(draft.id, InvoiceStatus.CANCELLED, actor_id=actor_id)

    def test_cancel_posted_invoice_voids_finalize(self, invoices, ledger, registry, draft, chart, actor_id):
        sent = invoices.transition(draft.id, InvoiceStatus.SENT, actor_id=actor_id)

        cancelled = invoices.transition(draft.id, InvoiceStatus.CANCELLED, actor_id=actor_id)

        assert cancelled.status == InvoiceStatus.CANCELLED
        assert cancelled.cancelled_at is not None
        assert ledger.get_transaction(sent.posted_transaction_id).is_void
        for code in ("1200", "2200", "4000", "4100"):
            assert registry.get_balance(chart[code].id) == Decimal("0")

    def test_cancel_draft_posts_nothing(self, invoices, ledger, draft, actor_id):
        invoices.transition(draft.id, InvoiceStatus.CANCELLED, actor_id=actor_id)
        assert ledger.list_transactions(date(2024, 1, 1), date(2024, 12, 31)) == ()


class TestOverdue:
    def test_mark_overdue_flags_past_due_sent_invoices(self, invoices, ledger, draft, chart, actor_id):
        invoices.transition(draft.id, InvoiceStatus.SENT, actor_id=actor_id)
        later = invoices.create_draft(
            "INV-002", uuid4(), ISSUE, date(2024, 4, 30), _lines(), actor_id=actor_id
        )
        invoices.transition(later.id, InvoiceStatus.SENT, actor_id=actor_id)

        marked = invoices.mark_overdue(actor_id=actor_id)

        assert [inv.invoice_number for inv in marked] == ["INV-001"]
        assert invoices.get_invoice(draft.id).status == InvoiceStatus.OVERDUE
        assert invoices.get_invoice(later.id).status == InvoiceStatus.SENT
        # status only
        assert len(ledger.list_transactions(date(2024, 1, 1), date(2024, 12, 31))) == 2

    def test_drafts_never_overdue(self, invoices, draft, actor_id):
        assert invoices.mark_overdue(date(2025, 1, 1), actor_id=actor_id) == ()

    def test_explicit_overdue_before_due_date_rejected(self, invoices, chart, actor_id):
        future = invoices.create_draft(
            "INV-003", uuid4(), ISSUE, date(2024, 12, 31), _lines(), actor_id=actor_id
        )
        invoices.transition(future.id, InvoiceStatus.SENT, actor_id=actor_id)

        with pytest.raises(InvalidTransitionError) as exc_info:
            invoices.transition(future.id, InvoiceStatus.OVERDUE, actor_id=actor_id)

        assert exc_info.value.to_status == "overdue"
        assert invoices.get_invoice(future.id).status == InvoiceStatus.SENT

    def test_explicit_overdue_after_due_date_allowed(self, invoices, draft, actor_id):
        invoices.transition(draft.id, InvoiceStatus.SENT, actor_id=actor_id)
        overdue = invoices.transition(draft.id, InvoiceStatus.OVERDUE, actor_id=actor_id)
        assert overdue.status == InvoiceStatus.OVERDUE
        assert overdue.is_overdue_on(date(2024, 3, 15)) is False

    def test_overdue_invoice_can_be_paid(self, invoices, draft, actor_id):
        invoices.transition(draft.id, InvoiceStatus.SENT, actor_id=actor_id)
        invoices.mark_overdue(actor_id=actor_id)
        paid = invoices.transition(draft.id, InvoiceStatus.PAID, actor_id=actor_id)
        assert paid.status == InvoiceStatus.PAID
