"""
Accounts Receivable Domain Models (``ledger_modules.ar.models``).

Responsibility
--------------
Frozen dataclass value objects for invoices: the status enum, the line
item a caller submits, and the read snapshots InvoiceLifecycle
returns.

Architecture position
---------------------
**Modules layer** -- pure data definitions with ZERO I/O.

Invariants enforced
-------------------
* All models are ``frozen=True``.
* All monetary fields use ``Decimal`` -- NEVER ``float``.
* A line's amount is ``round_money(quantity * unit_price)``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID

from ledger_kernel.db.types import ZERO, round_money, to_money

if TYPE_CHECKING:
    from ledger_modules.ar.orm import Invoice, InvoiceLine


class InvoiceStatus(str, Enum):
    """Invoice lifecycle states."""

    DRAFT = "draft"
    SENT = "sent"
    VIEWED = "viewed"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class InvoiceLineSpec:
    """A line item as submitted for a draft invoice."""

    description: str
    quantity: Decimal
    unit_price: Decimal
    tax_amount: Decimal = ZERO
    revenue_account_code: str | None = None  # default revenue account when None

    def __post_init__(self) -> None:
        object.__setattr__(self, "quantity", to_money(self.quantity))
        object.__setattr__(self, "unit_price", to_money(self.unit_price))
        object.__setattr__(self, "tax_amount", to_money(self.tax_amount))

    @property
    def amount(self) -> Decimal:
        return round_money(self.quantity * self.unit_price)


@dataclass(frozen=True)
class InvoiceLineInfo:
    line_number: int
    description: str
    quantity: Decimal
    unit_price: Decimal
    amount: Decimal
    tax_amount: Decimal
    revenue_account_code: str | None = None

    @classmethod
    def from_model(cls, model: InvoiceLine) -> InvoiceLineInfo:
        return cls(
            line_number=model.line_number,
            description=model.description,
            quantity=model.quantity,
            unit_price=model.unit_price,
            amount=model.amount,
            tax_amount=model.tax_amount,
            revenue_account_code=model.revenue_account_code,
        )


@dataclass(frozen=True)
class InvoiceInfo:
    """Snapshot of an invoice and its lines."""

    id: UUID
    invoice_number: str
    customer_id: UUID
    issue_date: date
    due_date: date
    status: InvoiceStatus
    subtotal: Decimal
    tax_total: Decimal
    total: Decimal
    lines: tuple[InvoiceLineInfo, ...] = field(default_factory=tuple)
    posted_transaction_id: UUID | None = None
    payment_transaction_id: UUID | None = None
    sent_at: datetime | None = None
    paid_at: datetime | None = None
    cancelled_at: datetime | None = None

    @classmethod
    def from_model(cls, model: Invoice) -> InvoiceInfo:
        return cls(
            id=model.id,
            invoice_number=model.invoice_number,
            customer_id=model.customer_id,
            issue_date=model.issue_date,
            due_date=model.due_date,
            status=InvoiceStatus(model.status),
            subtotal=model.subtotal,
            tax_total=model.tax_total,
            total=model.total,
            lines=tuple(InvoiceLineInfo.from_model(line) for line in model.lines),
            posted_transaction_id=model.posted_transaction_id,
            payment_transaction_id=model.payment_transaction_id,
            sent_at=model.sent_at,
            paid_at=model.paid_at,
            cancelled_at=model.cancelled_at,
        )

    def is_overdue_on(self, as_of: date) -> bool:
        """Passive overdue rule: past due and still awaiting payment."""
        return self.status in (InvoiceStatus.SENT, InvoiceStatus.VIEWED) and self.due_date < as_of
