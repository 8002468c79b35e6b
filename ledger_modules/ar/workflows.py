"""
Accounts Receivable Workflows.

The invoice state machine and the pure planner that turns a requested
status change into the ledger postings it requires.
"""

from dataclasses import dataclass
from enum import Enum

from ledger_kernel.exceptions import InvalidTransitionError
from ledger_kernel.logging_config import get_logger
from ledger_modules.ar.models import InvoiceStatus

logger = get_logger("modules.ar.workflows")


@dataclass(frozen=True)
class Transition:
    """A valid state transition."""
    from_state: InvoiceStatus
    to_state: InvoiceStatus
    action: str


@dataclass(frozen=True)
class Workflow:
    """A state machine definition."""
    name: str
    description: str
    initial_state: InvoiceStatus
    terminal_states: frozenset[InvoiceStatus]
    transitions: tuple[Transition, ...]

    def allows(self, from_state: InvoiceStatus, to_state: InvoiceStatus) -> bool:
        return any(
            t.from_state == from_state and t.to_state == to_state
            for t in self.transitions
        )

    def targets_from(self, from_state: InvoiceStatus) -> frozenset[InvoiceStatus]:
        return frozenset(t.to_state for t in self.transitions if t.from_state == from_state)


S = InvoiceStatus

INVOICE_WORKFLOW = Workflow(
    name="ar_invoice",
    description="Customer invoice lifecycle",
    initial_state=S.DRAFT,
    terminal_states=frozenset({S.PAID, S.CANCELLED}),
    transitions=(
        Transition(S.DRAFT, S.SENT, action="send"),
        Transition(S.DRAFT, S.CANCELLED, action="cancel"),
        Transition(S.SENT, S.VIEWED, action="mark_viewed"),
        Transition(S.SENT, S.PAID, action="record_payment"),
        Transition(S.SENT, S.OVERDUE, action="mark_overdue"),
        Transition(S.SENT, S.CANCELLED, action="cancel"),
        Transition(S.VIEWED, S.PAID, action="record_payment"),
        Transition(S.VIEWED, S.OVERDUE, action="mark_overdue"),
        Transition(S.VIEWED, S.CANCELLED, action="cancel"),
        Transition(S.OVERDUE, S.PAID, action="record_payment"),
        Transition(S.OVERDUE, S.CANCELLED, action="cancel"),
    ),
)

# Statuses in which the invoice is on the books
POSTED_STATES = frozenset({S.SENT, S.VIEWED, S.PAID, S.OVERDUE})

logger.debug(
    "ar_invoice_workflow_registered",
    extra={
        "workflow_name": INVOICE_WORKFLOW.name,
        "transition_count": len(INVOICE_WORKFLOW.transitions),
        "initial_state": INVOICE_WORKFLOW.initial_state.value,
    },
)


class PostingEffect(str, Enum):
    """Ledger work a transition requires."""

    FINALIZE = "finalize"  # Dr AR / Cr revenue (+ Cr tax liability)
    CASH_RECEIPT = "cash_receipt"  # Dr cash / Cr AR
    VOID_FINALIZE = "void_finalize"  # reverse the finalize posting


@dataclass(frozen=True)
class TransitionPlan:
    from_status: InvoiceStatus
    to_status: InvoiceStatus
    effects: tuple[PostingEffect, ...] = ()

    @property
    def posts(self) -> bool:
        return bool(self.effects)


def plan_transition(
    current: InvoiceStatus | str,
    target: InvoiceStatus | str,
    *,
    has_posting: bool,
    has_payment: bool,
) -> TransitionPlan:
    """
    Validate ``current -> target`` and list the postings it needs.

    Pure: no I/O, no clock.

    Raises:
        InvalidTransitionError: ``target`` is not reachable from ``current``
            in one step (including any move out of a terminal state).
    """
    current = InvoiceStatus(current)
    try:
        target = InvoiceStatus(target)
    except ValueError:
        raise InvalidTransitionError(current.value, str(target)) from None

    if not INVOICE_WORKFLOW.allows(current, target):
        logger.warning(
            "invoice_transition_rejected",
            extra={"from_status": current.value, "to_status": target.value},
        )
        raise InvalidTransitionError(current.value, target.value)

    effects: list[PostingEffect] = []
    if target in POSTED_STATES and not has_posting:
        effects.append(PostingEffect.FINALIZE)
    if target == S.PAID and not has_payment:
        effects.append(PostingEffect.CASH_RECEIPT)
    if target == S.CANCELLED and has_posting:
        effects.append(PostingEffect.VOID_FINALIZE)

    return TransitionPlan(from_status=current, to_status=target, effects=tuple(effects))
