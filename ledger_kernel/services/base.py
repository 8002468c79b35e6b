"""
BaseService -- abstract base for all ledger services.

Every write service receives the caller's ``Session`` and the company whose
ledger it operates on.  Services persist with ``session.flush()`` and never
commit or roll back; ``session_scope`` / ``LedgerCore`` own the transaction,
which is what makes multi-step operations (post + balance update + key
claim) all-or-nothing.
"""

from abc import ABC
from typing import Generic, TypeVar
from uuid import UUID

from sqlalchemy.orm import Session

from ledger_kernel.db.base import Base
from ledger_kernel.domain.clock import Clock, SystemClock

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for ledger services.

    Guarantees:
        - Never calls ``session.commit()`` or ``session.rollback()``.  A
          failed flush propagates so the transaction owner rolls back.
        - Every query is filtered by ``company_id``.
    """

    def __init__(self, session: Session, company_id: UUID, clock: Clock | None = None):
        self.session = session
        self.company_id = company_id
        self.clock = clock or SystemClock()
