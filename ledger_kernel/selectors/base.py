"""
Module: ledger_kernel.selectors.base
Responsibility: Base class for read-only query selectors.

Selectors accept a Session from the caller, never add, flush or delete, and
return frozen dataclasses rather than ORM instances.  Balances they return
are derived from posting lines, never from the cached column.
"""

from abc import ABC
from uuid import UUID

from sqlalchemy.orm import Session


class BaseSelector(ABC):

    def __init__(self, session: Session, company_id: UUID):
        self.session = session
        self.company_id = company_id
