"""
Module: ledger_kernel.models.sequence
Responsibility: Per-company named counter rows behind transaction numbering.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - (company_id, name) is unique; SequenceService locks the row with
      SELECT ... FOR UPDATE before incrementing it.
"""

from uuid import UUID

from sqlalchemy import BigInteger, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import Base, UUIDString


class SequenceCounter(Base):
    """One named counter per company."""

    __tablename__ = "sequence_counters"

    __table_args__ = (
        UniqueConstraint("company_id", "name", name="uq_sequence_company_name"),
    )

    company_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    name: Mapped[str] = mapped_column(String(50), nullable=False)

    current_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
