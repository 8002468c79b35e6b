"""
Module: ledger_kernel.models.idempotency
Responsibility: Durable store of processed idempotency keys.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - (company_id, operation_kind, idempotency_key) is unique.  The unique
      index is the single point of serialization for racing retries: the
      second INSERT fails with IntegrityError instead of double-posting.
    - Records are never updated.  Expired records may be deleted and the key
      reused.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import DateTime, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TrackedBase, UUIDString


class IdempotencyRecord(TrackedBase):
    """Result of one mutating operation, keyed by the caller's key."""

    __tablename__ = "idempotency_records"

    __table_args__ = (
        UniqueConstraint(
            "company_id",
            "operation_kind",
            "idempotency_key",
            name="uq_idempotency_operation_key",
        ),
        Index("idx_idempotency_expires", "expires_at"),
    )

    operation_kind: Mapped[str] = mapped_column(String(100), nullable=False)

    idempotency_key: Mapped[str] = mapped_column(String(300), nullable=False)

    # SHA-256 of the canonical request payload
    request_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    result_type: Mapped[str] = mapped_column(String(50), nullable=False)

    result_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )

    def __repr__(self) -> str:
        return f"<IdempotencyRecord {self.operation_kind}:{self.idempotency_key}>"
