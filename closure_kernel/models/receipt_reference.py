"""
Module: closure_kernel.models.receipt_reference
Responsibility: ORM persistence for issued receipt references.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - No two rows of a school share a reference (uq_receipt_reference).
      This is the second serialization layer behind the locked counter row.
    - ordinal is NULL exactly when is_sequential is False (time-based
      fallback references awaiting reconciliation).
"""

from sqlalchemy import BigInteger, Boolean, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from closure_kernel.db.base import TrackedBase


class ReceiptReference(TrackedBase):
    """One issued receipt reference."""

    __tablename__ = "receipt_references"

    __table_args__ = (
        UniqueConstraint("school_id", "reference", name="uq_receipt_reference"),
        Index("idx_receipt_reference_scope", "school_id", "scope_key", "ordinal"),
        Index("idx_receipt_reference_sequential", "school_id", "is_sequential"),
    )

    school_id: Mapped[str] = mapped_column(String(64), nullable=False)

    reference: Mapped[str] = mapped_column(String(64), nullable=False)

    # "{year_code}:{type_letter or '-'}:{class_code}"
    scope_key: Mapped[str] = mapped_column(String(40), nullable=False)

    academic_year: Mapped[str] = mapped_column(String(20), nullable=False)
    year_code: Mapped[str] = mapped_column(String(6), nullable=False)
    class_code: Mapped[str] = mapped_column(String(16), nullable=False)
    type_letter: Mapped[str | None] = mapped_column(String(1), nullable=True)

    ordinal: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    is_sequential: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Payment this reference was issued for, when known at issue time
    transaction_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    def __repr__(self) -> str:
        return f"<ReceiptReference {self.reference}>"
