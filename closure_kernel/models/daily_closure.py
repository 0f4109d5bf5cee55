"""
Module: closure_kernel.models.daily_closure
Responsibility: ORM persistence for the daily closure lifecycle -- the
    end-of-day snapshot that locks a date's recorded cash movements.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - One closure per (school_id, academic_year, closure_date)
      (uq_daily_closure_school_year_date).
    - Lifecycle is DRAFT -> COMPLETED.  No transition leaves COMPLETED;
      completed rows are immutable (db/immutability.py listeners).
    - net_balance, expected_cash and variance are derived by the service
      from the stored inputs and are never patched directly.

Failure modes:
    - IntegrityError on a duplicate (school, year, date), mapped to
      DuplicateClosureError by ClosureService.
    - ClosureLockedError from the ORM listeners on any UPDATE/DELETE of a
      completed row.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import JSON, Date, DateTime, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from closure_kernel.db.base import TrackedBase, UUIDString

if TYPE_CHECKING:
    from closure_kernel.models.variance_justification import VarianceJustification


class ClosureStatus(str, Enum):
    """Lifecycle status of a daily closure.

    DRAFT is editable and deletable; COMPLETED is validated and locked.
    """

    DRAFT = "draft"
    COMPLETED = "completed"


_ZERO = Decimal("0")


class DailyClosure(TrackedBase):
    """
    Daily cash closure for one school, academic year and calendar date.

    Guarantees:
        - status is DRAFT on creation.
        - validated_at / validated_by_id are set exactly once, by the
          DRAFT -> COMPLETED transition.
    """

    __tablename__ = "daily_closures"

    __table_args__ = (
        UniqueConstraint(
            "school_id",
            "academic_year",
            "closure_date",
            name="uq_daily_closure_school_year_date",
        ),
        Index("idx_daily_closure_status", "status"),
        Index("idx_daily_closure_school_date", "school_id", "closure_date"),
    )

    school_id: Mapped[str] = mapped_column(String(64), nullable=False)

    academic_year: Mapped[str] = mapped_column(String(20), nullable=False)

    closure_date: Mapped[date] = mapped_column(Date, nullable=False)

    # Aggregated from the ledger for closure_date
    total_income: Mapped[Decimal] = mapped_column(default=_ZERO, nullable=False)
    total_expenses: Mapped[Decimal] = mapped_column(default=_ZERO, nullable=False)
    net_balance: Mapped[Decimal] = mapped_column(default=_ZERO, nullable=False)
    pending_payments: Mapped[Decimal] = mapped_column(default=_ZERO, nullable=False)
    pending_expenses: Mapped[Decimal] = mapped_column(default=_ZERO, nullable=False)

    # Operator-entered cash position
    opening_cash: Mapped[Decimal] = mapped_column(default=_ZERO, nullable=False)
    cash_on_hand: Mapped[Decimal] = mapped_column(default=_ZERO, nullable=False)
    bank_deposits: Mapped[Decimal] = mapped_column(default=_ZERO, nullable=False)

    # Reconciliation
    expected_cash: Mapped[Decimal] = mapped_column(default=_ZERO, nullable=False)
    variance: Mapped[Decimal] = mapped_column(default=_ZERO, nullable=False)

    # Denomination -> count, e.g. {"10000": 3, "500": 12}
    cash_count: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    status: Mapped[str] = mapped_column(
        String(20),
        default=ClosureStatus.DRAFT.value,
        nullable=False,
    )

    validated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    validated_by_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )

    justifications: Mapped[list["VarianceJustification"]] = relationship(
        back_populates="closure",
        cascade="all, delete-orphan",
        order_by="VarianceJustification.created_at",
    )

    def __repr__(self) -> str:
        return f"<DailyClosure {self.school_id} {self.closure_date}: {self.status}>"

    @property
    def is_locked(self) -> bool:
        return self.status == ClosureStatus.COMPLETED
