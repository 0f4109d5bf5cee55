"""
Module: closure_kernel.models.variance_justification
Responsibility: ORM persistence for operator explanations of a cash variance.
Architecture position: Kernel > Models.  May import from db/base.py only.

A justification is bound to the inputs it explained: opening cash, cash on
hand and the aggregated totals are snapshotted with it.  When any of them
changes, the row is marked STALE and a new justification is required.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import DateTime, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from closure_kernel.db.base import TrackedBase, UUIDString

if TYPE_CHECKING:
    from closure_kernel.models.daily_closure import DailyClosure


class JustificationStatus(str, Enum):
    CURRENT = "current"
    STALE = "stale"


class VarianceJustification(TrackedBase):
    """Free-text explanation tied to a (closure, computed variance) pair."""

    __tablename__ = "variance_justifications"

    __table_args__ = (
        Index("idx_variance_justification_closure", "closure_id", "status"),
    )

    closure_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("daily_closures.id", ondelete="CASCADE"),
        nullable=False,
    )

    text: Mapped[str] = mapped_column(Text, nullable=False)

    # Snapshot of the inputs the text explained
    opening_cash: Mapped[Decimal] = mapped_column(nullable=False)
    cash_on_hand: Mapped[Decimal] = mapped_column(nullable=False)
    total_income: Mapped[Decimal] = mapped_column(nullable=False)
    total_expenses: Mapped[Decimal] = mapped_column(nullable=False)
    variance: Mapped[Decimal] = mapped_column(nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        default=JustificationStatus.CURRENT.value,
        nullable=False,
    )

    invalidated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    closure: Mapped["DailyClosure"] = relationship(back_populates="justifications")

    def __repr__(self) -> str:
        return f"<VarianceJustification {self.closure_id} {self.variance}: {self.status}>"

    @property
    def is_current(self) -> bool:
        return self.status == JustificationStatus.CURRENT

    @property
    def snapshot(self) -> tuple[Decimal, Decimal, Decimal, Decimal]:
        return (self.opening_cash, self.cash_on_hand, self.total_income, self.total_expenses)
