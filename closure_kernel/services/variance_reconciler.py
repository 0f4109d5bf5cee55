"""
VarianceReconciler -- gate closure validation on a justified cash variance.

Responsibility:
    Records operator justifications for a non-zero cash variance, marks them
    stale when the reconciled inputs change, and decides whether a closure
    may be validated.

Architecture position:
    Kernel > Services -- imperative shell.
    The arithmetic is ``closure_engines.variance.compute_variance``.

Invariants enforced:
    - A closure with variance != 0 validates only with a CURRENT
      justification whose snapshot (opening cash, cash on hand, income,
      expenses, variance) equals the closure's present values.
    - One justification per variance value: a second one for unchanged
      inputs is refused.
    - Justifications on a locked closure cannot be recorded.

Failure modes:
    - EmptyJustificationError: blank text.
    - ClosureNotFoundError / ClosureLockedError.
    - JustificationAlreadyRecordedError: same inputs already justified.
    - VarianceUnjustifiedError: non-zero variance, nothing recorded.
    - JustificationStaleError: only stale justifications exist.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from closure_engines.variance import VarianceResult, compute_variance
from closure_kernel.domain.clock import Clock, SystemClock
from closure_kernel.domain.context import SchoolContext
from closure_kernel.domain.dtos import JustificationInfo
from closure_kernel.exceptions import (
    ClosureLockedError,
    ClosureNotFoundError,
    EmptyJustificationError,
    JustificationAlreadyRecordedError,
    JustificationStaleError,
    VarianceUnjustifiedError,
)
from closure_kernel.logging_config import get_logger
from closure_kernel.models.daily_closure import DailyClosure
from closure_kernel.models.variance_justification import (
    JustificationStatus,
    VarianceJustification,
)
from closure_kernel.services.base import BaseService

logger = get_logger("services.variance_reconciler")

_ZERO = Decimal("0")


def _closure_snapshot(closure: DailyClosure) -> tuple[Decimal, Decimal, Decimal, Decimal, Decimal]:
    return (
        closure.opening_cash,
        closure.cash_on_hand,
        closure.total_income,
        closure.total_expenses,
        closure.variance,
    )


def _justification_snapshot(
    justification: VarianceJustification,
) -> tuple[Decimal, Decimal, Decimal, Decimal, Decimal]:
    return (*justification.snapshot, justification.variance)


class VarianceReconciler(BaseService[VarianceJustification]):
    """Justification bookkeeping for daily closures."""

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()

    @staticmethod
    def compute(opening_cash, cash_on_hand, net_balance) -> VarianceResult:
        return compute_variance(
            opening_cash=opening_cash,
            cash_on_hand=cash_on_hand,
            net_balance=net_balance,
        )

    def _locked_closure(self, closure_id: UUID) -> DailyClosure:
        closure = self.session.execute(
            select(DailyClosure)
            .where(DailyClosure.id == closure_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if closure is None:
            raise ClosureNotFoundError(str(closure_id))
        return closure

    def _justifications(
        self, closure_id: UUID, status: JustificationStatus | None = None
    ) -> list[VarianceJustification]:
        query = select(VarianceJustification).where(
            VarianceJustification.closure_id == closure_id
        )
        if status is not None:
            query = query.where(VarianceJustification.status == status.value)
        return list(
            self.session.execute(
                query.order_by(VarianceJustification.created_at, VarianceJustification.id)
            ).scalars()
        )

    def record_justification(
        self,
        ctx: SchoolContext,
        closure_id: UUID,
        text: str,
    ) -> JustificationInfo:
        """
        Record a justification for the closure's present variance.

        The text also becomes the closure's ``notes``.
        """
        closure = self._locked_closure(closure_id)
        if closure.is_locked:
            logger.warning(
                "variance_justification_rejected",
                extra={"closure_id": closure_id, "reason": "closure_locked"},
            )
            raise ClosureLockedError(str(closure_id), "justify")

        cleaned = (text or "").strip()
        if not cleaned:
            raise EmptyJustificationError(str(closure_id))

        present = _closure_snapshot(closure)
        for existing in self._justifications(closure_id, JustificationStatus.CURRENT):
            if _justification_snapshot(existing) == present:
                raise JustificationAlreadyRecordedError(str(closure_id), str(closure.variance))
            existing.status = JustificationStatus.STALE.value
            existing.invalidated_at = self._clock.now()
            existing.updated_by_id = ctx.actor_id

        justification = VarianceJustification(
            closure_id=closure.id,
            text=cleaned,
            opening_cash=closure.opening_cash,
            cash_on_hand=closure.cash_on_hand,
            total_income=closure.total_income,
            total_expenses=closure.total_expenses,
            variance=closure.variance,
            status=JustificationStatus.CURRENT.value,
            created_by_id=ctx.actor_id,
        )
        self.session.add(justification)
        closure.notes = cleaned
        closure.updated_by_id = ctx.actor_id
        self.session.flush()

        logger.info(
            "variance_justification_recorded",
            extra={
                "closure_id": closure.id,
                "variance": closure.variance,
                "justification_id": justification.id,
            },
        )
        return JustificationInfo.from_model(justification)

    def invalidate(self, closure_id: UUID, reason: str = "inputs_changed") -> int:
        """Mark every current justification of the closure stale. Returns how many."""
        current = self._justifications(closure_id, JustificationStatus.CURRENT)
        now = self._clock.now()
        for justification in current:
            justification.status = JustificationStatus.STALE.value
            justification.invalidated_at = now
        if current:
            self.session.flush()
            logger.info(
                "variance_justification_invalidated",
                extra={"closure_id": closure_id, "count": len(current), "reason": reason},
            )
        return len(current)

    def _is_justified(self, closure: DailyClosure, justifications: list[VarianceJustification]) -> bool:
        if closure.variance == _ZERO:
            return True
        present = _closure_snapshot(closure)
        return any(
            j.is_current and _justification_snapshot(j) == present for j in justifications
        )

    def justify_for_validation(
        self,
        ctx: SchoolContext,
        closure_id: UUID,
        text: str | None,
    ) -> JustificationInfo | None:
        """
        Record ``text`` ahead of validation, if the closure still needs it.

        Blank text, a zero variance or a current justification matching the
        present inputs record nothing; ``ensure_justified`` then decides.
        """
        if not (text or "").strip():
            return None
        closure = self._locked_closure(closure_id)
        if closure.is_locked or self._is_justified(closure, self._justifications(closure_id)):
            return None
        return self.record_justification(ctx, closure_id, text)

    def ensure_justified(self, closure: DailyClosure) -> None:
        """
        Raise unless the closure's variance may be validated.

        Raises:
            JustificationStaleError: a justification exists but no longer
                matches the present inputs.
            VarianceUnjustifiedError: nothing has been recorded.
        """
        if closure.variance == _ZERO:
            return

        justifications = self._justifications(closure.id)
        if self._is_justified(closure, justifications):
            return

        if justifications:
            latest = justifications[-1]
            logger.warning(
                "closure_validation_blocked",
                extra={"closure_id": closure.id, "reason": "justification_stale"},
            )
            raise JustificationStaleError(
                str(closure.id),
                justified_variance=str(latest.variance),
                current_variance=str(closure.variance),
            )

        logger.warning(
            "closure_validation_blocked",
            extra={"closure_id": closure.id, "reason": "variance_unjustified"},
        )
        raise VarianceUnjustifiedError(str(closure.id), str(closure.variance))

    def list_justifications(self, closure_id: UUID) -> list[JustificationInfo]:
        return [JustificationInfo.from_model(j) for j in self._justifications(closure_id)]
