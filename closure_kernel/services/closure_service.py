"""
ClosureService -- lifecycle of a daily closure: NONE -> DRAFT -> LOCKED.

Responsibility:
    Creates, patches, validates and deletes daily closures.  Validation is
    the only transition out of DRAFT and nothing leads back into it.

Architecture position:
    Kernel > Services -- imperative shell.
    Uses VarianceReconciler for the validation precondition and
    ClosureSelector for reads.

Invariants enforced:
    - One closure per (school, academic year, date): checked up front and
      backed by uq_daily_closure_school_year_date.
    - update/delete only while DRAFT; otherwise ClosureLockedError.
    - net_balance, expected_cash and variance are always recomputed from
      the stored inputs; a change to any reconciled input marks existing
      justifications stale.
    - validate: row lock (``SELECT ... FOR UPDATE``) plus a compare-and-swap
      ``UPDATE ... WHERE status = 'draft'``.  Of two concurrent validations
      exactly one succeeds; the other observes ClosureLockedError.

Failure modes:
    - DuplicateClosureError, ClosureNotFoundError, ClosureLockedError.
    - VarianceUnjustifiedError / JustificationStaleError from validate.
    - ValueError for a patch naming a field outside the allow-list or a
      negative amount.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from closure_engines.variance import compute_variance
from closure_kernel.domain.clock import Clock, SystemClock
from closure_kernel.domain.context import SchoolContext
from closure_kernel.domain.dtos import ClosureInfo
from closure_kernel.domain.transactions import to_decimal
from closure_kernel.exceptions import (
    ClosureLockedError,
    ClosureNotFoundError,
    DuplicateClosureError,
)
from closure_kernel.logging_config import get_logger
from closure_kernel.models.daily_closure import ClosureStatus, DailyClosure
from closure_kernel.selectors.closure_selector import ClosureSelector
from closure_kernel.services.base import BaseService
from closure_kernel.services.variance_reconciler import VarianceReconciler

logger = get_logger("services.closure")

_ZERO = Decimal("0")

MONEY_FIELDS = frozenset({
    "opening_cash",
    "cash_on_hand",
    "bank_deposits",
    "total_income",
    "total_expenses",
    "pending_payments",
    "pending_expenses",
})

# A change to any of these invalidates recorded justifications.
RECONCILED_FIELDS = frozenset({"opening_cash", "cash_on_hand", "total_income", "total_expenses"})

PATCHABLE_FIELDS = MONEY_FIELDS | {"cash_count", "notes"}


@dataclass(frozen=True)
class ClosureInputs:
    """Figures a new closure starts from: the day's aggregate plus the operator's cash."""

    total_income: Decimal = _ZERO
    total_expenses: Decimal = _ZERO
    opening_cash: Decimal = _ZERO
    cash_on_hand: Decimal = _ZERO
    bank_deposits: Decimal = _ZERO
    pending_payments: Decimal = _ZERO
    pending_expenses: Decimal = _ZERO
    cash_count: Mapping[str, int] | None = field(default=None)
    notes: str | None = None

    def __post_init__(self) -> None:
        for name in MONEY_FIELDS:
            object.__setattr__(self, name, _money(name, getattr(self, name)))


def _money(name: str, value: Any) -> Decimal:
    try:
        amount = to_decimal(value)
    except (ArithmeticError, TypeError, ValueError):
        raise ValueError(f"{name} must be a number, got {value!r}")
    if not amount.is_finite() or amount < _ZERO:
        raise ValueError(f"{name} must be a non-negative amount, got {value!r}")
    return amount


def _apply_derived(closure: DailyClosure) -> None:
    closure.net_balance = closure.total_income - closure.total_expenses
    result = compute_variance(
        opening_cash=closure.opening_cash,
        cash_on_hand=closure.cash_on_hand,
        net_balance=closure.net_balance,
    )
    closure.expected_cash = result.expected_cash
    closure.variance = result.variance


class ClosureService(BaseService[DailyClosure]):
    """
    Daily closure state machine.

    Non-goals:
        - Does NOT reopen a locked closure; no such transition exists.
        - Does NOT commit; the facade owns the transaction.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        reconciler: VarianceReconciler | None = None,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._reconciler = reconciler or VarianceReconciler(session, self._clock)
        self._selector = ClosureSelector(session)

    @property
    def reconciler(self) -> VarianceReconciler:
        return self._reconciler

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

    def _refuse_if_locked(self, closure: DailyClosure, operation: str) -> None:
        if closure.is_locked:
            logger.warning(
                "closure_mutation_rejected",
                extra={"closure_id": closure.id, "operation": operation},
            )
            raise ClosureLockedError(str(closure.id), operation)

    def create(self, ctx: SchoolContext, day: date, inputs: ClosureInputs) -> ClosureInfo:
        """
        Open a DRAFT closure for ``day``.

        Raises:
            DuplicateClosureError: a closure already exists for the date.
        """
        if self._selector.get_for_date(ctx.school_id, ctx.academic_year, day) is not None:
            raise DuplicateClosureError(ctx.school_id, day.isoformat())

        closure = DailyClosure(
            school_id=ctx.school_id,
            academic_year=ctx.academic_year,
            closure_date=day,
            total_income=inputs.total_income,
            total_expenses=inputs.total_expenses,
            opening_cash=inputs.opening_cash,
            cash_on_hand=inputs.cash_on_hand,
            bank_deposits=inputs.bank_deposits,
            pending_payments=inputs.pending_payments,
            pending_expenses=inputs.pending_expenses,
            cash_count=dict(inputs.cash_count) if inputs.cash_count is not None else None,
            notes=inputs.notes,
            status=ClosureStatus.DRAFT.value,
            created_by_id=ctx.actor_id,
        )
        _apply_derived(closure)

        savepoint = self.session.begin_nested()
        try:
            self.session.add(closure)
            self.session.flush()
            savepoint.commit()
        except IntegrityError:
            savepoint.rollback()
            raise DuplicateClosureError(ctx.school_id, day.isoformat())

        logger.info(
            "closure_created",
            extra={
                "closure_id": closure.id,
                "closure_date": day,
                "total_income": closure.total_income,
                "total_expenses": closure.total_expenses,
                "variance": closure.variance,
            },
        )
        return ClosureInfo.from_model(closure)

    def update(
        self,
        ctx: SchoolContext,
        closure_id: UUID,
        patch: Mapping[str, Any],
    ) -> ClosureInfo:
        """
        Patch allow-listed fields of a DRAFT closure.

        Raises:
            ValueError: unknown/forbidden field or invalid amount.
            ClosureLockedError: the closure is validated.
        """
        forbidden = sorted(set(patch) - PATCHABLE_FIELDS)
        if forbidden:
            raise ValueError(f"Fields cannot be patched: {', '.join(forbidden)}")

        closure = self._locked_closure(closure_id)
        self._refuse_if_locked(closure, "update")

        changed: list[str] = []
        for name, value in patch.items():
            if name in MONEY_FIELDS:
                value = _money(name, value)
            elif name == "cash_count" and value is not None:
                value = {str(k): int(v) for k, v in value.items()}
            if getattr(closure, name) != value:
                setattr(closure, name, value)
                changed.append(name)

        if not changed:
            return ClosureInfo.from_model(closure)

        _apply_derived(closure)
        closure.updated_by_id = ctx.actor_id
        self.session.flush()

        if RECONCILED_FIELDS.intersection(changed):
            self._reconciler.invalidate(closure.id, reason="inputs_changed")

        logger.info(
            "closure_updated",
            extra={"closure_id": closure.id, "fields": sorted(changed), "variance": closure.variance},
        )
        return ClosureInfo.from_model(closure)

    def validate(self, ctx: SchoolContext, closure_id: UUID) -> ClosureInfo:
        """
        DRAFT -> LOCKED.

        Raises:
            ClosureLockedError: already validated, or lost the race.
            VarianceUnjustifiedError / JustificationStaleError.
        """
        closure = self._locked_closure(closure_id)
        self._refuse_if_locked(closure, "validate")
        self._reconciler.ensure_justified(closure)

        validated_at = self._clock.now()
        result = self.session.execute(
            update(DailyClosure)
            .where(
                DailyClosure.id == closure.id,
                DailyClosure.status == ClosureStatus.DRAFT.value,
            )
            .values(
                status=ClosureStatus.COMPLETED.value,
                validated_at=validated_at,
                validated_by_id=ctx.actor_id,
                updated_by_id=ctx.actor_id,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.warning(
                "closure_validation_lost_race",
                extra={"closure_id": closure.id},
            )
            raise ClosureLockedError(str(closure.id), "validate")

        self.session.refresh(closure)
        logger.info(
            "closure_validated",
            extra={
                "closure_id": closure.id,
                "closure_date": closure.closure_date,
                "variance": closure.variance,
                "validated_by": ctx.actor_id,
            },
        )
        return ClosureInfo.from_model(closure)

    def delete(self, ctx: SchoolContext, closure_id: UUID) -> None:
        """Remove a DRAFT closure and its justifications."""
        closure = self._locked_closure(closure_id)
        self._refuse_if_locked(closure, "delete")
        closure_date = closure.closure_date
        self.session.delete(closure)
        self.session.flush()
        logger.info(
            "closure_deleted",
            extra={"closure_id": closure_id, "closure_date": closure_date, "actor": ctx.actor_id},
        )

    def get(self, closure_id: UUID) -> ClosureInfo:
        info = self._selector.get(closure_id)
        if info is None:
            raise ClosureNotFoundError(str(closure_id))
        return info

    def get_for_date(self, ctx: SchoolContext, day: date) -> ClosureInfo | None:
        return self._selector.get_for_date(ctx.school_id, ctx.academic_year, day)
