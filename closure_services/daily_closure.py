"""
closure_services.daily_closure -- The daily closure facade.

Responsibility:
    Single entrypoint for the school's daily closure: receipt references,
    day aggregation, the closure lifecycle (open, update, justify, validate,
    delete), closure history and treasury analysis.  Owns the transaction
    boundary for every operation and bridges the active configuration into
    kernel parameters.

Architecture position:
    Services -- stateful orchestration over engines + kernel.
    Composes ReferenceIssuer, LedgerAggregator, ClosureService,
    VarianceReconciler and ClosureSelector.  Reads configuration through
    ``closure_config.get_active_config`` only.

Invariants enforced:
    - One ``session_scope`` per public operation: everything it writes
      commits together or not at all.
    - Validation listeners run only after the validating transaction has
      committed.
    - Every operation runs with school, academic year, actor and a fresh
      correlation id bound to the log context.

Failure modes:
    - Kernel errors (``ClosureKernelError`` subclasses) propagate; wrap a
      call in ``payload()`` to get the ``{success, error}`` envelope instead.
    - ValueError for malformed inputs (unknown denomination, unknown patch
      field, negative amounts).
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping, Sequence
from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy.orm import Session, sessionmaker

from closure_config import ClosureEngineConfig, get_active_config
from closure_engines.aggregation import AggregationRules, DailyAggregate
from closure_engines.treasury import (
    TreasuryReport,
    WorkingCapitalInputs,
    WorkingCapitalResult,
    build_treasury_report,
)
from closure_engines.treasury import compute_working_capital as _compute_working_capital
from closure_engines.variance import CashCount, VarianceResult, count_cash
from closure_engines.variance import compute_variance as _compute_variance
from closure_kernel.db.engine import session_scope
from closure_kernel.domain.clock import Clock, SystemClock
from closure_kernel.domain.collaborators import (
    ExpensesGateway,
    PaymentsGateway,
    StudentBalanceGateway,
)
from closure_kernel.domain.context import SchoolContext
from closure_kernel.domain.dtos import (
    ClosureInfo,
    IssuedReference,
    JustificationInfo,
    StudentBalance,
    TreasuryAccount,
)
from closure_kernel.domain.reference_format import ReferenceScope
from closure_kernel.domain.transactions import calendar_day
from closure_kernel.exceptions import ClosureKernelError, ClosureNotFoundError, error_payload
from closure_kernel.logging_config import get_logger
from closure_kernel.selectors.closure_selector import ClosureFilters, ClosureSelector
from closure_kernel.services.closure_service import ClosureInputs, ClosureService
from closure_kernel.services.ledger_aggregator import LedgerAggregator
from closure_kernel.services.reference_issuer import ReferenceIssuer
from closure_kernel.services.variance_reconciler import VarianceReconciler

logger = get_logger("services.daily_closure")

ValidationListener = Callable[[ClosureInfo], None]


def aggregation_rules(config: ClosureEngineConfig) -> AggregationRules:
    """Translate the aggregation policy into engine rules."""
    policy = config.aggregation
    return AggregationRules(
        excluded_revenue_statuses=frozenset(policy.excluded_revenue_statuses),
        excluded_expense_statuses=frozenset(policy.excluded_expense_statuses),
        tuition_categories=frozenset(policy.tuition_categories),
    )


def _to_data(result: Any) -> Any:
    if result is None or isinstance(result, (str, int, bool)):
        return result
    if isinstance(result, Decimal):
        return str(result)
    if isinstance(result, (date, datetime)):
        return result.isoformat()
    if hasattr(result, "to_dict"):
        return result.to_dict()
    if isinstance(result, Mapping):
        return {str(k): _to_data(v) for k, v in result.items()}
    if isinstance(result, (list, tuple)):
        return [_to_data(item) for item in result]
    if hasattr(result, "__dataclass_fields__"):
        return {name: _to_data(getattr(result, name)) for name in result.__dataclass_fields__}
    return result


def to_payload(result: Any) -> dict[str, Any]:
    """Success envelope: ``{"success": True, "data": ...}`` with JSON-ready data."""
    return {"success": True, "data": _to_data(result)}


class DailyClosureFacade:
    """
    Daily closure operations for one school, academic year and actor.

    Contract:
        Receives the session factory, the collaborator gateways, the
        configuration and the clock via constructor injection.
    Guarantees:
        - Each public method is one unit of work.
        - Returned objects are immutable DTOs, safe to use after the
          session has closed.
    Non-goals:
        - Does not reopen a validated closure.
        - Does not post anything to the payment or expense subsystems.
    """

    def __init__(
        self,
        ctx: SchoolContext,
        *,
        payments: PaymentsGateway,
        expenses: ExpensesGateway,
        balances: StudentBalanceGateway | None = None,
        session_factory: sessionmaker[Session] | None = None,
        config: ClosureEngineConfig | None = None,
        clock: Clock | None = None,
        validation_listeners: Iterable[ValidationListener] = (),
    ) -> None:
        self._ctx = ctx
        self._payments = payments
        self._expenses = expenses
        self._balances = balances
        self._session_factory = session_factory
        self._config = config or get_active_config()
        self._clock = clock or SystemClock()
        self._validation_listeners: list[ValidationListener] = list(validation_listeners)
        self._rules = aggregation_rules(self._config)

    @property
    def ctx(self) -> SchoolContext:
        return self._ctx

    @property
    def config(self) -> ClosureEngineConfig:
        return self._config

    def add_validation_listener(self, listener: ValidationListener) -> None:
        self._validation_listeners.append(listener)

    # ------------------------------------------------------------------
    # Wiring
    # ------------------------------------------------------------------

    def _log_context(self, **extra: str | None):
        return self._ctx.log_context(correlation_id=str(uuid4()), **extra)

    def _scope(self):
        return session_scope(self._session_factory)

    def _issuer(self, session: Session) -> ReferenceIssuer:
        policy = self._config.reference
        return ReferenceIssuer(
            session,
            self._clock,
            self._payments if policy.seed_from_gateway else None,
            ordinal_width=policy.ordinal_width,
            class_code_max_length=policy.class_code_max_length,
            default_type_letter=policy.default_type_letter,
            max_attempts=policy.max_issue_attempts,
        )

    def _aggregator(self) -> LedgerAggregator:
        policy = self._config.aggregation
        return LedgerAggregator(
            self._payments,
            self._expenses,
            rules=self._rules,
            max_attempts=policy.max_fetch_attempts,
            backoff_seconds=policy.retry_backoff_seconds,
        )

    def _closures(self, session: Session) -> ClosureService:
        return ClosureService(session, self._clock, VarianceReconciler(session, self._clock))

    def _closure_for_day(self, service: ClosureService, day: date) -> ClosureInfo:
        closure = service.get_for_date(self._ctx, day)
        if closure is None:
            raise ClosureNotFoundError(day.isoformat())
        return closure

    # ------------------------------------------------------------------
    # Receipt references
    # ------------------------------------------------------------------

    def reference_scope(
        self,
        class_name: str | None,
        revenue_type: str | None = None,
        typed: bool = True,
    ) -> ReferenceScope:
        """Scope in the facade's academic year."""
        return ReferenceScope(
            academic_year=self._ctx.academic_year,
            class_name=class_name,
            revenue_type=revenue_type,
            typed=typed,
        )

    def issue_reference(
        self,
        scope: ReferenceScope,
        transaction_id: str | None = None,
    ) -> IssuedReference:
        with self._log_context(), self._scope() as session:
            return self._issuer(session).issue(self._ctx, scope, transaction_id)

    def list_non_sequential_references(self) -> list[IssuedReference]:
        with self._log_context(), self._scope() as session:
            return self._issuer(session).list_non_sequential(self._ctx)

    # ------------------------------------------------------------------
    # Aggregation and variance
    # ------------------------------------------------------------------

    def aggregate(self, day: date | datetime | str) -> DailyAggregate:
        with self._log_context():
            return self._aggregator().aggregate(day)

    @staticmethod
    def compute_variance(opening_cash: Any, cash_on_hand: Any, net_balance: Any) -> VarianceResult:
        return _compute_variance(
            opening_cash=opening_cash,
            cash_on_hand=cash_on_hand,
            net_balance=net_balance,
        )

    def count_cash(self, counts: Mapping[str | int, int]) -> CashCount:
        """Total a denomination count in the configured currency."""
        return count_cash(counts, self._config.reconciliation.denominations)

    # ------------------------------------------------------------------
    # Closure lifecycle
    # ------------------------------------------------------------------

    def open_closure(
        self,
        day: date | datetime | str,
        *,
        opening_cash: Any,
        cash_on_hand: Any = None,
        bank_deposits: Any = 0,
        cash_count: Mapping[str | int, int] | None = None,
        notes: str | None = None,
    ) -> ClosureInfo:
        """
        Aggregate ``day`` and open a DRAFT closure from it.

        A ``cash_count`` without an explicit ``cash_on_hand`` sets the cash
        on hand to the counted total.

        Raises:
            DuplicateClosureError: a closure already exists for the date.
            AggregationUnavailableError: a gateway kept failing.
            ValueError: neither cash on hand nor a cash count was given.
        """
        target = calendar_day(day)
        counted = self.count_cash(cash_count) if cash_count is not None else None
        if cash_on_hand is None:
            if counted is None:
                raise ValueError("cash_on_hand or cash_count is required")
            cash_on_hand = counted.total

        with self._log_context():
            aggregate = self._aggregator().aggregate(target)
            inputs = ClosureInputs(
                total_income=aggregate.total_income,
                total_expenses=aggregate.total_expenses,
                pending_payments=aggregate.pending_income,
                pending_expenses=aggregate.pending_expenses,
                opening_cash=opening_cash,
                cash_on_hand=cash_on_hand,
                bank_deposits=bank_deposits,
                cash_count=counted.as_mapping() if counted is not None else None,
                notes=notes,
            )
            with self._scope() as session:
                return self._closures(session).create(self._ctx, target, inputs)

    def update_closure(self, closure_id: UUID, patch: Mapping[str, Any]) -> ClosureInfo:
        """
        Patch a DRAFT closure.

        Raises:
            ClosureLockedError: the closure is validated.
            ValueError: a field outside the allow-list.
        """
        patch = dict(patch)
        if patch.get("cash_count") is not None:
            counted = self.count_cash(patch["cash_count"])
            patch["cash_count"] = counted.as_mapping()
            patch.setdefault("cash_on_hand", counted.total)

        with self._log_context(closure_id=str(closure_id)), self._scope() as session:
            return self._closures(session).update(self._ctx, closure_id, patch)

    def refresh_closure_totals(self, day: date | datetime | str) -> ClosureInfo:
        """Re-aggregate ``day`` into its DRAFT closure."""
        target = calendar_day(day)
        with self._log_context():
            aggregate = self._aggregator().aggregate(target)
            with self._scope() as session:
                service = self._closures(session)
                closure = self._closure_for_day(service, target)
                return service.update(
                    self._ctx,
                    closure.id,
                    {
                        "total_income": aggregate.total_income,
                        "total_expenses": aggregate.total_expenses,
                        "pending_payments": aggregate.pending_income,
                        "pending_expenses": aggregate.pending_expenses,
                    },
                )

    def delete_closure(self, closure_id: UUID) -> None:
        with self._log_context(closure_id=str(closure_id)), self._scope() as session:
            self._closures(session).delete(self._ctx, closure_id)

    def record_justification(self, closure_id: UUID, text: str) -> JustificationInfo:
        with self._log_context(closure_id=str(closure_id)), self._scope() as session:
            return self._closures(session).reconciler.record_justification(
                self._ctx, closure_id, text
            )

    def list_justifications(self, closure_id: UUID) -> list[JustificationInfo]:
        with self._log_context(closure_id=str(closure_id)), self._scope() as session:
            return self._closures(session).reconciler.list_justifications(closure_id)

    def validate_closure(
        self,
        day: date | datetime | str,
        justification: str | None = None,
    ) -> ClosureInfo:
        """
        Validate the closure of ``day``, recording ``justification`` first
        when the variance still needs one.  Blank text counts as none.
        Listeners are notified once the lock is durable.

        Raises:
            ClosureNotFoundError: no closure for the date.
            ClosureLockedError: already validated.
            VarianceUnjustifiedError / JustificationStaleError.
        """
        target = calendar_day(day)
        with self._log_context():
            with self._scope() as session:
                service = self._closures(session)
                closure = self._closure_for_day(service, target)
                service.reconciler.justify_for_validation(self._ctx, closure.id, justification)
                validated = service.validate(self._ctx, closure.id)

            self._notify_validated(validated)
        return validated

    def _notify_validated(self, closure: ClosureInfo) -> None:
        for listener in self._validation_listeners:
            try:
                listener(closure)
            except Exception:
                # The closure is already locked; a listener cannot undo that.
                logger.error(
                    "closure_validation_listener_failed",
                    extra={"closure_id": closure.id, "listener": repr(listener)},
                    exc_info=True,
                )

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def get_closure(self, day: date | datetime | str) -> ClosureInfo | None:
        with self._scope() as session:
            return self._closures(session).get_for_date(self._ctx, calendar_day(day))

    def get_daily_closures(self, filters: ClosureFilters | None = None) -> list[ClosureInfo]:
        """Closures of the school, newest first; defaults to the current academic year."""
        filters = filters or ClosureFilters(academic_year=self._ctx.academic_year)
        with self._scope() as session:
            return ClosureSelector(session).list_closures(self._ctx.school_id, filters)

    # ------------------------------------------------------------------
    # Treasury
    # ------------------------------------------------------------------

    @staticmethod
    def compute_working_capital(inputs: WorkingCapitalInputs) -> WorkingCapitalResult:
        return _compute_working_capital(inputs=inputs)

    def _student_balances(self, student_ids: Iterable[str]) -> list[StudentBalance]:
        if self._balances is None:
            return []
        return [
            self._balances.get_student_balance(student_id, self._ctx.academic_year)
            for student_id in student_ids
        ]

    def treasury_report(
        self,
        accounts: Sequence[TreasuryAccount],
        inputs: WorkingCapitalInputs | None = None,
        *,
        student_ids: Iterable[str] = (),
        balances: Sequence[StudentBalance] | None = None,
        period: ClosureFilters | None = None,
    ) -> TreasuryReport:
        """
        Account balances, working capital and alerts for the school.

        Period revenues and expenses are the totals of the closures matched
        by ``period`` (the current academic year by default).  Student
        balances come from ``balances`` or are fetched for ``student_ids``.
        """
        period = period or ClosureFilters(academic_year=self._ctx.academic_year)
        policy = self._config.treasury
        with self._log_context(), self._scope() as session:
            selector = ClosureSelector(session)
            closures = selector.list_closures(self._ctx.school_id, period)
            latest = selector.latest_validated(self._ctx.school_id, self._ctx.academic_year)
            drafts = selector.unvalidated_before(
                self._ctx.school_id, self._ctx.academic_year, self._clock.today()
            )

        student_balances = list(balances) if balances is not None else self._student_balances(student_ids)
        return build_treasury_report(
            accounts=accounts,
            inputs=inputs,
            total_revenues=sum((c.total_income for c in closures), Decimal("0")) if closures else None,
            total_expenses=sum((c.total_expenses for c in closures), Decimal("0")) if closures else None,
            student_balances=student_balances,
            latest_validated=latest,
            unvalidated_dates=[c.closure_date for c in drafts],
            low_collection_threshold=policy.low_collection_rate_threshold,
            flag_unvalidated=policy.flag_unvalidated_closures,
        )

    # ------------------------------------------------------------------
    # Envelopes
    # ------------------------------------------------------------------

    def payload(self, operation: Callable[..., Any], *args: Any, **kwargs: Any) -> dict[str, Any]:
        """
        Run ``operation`` and wrap the outcome in the API envelope.

        Kernel errors become ``{"success": False, "error": {...}}``; anything
        else propagates.
        """
        try:
            return to_payload(operation(*args, **kwargs))
        except ClosureKernelError as exc:
            logger.warning(
                "operation_failed",
                extra={"operation": getattr(operation, "__name__", repr(operation)), "code": exc.code},
            )
            return error_payload(exc)
