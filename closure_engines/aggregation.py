"""
closure_engines.aggregation -- daily ledger aggregation.

Responsibility:
    Filter a transaction set down to one calendar day and compute the
    day's totals, payment-method histogram and tuition share.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  The gateway fetch and its
    bounded retry live in ``closure_kernel.services.ledger_aggregator``.

Invariants enforced:
    - ``net_balance == total_income - total_expenses``.
    - Rejected expenses never count towards any total.
    - Day matching is calendar-day truncation of the stored date, with no
      timezone conversion.
    - ``tuition_share`` is an integer percent (half-up), 0 when income is 0.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from types import MappingProxyType
from typing import Any

from closure_engines.tracer import traced_engine
from closure_kernel.domain.transactions import (
    Expense,
    Revenue,
    TransactionStatus,
    normalize_tag,
)

UNSPECIFIED_METHOD = "unspecified"

_ZERO = Decimal("0")
_HUNDRED = Decimal("100")


def _statuses(values: Iterable[str | TransactionStatus]) -> frozenset[TransactionStatus]:
    return frozenset(TransactionStatus(getattr(v, "value", v)) for v in values)


@dataclass(frozen=True)
class AggregationRules:
    """Which statuses are left out of a day, and which categories count as tuition."""

    excluded_revenue_statuses: frozenset[TransactionStatus] = frozenset(
        {TransactionStatus.CANCELLED, TransactionStatus.REJECTED}
    )
    excluded_expense_statuses: frozenset[TransactionStatus] = frozenset(
        {TransactionStatus.CANCELLED, TransactionStatus.REJECTED}
    )
    tuition_categories: frozenset[str] = frozenset(
        {"inscription", "reinscription", "tuition", "scolarite"}
    )

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "excluded_revenue_statuses", _statuses(self.excluded_revenue_statuses)
        )
        # Rejected expenses are excluded whatever the configuration says.
        object.__setattr__(
            self,
            "excluded_expense_statuses",
            _statuses(self.excluded_expense_statuses) | {TransactionStatus.REJECTED},
        )
        object.__setattr__(
            self,
            "tuition_categories",
            frozenset(normalize_tag(c) for c in self.tuition_categories),
        )


DEFAULT_RULES = AggregationRules()


@dataclass(frozen=True)
class MethodBucket:
    method: str
    count: int
    amount: Decimal


@dataclass(frozen=True)
class DailyAggregate:
    """One day's revenues and expenses with their derived figures."""

    day: date
    revenues: tuple[Revenue, ...]
    expenses: tuple[Expense, ...]
    total_income: Decimal
    total_expenses: Decimal
    net_balance: Decimal
    payment_method_histogram: Mapping[str, MethodBucket] = field(
        default_factory=lambda: MappingProxyType({})
    )
    tuition_share: int = 0
    pending_income: Decimal = _ZERO
    pending_expenses: Decimal = _ZERO

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.day.isoformat(),
            "revenues": [r.id for r in self.revenues],
            "expenses": [e.id for e in self.expenses],
            "total_income": str(self.total_income),
            "total_expenses": str(self.total_expenses),
            "net_balance": str(self.net_balance),
            "payment_method_histogram": {
                method: {"count": bucket.count, "amount": str(bucket.amount)}
                for method, bucket in self.payment_method_histogram.items()
            },
            "tuition_share": self.tuition_share,
            "pending_income": str(self.pending_income),
            "pending_expenses": str(self.pending_expenses),
        }


def _method_key(method: str | None) -> str:
    key = normalize_tag(method)
    return key or UNSPECIFIED_METHOD


def payment_method_histogram(revenues: Iterable[Revenue]) -> Mapping[str, MethodBucket]:
    """Count and amount per payment method, in first-seen order."""
    counts: dict[str, int] = {}
    amounts: dict[str, Decimal] = {}
    for revenue in revenues:
        key = _method_key(revenue.payment_method)
        counts[key] = counts.get(key, 0) + 1
        amounts[key] = amounts.get(key, _ZERO) + revenue.amount
    return MappingProxyType(
        {key: MethodBucket(method=key, count=counts[key], amount=amounts[key]) for key in counts}
    )


def tuition_share(
    revenues: Iterable[Revenue],
    total_income: Decimal,
    tuition_categories: frozenset[str],
) -> int:
    """Integer percent of income tagged as tuition, half-up; 0 when income is 0."""
    if total_income == _ZERO:
        return 0
    tuition = sum(
        (r.amount for r in revenues if r.tags & tuition_categories),
        _ZERO,
    )
    share = (tuition * _HUNDRED / total_income).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return int(share)


@traced_engine("aggregation", "1.0", fingerprint_fields=("day",))
def aggregate_day(
    *,
    day: date,
    revenues: Iterable[Revenue],
    expenses: Iterable[Expense],
    rules: AggregationRules = DEFAULT_RULES,
) -> DailyAggregate:
    """
    Aggregate one calendar day.

    Input order is preserved in the returned ``revenues``/``expenses``.
    """
    day_revenues = tuple(
        r for r in revenues
        if r.day == day and r.status not in rules.excluded_revenue_statuses
    )
    day_expenses = tuple(
        e for e in expenses
        if e.day == day and e.status not in rules.excluded_expense_statuses
    )

    total_income = sum((r.amount for r in day_revenues), _ZERO)
    total_expenses = sum((e.amount for e in day_expenses), _ZERO)

    return DailyAggregate(
        day=day,
        revenues=day_revenues,
        expenses=day_expenses,
        total_income=total_income,
        total_expenses=total_expenses,
        net_balance=total_income - total_expenses,
        payment_method_histogram=payment_method_histogram(day_revenues),
        tuition_share=tuition_share(day_revenues, total_income, rules.tuition_categories),
        pending_income=sum(
            (r.amount for r in day_revenues if r.status == TransactionStatus.PENDING), _ZERO
        ),
        pending_expenses=sum(
            (e.amount for e in day_expenses if e.status == TransactionStatus.PENDING), _ZERO
        ),
    )
