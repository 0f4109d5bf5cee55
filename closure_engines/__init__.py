"""
Module: closure_engines
Responsibility:
    Pure calculation engines for the daily closure: day aggregation, cash
    variance and working-capital analysis.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import closure_kernel.domain (and sibling engine modules).
    MUST NOT import closure_services, the ORM models or the db layer.

Invariants enforced:
    - Engines never read the clock; dates are passed in.
    - Decimal-only arithmetic for money; floats are converted through str.
    - Identical inputs always produce identical outputs.

Every public engine is wrapped with ``@traced_engine`` and emits one
CLOSURE_ENGINE_TRACE record per call.
"""

from closure_engines.aggregation import (
    AggregationRules,
    DailyAggregate,
    MethodBucket,
    aggregate_day,
)
from closure_engines.treasury import (
    AlertCode,
    AlertSeverity,
    TreasuryAlert,
    TreasuryReport,
    WorkingCapitalInputs,
    WorkingCapitalResult,
    build_treasury_report,
    compute_working_capital,
    net_balance,
)
from closure_engines.variance import CashCount, VarianceResult, compute_variance, count_cash

__all__ = [
    "AggregationRules",
    "AlertCode",
    "AlertSeverity",
    "CashCount",
    "DailyAggregate",
    "MethodBucket",
    "TreasuryAlert",
    "TreasuryReport",
    "VarianceResult",
    "WorkingCapitalInputs",
    "WorkingCapitalResult",
    "aggregate_day",
    "build_treasury_report",
    "compute_variance",
    "compute_working_capital",
    "count_cash",
    "net_balance",
]
