"""
closure_engines.treasury -- working capital indicators and treasury alerts.

Responsibility:
    Derive FR / BFR / TN from externally supplied balances and produce the
    advisory alerts a treasurer looks at after the day is closed.

        FR  (fund of rolling capital) = stable resources - fixed assets
        BFR (liquidity need)          = receivables + inventory - payables
        TN  (net treasury)            = FR - BFR

    FR and BFR may also be supplied directly; the components are then
    ignored.

Alert rules:
    FR < 0                         -> STRUCTURAL_IMBALANCE   (critical)
    TN < 0                         -> LIQUIDITY_DEFICIT      (critical)
    FR >= 0 and TN >= 0            -> BALANCED               (info)
    net_balance < 0 over a period  -> CASH_FLOW_RISK         (warning, critical
                                      when the deficit exceeds 30% of income)
    drafts dated before today      -> UNVALIDATED_CLOSURES   (warning)
    collection rate < threshold    -> LOW_COLLECTION_RATE    (warning, critical
                                      under 50%)

Alerts are advisory only; nothing here changes any state.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping

from closure_engines.tracer import traced_engine
from closure_kernel.domain.dtos import (
    AccountType,
    ClosureInfo,
    StudentBalance,
    TreasuryAccount,
    WorkingCapitalSnapshot,
)
from closure_kernel.domain.transactions import to_decimal

_ZERO = Decimal("0")
_HUNDRED = Decimal("100")
_CRITICAL_COLLECTION_RATE = Decimal("50")
_CASH_FLOW_CRITICAL_RATIO = Decimal("0.3")


class AlertCode(str, Enum):
    STRUCTURAL_IMBALANCE = "STRUCTURAL_IMBALANCE"
    LIQUIDITY_DEFICIT = "LIQUIDITY_DEFICIT"
    BALANCED = "BALANCED"
    CASH_FLOW_RISK = "CASH_FLOW_RISK"
    UNVALIDATED_CLOSURES = "UNVALIDATED_CLOSURES"
    LOW_COLLECTION_RATE = "LOW_COLLECTION_RATE"


class AlertSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass(frozen=True)
class TreasuryAlert:
    code: AlertCode
    severity: AlertSeverity
    message: str
    value: Decimal | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code.value,
            "severity": self.severity.value,
            "message": self.message,
            "value": str(self.value) if self.value is not None else None,
        }


def _optional_decimal(value: Any) -> Decimal | None:
    return None if value is None else to_decimal(value)


@dataclass(frozen=True)
class WorkingCapitalInputs:
    """
    Opaque balance-sheet inputs.

    Either ``fund_of_rolling_capital`` or both ``stable_resources`` and
    ``fixed_assets`` must be given; either ``liquidity_need`` or at least
    one of ``receivables``/``inventory``/``payables`` (missing ones count 0).
    """

    fund_of_rolling_capital: Decimal | None = None
    liquidity_need: Decimal | None = None
    stable_resources: Decimal | None = None
    fixed_assets: Decimal | None = None
    receivables: Decimal | None = None
    inventory: Decimal | None = None
    payables: Decimal | None = None

    def __post_init__(self) -> None:
        for name in (
            "fund_of_rolling_capital",
            "liquidity_need",
            "stable_resources",
            "fixed_assets",
            "receivables",
            "inventory",
            "payables",
        ):
            object.__setattr__(self, name, _optional_decimal(getattr(self, name)))

        if self.fund_of_rolling_capital is None and (
            self.stable_resources is None or self.fixed_assets is None
        ):
            raise ValueError(
                "fund_of_rolling_capital, or stable_resources and fixed_assets, is required"
            )
        if self.liquidity_need is None and all(
            v is None for v in (self.receivables, self.inventory, self.payables)
        ):
            raise ValueError(
                "liquidity_need, or receivables/inventory/payables, is required"
            )

    @property
    def fr(self) -> Decimal:
        if self.fund_of_rolling_capital is not None:
            return self.fund_of_rolling_capital
        return self.stable_resources - self.fixed_assets

    @property
    def bfr(self) -> Decimal:
        if self.liquidity_need is not None:
            return self.liquidity_need
        return (self.receivables or _ZERO) + (self.inventory or _ZERO) - (self.payables or _ZERO)


@dataclass(frozen=True)
class WorkingCapitalResult:
    snapshot: WorkingCapitalSnapshot
    alerts: tuple[TreasuryAlert, ...]

    @property
    def alert_codes(self) -> frozenset[AlertCode]:
        return frozenset(a.code for a in self.alerts)

    @property
    def is_balanced(self) -> bool:
        return AlertCode.BALANCED in self.alert_codes

    def to_dict(self) -> dict[str, Any]:
        return {
            "fund_of_rolling_capital": str(self.snapshot.fund_of_rolling_capital),
            "liquidity_need": str(self.snapshot.liquidity_need),
            "net_treasury": str(self.snapshot.net_treasury),
            "alerts": [a.to_dict() for a in self.alerts],
        }


def net_balance(total_revenues: Any, total_expenses: Any) -> Decimal:
    return to_decimal(total_revenues) - to_decimal(total_expenses)


def working_capital_alerts(snapshot: WorkingCapitalSnapshot) -> tuple[TreasuryAlert, ...]:
    alerts: list[TreasuryAlert] = []
    if snapshot.fund_of_rolling_capital < _ZERO:
        alerts.append(
            TreasuryAlert(
                code=AlertCode.STRUCTURAL_IMBALANCE,
                severity=AlertSeverity.CRITICAL,
                message=(
                    "Fund of rolling capital is negative: stable resources do not "
                    "cover fixed assets"
                ),
                value=snapshot.fund_of_rolling_capital,
            )
        )
    if snapshot.net_treasury < _ZERO:
        alerts.append(
            TreasuryAlert(
                code=AlertCode.LIQUIDITY_DEFICIT,
                severity=AlertSeverity.CRITICAL,
                message="Net treasury is negative: short-term liquidity deficit",
                value=snapshot.net_treasury,
            )
        )
    if not alerts:
        alerts.append(
            TreasuryAlert(
                code=AlertCode.BALANCED,
                severity=AlertSeverity.INFO,
                message="Working capital is balanced",
                value=snapshot.net_treasury,
            )
        )
    return tuple(alerts)


@traced_engine("working_capital", "1.0", fingerprint_fields=("inputs",))
def compute_working_capital(*, inputs: WorkingCapitalInputs) -> WorkingCapitalResult:
    fr = inputs.fr
    bfr = inputs.bfr
    snapshot = WorkingCapitalSnapshot(
        fund_of_rolling_capital=fr,
        liquidity_need=bfr,
        net_treasury=fr - bfr,
    )
    return WorkingCapitalResult(snapshot=snapshot, alerts=working_capital_alerts(snapshot))


@dataclass(frozen=True)
class AccountBalances:
    total: Decimal
    by_type: Mapping[AccountType, Decimal] = field(
        default_factory=lambda: MappingProxyType({})
    )


def summarize_accounts(accounts: Iterable[TreasuryAccount]) -> AccountBalances:
    by_type: dict[AccountType, Decimal] = {}
    for account in accounts:
        by_type[account.account_type] = by_type.get(account.account_type, _ZERO) + account.balance
    return AccountBalances(
        total=sum(by_type.values(), _ZERO),
        by_type=MappingProxyType(by_type),
    )


def collection_rate(balances: Iterable[StudentBalance]) -> Decimal | None:
    """``total_paid / total_expected`` as a percent with 2 decimals; None if nothing is expected."""
    expected = _ZERO
    paid = _ZERO
    for balance in balances:
        expected += balance.total_expected
        paid += balance.total_paid
    if expected == _ZERO:
        return None
    return (paid * _HUNDRED / expected).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def cash_flow_alert(total_income: Decimal, total_expenses: Decimal) -> TreasuryAlert | None:
    net = total_income - total_expenses
    if net >= _ZERO:
        return None
    deficit = -net
    severity = (
        AlertSeverity.CRITICAL
        if deficit > total_income * _CASH_FLOW_CRITICAL_RATIO
        else AlertSeverity.WARNING
    )
    return TreasuryAlert(
        code=AlertCode.CASH_FLOW_RISK,
        severity=severity,
        message=f"Expenses ({total_expenses}) exceed revenues ({total_income}) over the period",
        value=net,
    )


@dataclass(frozen=True)
class TreasuryReport:
    accounts: AccountBalances
    working_capital: WorkingCapitalResult | None
    net_balance: Decimal | None
    current_treasury: Decimal | None
    latest_validated_date: date | None
    unvalidated_closure_dates: tuple[date, ...]
    collection_rate: Decimal | None
    alerts: tuple[TreasuryAlert, ...]

    @property
    def alert_codes(self) -> frozenset[AlertCode]:
        return frozenset(a.code for a in self.alerts)

    def to_dict(self) -> dict[str, Any]:
        return {
            "accounts": {
                "total": str(self.accounts.total),
                "by_type": {t.value: str(v) for t, v in self.accounts.by_type.items()},
            },
            "working_capital": (
                self.working_capital.to_dict() if self.working_capital else None
            ),
            "net_balance": str(self.net_balance) if self.net_balance is not None else None,
            "current_treasury": (
                str(self.current_treasury) if self.current_treasury is not None else None
            ),
            "latest_validated_date": (
                self.latest_validated_date.isoformat() if self.latest_validated_date else None
            ),
            "unvalidated_closure_dates": [d.isoformat() for d in self.unvalidated_closure_dates],
            "collection_rate": (
                str(self.collection_rate) if self.collection_rate is not None else None
            ),
            "alerts": [a.to_dict() for a in self.alerts],
        }


@traced_engine("treasury_report", "1.0")
def build_treasury_report(
    *,
    accounts: Sequence[TreasuryAccount],
    inputs: WorkingCapitalInputs | None = None,
    total_revenues: Decimal | None = None,
    total_expenses: Decimal | None = None,
    student_balances: Sequence[StudentBalance] = (),
    latest_validated: ClosureInfo | None = None,
    unvalidated_dates: Sequence[date] = (),
    low_collection_threshold: Decimal = Decimal("70"),
    flag_unvalidated: bool = True,
) -> TreasuryReport:
    alerts: list[TreasuryAlert] = []

    working_capital = None
    if inputs is not None:
        working_capital = compute_working_capital(inputs=inputs)
        alerts.extend(working_capital.alerts)

    period_net = None
    if total_revenues is not None and total_expenses is not None:
        revenues = to_decimal(total_revenues)
        expenses = to_decimal(total_expenses)
        period_net = revenues - expenses
        flow_alert = cash_flow_alert(revenues, expenses)
        if flow_alert is not None:
            alerts.append(flow_alert)

    unvalidated = tuple(sorted(unvalidated_dates, reverse=True))
    if flag_unvalidated and unvalidated:
        alerts.append(
            TreasuryAlert(
                code=AlertCode.UNVALIDATED_CLOSURES,
                severity=AlertSeverity.WARNING,
                message=f"{len(unvalidated)} daily closure(s) awaiting validation",
                value=Decimal(len(unvalidated)),
            )
        )

    rate = collection_rate(student_balances)
    if rate is not None and rate < low_collection_threshold:
        alerts.append(
            TreasuryAlert(
                code=AlertCode.LOW_COLLECTION_RATE,
                severity=(
                    AlertSeverity.CRITICAL
                    if rate < _CRITICAL_COLLECTION_RATE
                    else AlertSeverity.WARNING
                ),
                message=f"Low collection rate: {rate}%",
                value=rate,
            )
        )

    return TreasuryReport(
        accounts=summarize_accounts(accounts),
        working_capital=working_capital,
        net_balance=period_net,
        current_treasury=latest_validated.cash_on_hand if latest_validated else None,
        latest_validated_date=latest_validated.closure_date if latest_validated else None,
        unvalidated_closure_dates=unvalidated,
        collection_rate=rate,
        alerts=tuple(alerts),
    )
