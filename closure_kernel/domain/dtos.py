"""
DTOs -- immutable data crossing the kernel boundary.

Services and selectors return these instead of ORM instances;
``from_model()`` converters are only called from the service/selector layer.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Mapping
from uuid import UUID

if TYPE_CHECKING:
    from closure_kernel.models.daily_closure import DailyClosure as DailyClosureModel
    from closure_kernel.models.receipt_reference import (
        ReceiptReference as ReceiptReferenceModel,
    )
    from closure_kernel.models.variance_justification import (
        VarianceJustification as VarianceJustificationModel,
    )


class AccountType(str, Enum):
    CASH = "cash"
    BANK = "bank"
    MOBILE_MONEY = "mobile_money"
    OTHER = "other"


@dataclass(frozen=True)
class TreasuryAccount:
    """Read-only account balance fed to the treasury analyzer."""

    id: str
    balance: Decimal
    account_type: AccountType = AccountType.OTHER
    name: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.balance, Decimal):
            object.__setattr__(self, "balance", Decimal(str(self.balance)))
        if not isinstance(self.account_type, AccountType):
            try:
                kind = AccountType(str(self.account_type).lower())
            except ValueError:
                kind = AccountType.OTHER
            object.__setattr__(self, "account_type", kind)


@dataclass(frozen=True)
class WorkingCapitalSnapshot:
    """FR / BFR / TN, derived on demand and never persisted."""

    fund_of_rolling_capital: Decimal
    liquidity_need: Decimal
    net_treasury: Decimal


@dataclass(frozen=True)
class StudentBalance:
    """Shape returned by ``StudentBalanceGateway.get_student_balance``."""

    student_id: str
    total_expected: Decimal
    total_paid: Decimal
    total_remaining: Decimal


@dataclass(frozen=True)
class IssuedReference:
    """A receipt reference handed to the payment subsystem."""

    reference: str
    scope_key: str
    ordinal: int | None
    is_sequential: bool
    issued_at: datetime | None = None
    transaction_id: str | None = None

    @classmethod
    def from_model(cls, model: ReceiptReferenceModel) -> IssuedReference:
        return cls(
            reference=model.reference,
            scope_key=model.scope_key,
            ordinal=model.ordinal,
            is_sequential=model.is_sequential,
            issued_at=model.created_at,
            transaction_id=model.transaction_id,
        )


@dataclass(frozen=True)
class JustificationInfo:
    id: UUID
    closure_id: UUID
    text: str
    variance: Decimal
    status: str
    recorded_at: datetime | None
    recorded_by_id: UUID

    @classmethod
    def from_model(cls, model: VarianceJustificationModel) -> JustificationInfo:
        return cls(
            id=model.id,
            closure_id=model.closure_id,
            text=model.text,
            variance=model.variance,
            status=str(model.status.value if hasattr(model.status, "value") else model.status),
            recorded_at=model.created_at,
            recorded_by_id=model.created_by_id,
        )


@dataclass(frozen=True)
class ClosureInfo:
    """Immutable view of a daily closure."""

    id: UUID
    school_id: str
    academic_year: str
    closure_date: date
    status: str
    total_income: Decimal
    total_expenses: Decimal
    net_balance: Decimal
    opening_cash: Decimal
    cash_on_hand: Decimal
    expected_cash: Decimal
    variance: Decimal
    bank_deposits: Decimal
    pending_payments: Decimal
    pending_expenses: Decimal
    cash_count: Mapping[str, int] = field(default_factory=lambda: MappingProxyType({}))
    notes: str | None = None
    created_at: datetime | None = None
    created_by_id: UUID | None = None
    validated_at: datetime | None = None
    validated_by_id: UUID | None = None

    @property
    def is_locked(self) -> bool:
        return self.status == "completed"

    @classmethod
    def from_model(cls, model: DailyClosureModel) -> ClosureInfo:
        return cls(
            id=model.id,
            school_id=model.school_id,
            academic_year=model.academic_year,
            closure_date=model.closure_date,
            status=str(model.status.value if hasattr(model.status, "value") else model.status),
            total_income=model.total_income,
            total_expenses=model.total_expenses,
            net_balance=model.net_balance,
            opening_cash=model.opening_cash,
            cash_on_hand=model.cash_on_hand,
            expected_cash=model.expected_cash,
            variance=model.variance,
            bank_deposits=model.bank_deposits,
            pending_payments=model.pending_payments,
            pending_expenses=model.pending_expenses,
            cash_count=MappingProxyType(dict(model.cash_count or {})),
            notes=model.notes,
            created_at=model.created_at,
            created_by_id=model.created_by_id,
            validated_at=model.validated_at,
            validated_by_id=model.validated_by_id,
        )

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready dict with decimals and dates rendered as strings."""
        return {
            "id": str(self.id),
            "school_id": self.school_id,
            "academic_year": self.academic_year,
            "date": self.closure_date.isoformat(),
            "status": self.status,
            "total_income": str(self.total_income),
            "total_expenses": str(self.total_expenses),
            "net_balance": str(self.net_balance),
            "opening_cash": str(self.opening_cash),
            "cash_on_hand": str(self.cash_on_hand),
            "expected_cash": str(self.expected_cash),
            "variance": str(self.variance),
            "bank_deposits": str(self.bank_deposits),
            "pending_payments": str(self.pending_payments),
            "pending_expenses": str(self.pending_expenses),
            "cash_count": dict(self.cash_count),
            "notes": self.notes,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "created_by": str(self.created_by_id) if self.created_by_id else None,
            "validated_at": self.validated_at.isoformat() if self.validated_at else None,
            "validated_by": str(self.validated_by_id) if self.validated_by_id else None,
        }
