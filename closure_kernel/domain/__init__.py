"""
Pure domain layer.

Data transfer objects, transaction variants and reference formatting with
NO dependencies on:
- ORM (SQLAlchemy)
- Database
- I/O

Time only enters through an injected Clock.
"""

from closure_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from closure_kernel.domain.collaborators import (
    ExpensesGateway,
    InMemoryGateway,
    PaymentsGateway,
    StudentBalanceGateway,
)
from closure_kernel.domain.context import SchoolContext
from closure_kernel.domain.dtos import (
    AccountType,
    ClosureInfo,
    IssuedReference,
    JustificationInfo,
    StudentBalance,
    TreasuryAccount,
    WorkingCapitalSnapshot,
)
from closure_kernel.domain.reference_format import ReferenceScope
from closure_kernel.domain.transactions import (
    Expense,
    Revenue,
    RevenueKind,
    Transaction,
    TransactionStatus,
    expense_from_record,
    revenue_from_record,
)

__all__ = [
    # Clock
    "Clock",
    "DeterministicClock",
    "SystemClock",
    # Context
    "SchoolContext",
    # Collaborators
    "ExpensesGateway",
    "InMemoryGateway",
    "PaymentsGateway",
    "StudentBalanceGateway",
    # DTOs
    "AccountType",
    "ClosureInfo",
    "IssuedReference",
    "JustificationInfo",
    "StudentBalance",
    "TreasuryAccount",
    "WorkingCapitalSnapshot",
    # Transactions
    "Expense",
    "Revenue",
    "RevenueKind",
    "Transaction",
    "TransactionStatus",
    "expense_from_record",
    "revenue_from_record",
    "ReferenceScope",
]
