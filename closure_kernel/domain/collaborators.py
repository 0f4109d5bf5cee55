"""
Collaborator protocols consumed by the closure engine.

The payment, expense and student-balance subsystems are black boxes.  The
kernel only relies on these shapes; adapters over the real API live with
the caller.

    PaymentsGateway.list_payments()          -> revenues, incl. their references
    ExpensesGateway.list_expenses()          -> expenses
    StudentBalanceGateway.get_student_balance(student_id, academic_year)

Implementations may raise ``ConnectionError``, ``TimeoutError`` or
``TransientGatewayError`` for retryable transport failures; anything else
is treated as a hard failure.
"""

from __future__ import annotations

from typing import Protocol, Sequence, runtime_checkable

from closure_kernel.domain.dtos import StudentBalance
from closure_kernel.domain.transactions import Expense, Revenue


@runtime_checkable
class PaymentsGateway(Protocol):
    """Read access to the payment subsystem's revenues."""

    def list_payments(self) -> Sequence[Revenue]:
        ...


@runtime_checkable
class ExpensesGateway(Protocol):
    """Read access to the expense subsystem."""

    def list_expenses(self) -> Sequence[Expense]:
        ...


@runtime_checkable
class StudentBalanceGateway(Protocol):
    def get_student_balance(self, student_id: str, academic_year: str) -> StudentBalance:
        ...


class InMemoryGateway:
    """
    Gateway over fixed lists. Satisfies all three protocols.

    Used for local runs and tests; replace the lists to change what the
    engine sees.
    """

    def __init__(
        self,
        payments: Sequence[Revenue] = (),
        expenses: Sequence[Expense] = (),
        balances: dict[str, StudentBalance] | None = None,
    ):
        self.payments = list(payments)
        self.expenses = list(expenses)
        self.balances = dict(balances or {})

    def list_payments(self) -> Sequence[Revenue]:
        return tuple(self.payments)

    def list_expenses(self) -> Sequence[Expense]:
        return tuple(self.expenses)

    def get_student_balance(self, student_id: str, academic_year: str) -> StudentBalance:
        return self.balances[student_id]
