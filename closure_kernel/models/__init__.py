"""ORM models for the closure kernel."""

from closure_kernel.models.daily_closure import ClosureStatus, DailyClosure
from closure_kernel.models.receipt_reference import ReceiptReference
from closure_kernel.models.variance_justification import (
    JustificationStatus,
    VarianceJustification,
)

__all__ = [
    "ClosureStatus",
    "DailyClosure",
    "JustificationStatus",
    "ReceiptReference",
    "VarianceJustification",
]
