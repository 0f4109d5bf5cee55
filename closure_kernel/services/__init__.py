"""Services for the closure kernel (write side)."""

from closure_kernel.services.closure_service import ClosureInputs, ClosureService
from closure_kernel.services.ledger_aggregator import LedgerAggregator
from closure_kernel.services.reference_issuer import ReferenceIssuer
from closure_kernel.services.sequence_service import SequenceService
from closure_kernel.services.variance_reconciler import VarianceReconciler

__all__ = [
    "ClosureInputs",
    "ClosureService",
    "LedgerAggregator",
    "ReferenceIssuer",
    "SequenceService",
    "VarianceReconciler",
]
