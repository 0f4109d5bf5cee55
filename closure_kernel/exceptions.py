"""
Typed exception hierarchy for the closure kernel.

Every error has a typed class (catch by type, never by message), a ``code``
class attribute (machine-readable, API-safe) and structured attributes
carrying the context that produced it.

    ClosureKernelError (base)
    |
    +-- ClosureError
    |   +-- ClosureNotFoundError
    |   +-- DuplicateClosureError
    |   +-- ClosureLockedError
    |
    +-- ReconciliationError
    |   +-- VarianceUnjustifiedError
    |   +-- JustificationStaleError
    |   +-- JustificationAlreadyRecordedError
    |   +-- EmptyJustificationError
    |
    +-- ReceiptReferenceError
    |   +-- ReferenceIssuanceFailedError
    |
    +-- AggregationError
    |   +-- AggregationUnavailableError
    |   +-- TransientGatewayError
    |
    +-- TransactionError
        +-- InvalidTransactionError

Category          | Code                            | When raised
------------------|---------------------------------|--------------------------------------
Closure           | CLOSURE_NOT_FOUND               | Closure id / date does not exist
                  | DUPLICATE_CLOSURE               | A closure already exists for the date
                  | CLOSURE_LOCKED                  | Mutation of a validated closure
------------------|---------------------------------|--------------------------------------
Reconciliation    | VARIANCE_UNJUSTIFIED            | Variance != 0 and nothing recorded
                  | JUSTIFICATION_STALE             | Inputs changed since justification
                  | JUSTIFICATION_ALREADY_RECORDED  | Same variance justified twice
                  | EMPTY_JUSTIFICATION             | Blank justification text
------------------|---------------------------------|--------------------------------------
Reference         | REFERENCE_ISSUANCE_FAILED       | Collision retries exhausted
------------------|---------------------------------|--------------------------------------
Aggregation       | AGGREGATION_UNAVAILABLE         | Gateway retries exhausted
                  | TRANSIENT_GATEWAY_ERROR         | Retryable collaborator failure
------------------|---------------------------------|--------------------------------------
Transaction       | INVALID_TRANSACTION             | Malformed revenue/expense record

Retry policy: only ``TransientGatewayError`` (and the transport's
``ConnectionError`` / ``TimeoutError``) is retried, locally and with a
bounded number of attempts. Everything else is surfaced to the caller.
"""

from typing import Any


class ClosureKernelError(Exception):
    """
    Base exception for all closure kernel errors.

    All subclasses carry a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "CLOSURE_KERNEL_ERROR"


# Closure lifecycle


class ClosureError(ClosureKernelError):
    """Base exception for closure lifecycle errors."""

    code: str = "CLOSURE_ERROR"


class ClosureNotFoundError(ClosureError):
    """No closure matches the given id or date."""

    code: str = "CLOSURE_NOT_FOUND"

    def __init__(self, closure_ref: str):
        self.closure_ref = closure_ref
        super().__init__(f"Daily closure not found: {closure_ref}")


class DuplicateClosureError(ClosureError):
    """A closure for this school and date already exists."""

    code: str = "DUPLICATE_CLOSURE"

    def __init__(self, school_id: str, closure_date: str):
        self.school_id = school_id
        self.closure_date = closure_date
        super().__init__(
            f"A daily closure already exists for school {school_id} "
            f"on {closure_date}"
        )


class ClosureLockedError(ClosureError):
    """
    Mutation attempted on a validated (locked) closure.

    Validated closures are immutable; no in-scope transition reopens them.
    """

    code: str = "CLOSURE_LOCKED"

    def __init__(self, closure_id: str, operation: str):
        self.closure_id = closure_id
        self.operation = operation
        super().__init__(
            f"Cannot {operation} daily closure {closure_id}: "
            "the closure has been validated and is locked"
        )


# Reconciliation


class ReconciliationError(ClosureKernelError):
    """Base exception for cash reconciliation errors."""

    code: str = "RECONCILIATION_ERROR"


class VarianceUnjustifiedError(ReconciliationError):
    """Cash variance is non-zero and no justification has been recorded."""

    code: str = "VARIANCE_UNJUSTIFIED"

    def __init__(self, closure_id: str, variance: str):
        self.closure_id = closure_id
        self.variance = variance
        super().__init__(
            f"Cash variance of {variance} on closure {closure_id} must be "
            "justified before the day can be validated"
        )


class JustificationStaleError(ReconciliationError):
    """A justification exists but the reconciled inputs changed after it."""

    code: str = "JUSTIFICATION_STALE"

    def __init__(self, closure_id: str, justified_variance: str, current_variance: str):
        self.closure_id = closure_id
        self.justified_variance = justified_variance
        self.current_variance = current_variance
        super().__init__(
            f"The justification on closure {closure_id} was recorded for a "
            f"variance of {justified_variance}; the inputs changed and the "
            f"variance is now {current_variance}. Re-enter the justification."
        )


class JustificationAlreadyRecordedError(ReconciliationError):
    """The current variance value already carries a justification."""

    code: str = "JUSTIFICATION_ALREADY_RECORDED"

    def __init__(self, closure_id: str, variance: str):
        self.closure_id = closure_id
        self.variance = variance
        super().__init__(
            f"A justification for a variance of {variance} is already "
            f"recorded on closure {closure_id}"
        )


class EmptyJustificationError(ReconciliationError):
    """Justification text is empty or whitespace."""

    code: str = "EMPTY_JUSTIFICATION"

    def __init__(self, closure_id: str):
        self.closure_id = closure_id
        super().__init__(
            f"Justification text for closure {closure_id} must not be empty"
        )


# Reference issuance


class ReceiptReferenceError(ClosureKernelError):
    """Base exception for receipt reference errors."""

    code: str = "REFERENCE_ERROR"


class ReferenceIssuanceFailedError(ReceiptReferenceError):
    """
    Collision retries were exhausted while issuing a receipt reference.

    The caller must surface a manual-intervention prompt; the underlying
    transaction must never be dropped silently.
    """

    code: str = "REFERENCE_ISSUANCE_FAILED"

    def __init__(self, scope_key: str, attempts: int, last_reference: str | None):
        self.scope_key = scope_key
        self.attempts = attempts
        self.last_reference = last_reference
        super().__init__(
            f"Could not issue a unique receipt reference for scope {scope_key} "
            f"after {attempts} attempts (last candidate: {last_reference})"
        )


# Aggregation


class AggregationError(ClosureKernelError):
    """Base exception for ledger aggregation errors."""

    code: str = "AGGREGATION_ERROR"


class TransientGatewayError(AggregationError):
    """Retryable failure raised by a payments/expenses collaborator."""

    code: str = "TRANSIENT_GATEWAY_ERROR"

    def __init__(self, source: str, reason: str):
        self.source = source
        self.reason = reason
        super().__init__(f"Transient failure from {source}: {reason}")


class AggregationUnavailableError(AggregationError):
    """Transaction sources stayed unreachable after bounded retries."""

    code: str = "AGGREGATION_UNAVAILABLE"

    def __init__(self, source: str, attempts: int, reason: str):
        self.source = source
        self.attempts = attempts
        self.reason = reason
        super().__init__(
            f"Daily aggregation unavailable: {source} failed after "
            f"{attempts} attempts ({reason})"
        )


# Transactions


class TransactionError(ClosureKernelError):
    """Base exception for transaction record errors."""

    code: str = "TRANSACTION_ERROR"


class InvalidTransactionError(TransactionError):
    """A revenue or expense record is malformed."""

    code: str = "INVALID_TRANSACTION"

    def __init__(self, transaction_id: str, reason: str):
        self.transaction_id = transaction_id
        self.reason = reason
        super().__init__(f"Invalid transaction {transaction_id}: {reason}")


def error_payload(exc: ClosureKernelError) -> dict[str, Any]:
    """Render a kernel error as the ``{success, error}`` response envelope."""
    details = {
        k: v for k, v in vars(exc).items() if not k.startswith("_")
    }
    return {
        "success": False,
        "error": {"code": exc.code, "message": str(exc), **details},
    }
