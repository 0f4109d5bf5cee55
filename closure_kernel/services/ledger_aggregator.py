"""
LedgerAggregator -- fetch a day's transactions and aggregate them.

Responsibility:
    Reads revenues and expenses from the payment and expense gateways and
    hands them to the pure ``closure_engines.aggregation.aggregate_day``.

Architecture position:
    Kernel > Services -- imperative shell around a pure engine.  No
    database access; it owns nothing and writes nothing.

Failure modes:
    - Transient gateway errors (``ConnectionError``, ``TimeoutError``,
      ``TransientGatewayError``) are retried up to ``max_attempts`` times,
      then surface as AggregationUnavailableError.
    - Any other exception (including InvalidTransactionError from a
      malformed record) propagates unchanged on the first occurrence.
"""

import time
from collections.abc import Callable, Sequence
from datetime import date, datetime
from typing import TypeVar

from closure_engines.aggregation import DEFAULT_RULES, AggregationRules, DailyAggregate, aggregate_day
from closure_kernel.domain.collaborators import ExpensesGateway, PaymentsGateway
from closure_kernel.domain.transactions import calendar_day
from closure_kernel.exceptions import AggregationUnavailableError, TransientGatewayError
from closure_kernel.logging_config import get_logger

logger = get_logger("services.ledger_aggregator")

TRANSIENT_ERRORS = (ConnectionError, TimeoutError, TransientGatewayError)

T = TypeVar("T")


class LedgerAggregator:
    """
    Daily aggregation over the payment and expense gateways.

    Usage:
        aggregator = LedgerAggregator(payments, expenses, max_attempts=3)
        aggregate = aggregator.aggregate(date(2025, 10, 6))
    """

    def __init__(
        self,
        payments: PaymentsGateway,
        expenses: ExpensesGateway,
        *,
        rules: AggregationRules = DEFAULT_RULES,
        max_attempts: int = 3,
        backoff_seconds: float = 0.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self._payments = payments
        self._expenses = expenses
        self._rules = rules
        self._max_attempts = max_attempts
        self._backoff_seconds = backoff_seconds
        self._sleep = sleep

    def _fetch(self, source: str, fetch: Callable[[], Sequence[T]]) -> Sequence[T]:
        last_error: BaseException | None = None
        for attempt in range(1, self._max_attempts + 1):
            try:
                return fetch()
            except TRANSIENT_ERRORS as exc:
                last_error = exc
                logger.warning(
                    "aggregation_fetch_retry",
                    extra={
                        "source": source,
                        "attempt": attempt,
                        "max_attempts": self._max_attempts,
                        "error": str(exc),
                    },
                )
                if attempt < self._max_attempts and self._backoff_seconds:
                    self._sleep(self._backoff_seconds * attempt)

        logger.error(
            "aggregation_unavailable",
            extra={"source": source, "attempts": self._max_attempts},
        )
        raise AggregationUnavailableError(
            source=source,
            attempts=self._max_attempts,
            reason=str(last_error),
        ) from last_error

    def aggregate(self, day: date | datetime | str) -> DailyAggregate:
        target = calendar_day(day)
        revenues = self._fetch("payments", self._payments.list_payments)
        expenses = self._fetch("expenses", self._expenses.list_expenses)

        aggregate = aggregate_day(
            day=target,
            revenues=revenues,
            expenses=expenses,
            rules=self._rules,
        )
        logger.info(
            "day_aggregated",
            extra={
                "day": target,
                "revenue_count": len(aggregate.revenues),
                "expense_count": len(aggregate.expenses),
                "total_income": aggregate.total_income,
                "total_expenses": aggregate.total_expenses,
                "net_balance": aggregate.net_balance,
            },
        )
        return aggregate
