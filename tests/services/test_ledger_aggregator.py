"""
Tests for LedgerAggregator: gateway fetch with bounded retry.
"""

from datetime import date
from decimal import Decimal

import pytest

from closure_kernel.domain.collaborators import InMemoryGateway
from closure_kernel.domain.transactions import Expense, Revenue
from closure_kernel.exceptions import (
    AggregationUnavailableError,
    InvalidTransactionError,
    TransientGatewayError,
)
from closure_kernel.services.ledger_aggregator import LedgerAggregator


class FlakyGateway(InMemoryGateway):
    """Fails the first ``failures`` calls of each list with ``error``."""

    def __init__(self, failures, error, **kwargs):
        super().__init__(**kwargs)
        self.failures = {"payments": failures, "expenses": failures}
        self.error = error
        self.calls = {"payments": 0, "expenses": 0}

    def _maybe_fail(self, source):
        self.calls[source] += 1
        if self.calls[source] <= self.failures[source]:
            raise self.error

    def list_payments(self):
        self._maybe_fail("payments")
        return super().list_payments()

    def list_expenses(self):
        self._maybe_fail("expenses")
        return super().list_expenses()


class TestAggregate:
    def test_aggregates_the_day(self, scenario_gateway):
        aggregator = LedgerAggregator(scenario_gateway, scenario_gateway)

        result = aggregator.aggregate("2025-10-06T18:00:00")

        assert result.day == date(2025, 10, 6)
        assert result.total_income == Decimal("8000")
        assert result.total_expenses == Decimal("2000")
        assert result.net_balance == Decimal("6000")

    def test_malformed_record_propagates_immediately(self):
        class BadGateway(InMemoryGateway):
            calls = 0

            def list_payments(self):
                BadGateway.calls += 1
                raise InvalidTransactionError("p-1", "amount must be strictly positive, got 0")

        gateway = BadGateway()

        with pytest.raises(InvalidTransactionError):
            LedgerAggregator(gateway, gateway, max_attempts=3).aggregate(date(2025, 10, 6))

        assert BadGateway.calls == 1


class TestRetry:
    @pytest.mark.parametrize(
        "error",
        [
            ConnectionError("reset by peer"),
            TimeoutError("read timed out"),
            TransientGatewayError("payments", "HTTP 503"),
        ],
    )
    def test_transient_errors_are_retried(self, error, captured_logs):
        gateway = FlakyGateway(
            2,
            error,
            payments=[Revenue(id="p", amount=100, occurred_on="2025-10-06")],
            expenses=[Expense(id="e", amount=40, occurred_on="2025-10-06")],
        )
        sleeps = []

        result = LedgerAggregator(
            gateway, gateway, max_attempts=3, backoff_seconds=0.5, sleep=sleeps.append
        ).aggregate(date(2025, 10, 6))

        assert result.net_balance == Decimal("60")
        assert gateway.calls == {"payments": 3, "expenses": 3}
        assert sleeps == [0.5, 1.0, 0.5, 1.0]
        retries = [r for r in captured_logs() if r["message"] == "aggregation_fetch_retry"]
        assert len(retries) == 4

    def test_unavailable_after_max_attempts(self):
        gateway = FlakyGateway(5, ConnectionError("down"))

        with pytest.raises(AggregationUnavailableError) as exc_info:
            LedgerAggregator(gateway, gateway, max_attempts=3).aggregate(date(2025, 10, 6))

        assert exc_info.value.source == "payments"
        assert exc_info.value.attempts == 3
        assert "down" in exc_info.value.reason
        assert gateway.calls["payments"] == 3
        assert gateway.calls["expenses"] == 0

    def test_no_sleep_without_backoff(self):
        gateway = FlakyGateway(1, TimeoutError("slow"))
        sleeps = []

        LedgerAggregator(gateway, gateway, max_attempts=2, sleep=sleeps.append).aggregate(
            date(2025, 10, 6)
        )

        assert sleeps == []

    def test_max_attempts_must_be_positive(self, gateway):
        with pytest.raises(ValueError):
            LedgerAggregator(gateway, gateway, max_attempts=0)
