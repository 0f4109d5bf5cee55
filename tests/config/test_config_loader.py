"""
Tests for configuration loading and validation.
"""

from decimal import Decimal
from pathlib import Path

import pytest

from closure_config import get_active_config
from closure_config.loader import compute_checksum, load_config_file, parse_config
from closure_config.schema import (
    XOF_DENOMINATIONS,
    AggregationPolicy,
    ClosureEngineConfig,
    ReconciliationPolicy,
    ReferencePolicy,
    TreasuryPolicy,
)
from closure_services.daily_closure import aggregation_rules
from closure_kernel.domain.transactions import TransactionStatus


class TestDefaultSet:
    def test_default_set_loads(self):
        config = get_active_config()

        assert config.config_id == "default"
        assert config.version == 1
        assert config.reference.ordinal_width == 4
        assert config.reference.max_issue_attempts == 5
        assert config.reconciliation.currency == "XOF"
        assert config.reconciliation.denominations == XOF_DENOMINATIONS
        assert config.treasury.low_collection_rate_threshold == Decimal("70")
        assert len(config.checksum) == 64

    def test_config_trace_logged(self, captured_logs):
        config = get_active_config()

        traces = [r for r in captured_logs() if r["message"] == "CLOSURE_CONFIG_TRACE"]
        assert traces
        assert traces[-1]["checksum"] == config.checksum
        assert traces[-1]["config_id"] == "default"

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_active_config(tmp_path / "missing.yaml")


class TestParsing:
    def test_sections_optional(self):
        config = parse_config({"config_id": "bare", "version": 2})

        assert config.reference == ReferencePolicy()
        assert config.aggregation == AggregationPolicy()

    def test_config_id_required(self):
        with pytest.raises(KeyError):
            parse_config({"version": 1})

    def test_statuses_normalized(self):
        config = parse_config(
            {
                "config_id": "x",
                "version": 1,
                "aggregation": {"excluded_expense_statuses": ["Rejected", " Cancelled "]},
            }
        )

        assert config.aggregation.excluded_expense_statuses == ("rejected", "cancelled")

    def test_checksum_is_order_independent(self):
        assert compute_checksum({"a": 1, "b": [1, 2]}) == compute_checksum({"b": [1, 2], "a": 1})
        assert compute_checksum({"a": 1}) != compute_checksum({"a": 2})

    def test_load_from_file(self, tmp_path: Path):
        path = tmp_path / "school.yaml"
        path.write_text(
            "config_id: school-a\n"
            "version: 3\n"
            "reference:\n"
            "  ordinal_width: 5\n"
            "  default_type_letter: s\n"
            "treasury:\n"
            "  low_collection_rate_threshold: 80\n"
        )

        config = load_config_file(path)

        assert config.reference.ordinal_width == 5
        assert config.reference.default_type_letter == "S"
        assert config.treasury.low_collection_rate_threshold == Decimal("80")


class TestValidation:
    def test_rejected_expenses_must_stay_excluded(self):
        with pytest.raises(ValueError, match="rejected"):
            AggregationPolicy(excluded_expense_statuses=("cancelled",))

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"ordinal_width": 0},
            {"max_issue_attempts": 0},
            {"default_type_letter": "AB"},
            {"default_type_letter": "1"},
        ],
    )
    def test_reference_policy(self, kwargs):
        with pytest.raises(ValueError):
            ReferencePolicy(**kwargs)

    def test_denominations(self):
        with pytest.raises(ValueError):
            ReconciliationPolicy(denominations=())
        with pytest.raises(ValueError):
            ReconciliationPolicy(denominations=(500, 500))

    def test_threshold_range(self):
        with pytest.raises(ValueError):
            TreasuryPolicy(low_collection_rate_threshold=Decimal("120"))


class TestBridge:
    def test_aggregation_rules_from_config(self):
        rules = aggregation_rules(ClosureEngineConfig.with_defaults())

        assert rules.excluded_expense_statuses == {
            TransactionStatus.CANCELLED,
            TransactionStatus.REJECTED,
        }
        assert "scolarite" in rules.tuition_categories
