"""
Configuration loader (``closure_config.loader``).

Loads a YAML configuration set and parses it into the frozen dataclasses
of ``closure_config.schema``.  Runtime callers go through
``closure_config.get_active_config()``; this module is the tooling behind it.

Failure modes:
    * Missing YAML file  -> ``FileNotFoundError`` propagates.
    * Malformed YAML  -> ``yaml.YAMLError`` propagates.
    * Missing required keys  -> ``KeyError`` propagates.
    * Invalid values  -> ``ValueError`` from the schema ``__post_init__``.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal
from pathlib import Path
from typing import Any

import yaml

from closure_config.schema import (
    AggregationPolicy,
    ClosureEngineConfig,
    ReconciliationPolicy,
    ReferencePolicy,
    TreasuryPolicy,
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a single YAML file; an empty file yields ``{}``."""
    with open(path) as f:
        return yaml.safe_load(f) or {}


def _tuple_of_str(values: Any) -> tuple[str, ...]:
    return tuple(str(v).strip().lower() for v in (values or ()))


def parse_reference_policy(data: dict[str, Any]) -> ReferencePolicy:
    defaults = ReferencePolicy()
    return ReferencePolicy(
        ordinal_width=int(data.get("ordinal_width", defaults.ordinal_width)),
        class_code_max_length=int(
            data.get("class_code_max_length", defaults.class_code_max_length)
        ),
        default_type_letter=str(
            data.get("default_type_letter", defaults.default_type_letter)
        ).upper(),
        max_issue_attempts=int(data.get("max_issue_attempts", defaults.max_issue_attempts)),
        seed_from_gateway=bool(data.get("seed_from_gateway", defaults.seed_from_gateway)),
    )


def parse_aggregation_policy(data: dict[str, Any]) -> AggregationPolicy:
    defaults = AggregationPolicy()
    return AggregationPolicy(
        excluded_revenue_statuses=_tuple_of_str(
            data.get("excluded_revenue_statuses", defaults.excluded_revenue_statuses)
        ),
        excluded_expense_statuses=_tuple_of_str(
            data.get("excluded_expense_statuses", defaults.excluded_expense_statuses)
        ),
        tuition_categories=_tuple_of_str(
            data.get("tuition_categories", defaults.tuition_categories)
        ),
        max_fetch_attempts=int(data.get("max_fetch_attempts", defaults.max_fetch_attempts)),
        retry_backoff_seconds=float(
            data.get("retry_backoff_seconds", defaults.retry_backoff_seconds)
        ),
    )


def parse_reconciliation_policy(data: dict[str, Any]) -> ReconciliationPolicy:
    defaults = ReconciliationPolicy()
    return ReconciliationPolicy(
        currency=str(data.get("currency", defaults.currency)),
        denominations=tuple(
            int(d) for d in data.get("denominations", defaults.denominations)
        ),
    )


def parse_treasury_policy(data: dict[str, Any]) -> TreasuryPolicy:
    defaults = TreasuryPolicy()
    return TreasuryPolicy(
        low_collection_rate_threshold=Decimal(
            str(data.get("low_collection_rate_threshold", defaults.low_collection_rate_threshold))
        ),
        flag_unvalidated_closures=bool(
            data.get("flag_unvalidated_closures", defaults.flag_unvalidated_closures)
        ),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """Deterministic SHA-256 over the raw configuration dict."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def parse_config(data: dict[str, Any]) -> ClosureEngineConfig:
    """
    Parse a full configuration set.

    ``config_id`` and ``version`` are required; every policy section is
    optional and falls back to the schema defaults.
    """
    return ClosureEngineConfig(
        config_id=data["config_id"],
        version=int(data["version"]),
        reference=parse_reference_policy(data.get("reference") or {}),
        aggregation=parse_aggregation_policy(data.get("aggregation") or {}),
        reconciliation=parse_reconciliation_policy(data.get("reconciliation") or {}),
        treasury=parse_treasury_policy(data.get("treasury") or {}),
        checksum=compute_checksum(data),
    )


def load_config_file(path: Path) -> ClosureEngineConfig:
    return parse_config(load_yaml_file(path))
