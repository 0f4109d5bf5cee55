"""
Configuration schema (``closure_config.schema``).

Frozen dataclasses describing one closure-engine configuration set.  The
YAML in ``closure_config/sets/`` is parsed into these by
``closure_config.loader``; every dataclass validates itself in
``__post_init__`` and raises ``ValueError`` on violation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

TUITION_CATEGORIES = ("inscription", "reinscription", "tuition", "scolarite")

# XOF notes and coins, largest first
XOF_DENOMINATIONS = (10000, 5000, 2000, 1000, 500, 250, 200, 100, 50, 25, 10, 5)


@dataclass(frozen=True)
class ReferencePolicy:
    """Receipt reference layout and issuance retry bounds."""

    ordinal_width: int = 4
    class_code_max_length: int = 10
    default_type_letter: str = "A"
    max_issue_attempts: int = 5
    seed_from_gateway: bool = True

    def __post_init__(self) -> None:
        if self.ordinal_width < 1:
            raise ValueError("ordinal_width must be >= 1")
        if self.class_code_max_length < 1:
            raise ValueError("class_code_max_length must be >= 1")
        if len(self.default_type_letter) != 1 or not self.default_type_letter.isalpha():
            raise ValueError("default_type_letter must be a single letter")
        if self.max_issue_attempts < 1:
            raise ValueError("max_issue_attempts must be >= 1")


@dataclass(frozen=True)
class AggregationPolicy:
    """Which transactions count towards a day, and how hard to retry the gateways."""

    excluded_revenue_statuses: tuple[str, ...] = ("cancelled", "rejected")
    excluded_expense_statuses: tuple[str, ...] = ("cancelled", "rejected")
    tuition_categories: tuple[str, ...] = TUITION_CATEGORIES
    max_fetch_attempts: int = 3
    retry_backoff_seconds: float = 0.0

    def __post_init__(self) -> None:
        if "rejected" not in self.excluded_expense_statuses:
            raise ValueError("rejected expenses must always be excluded from totals")
        if self.max_fetch_attempts < 1:
            raise ValueError("max_fetch_attempts must be >= 1")
        if self.retry_backoff_seconds < 0:
            raise ValueError("retry_backoff_seconds must be >= 0")


@dataclass(frozen=True)
class ReconciliationPolicy:
    currency: str = "XOF"
    denominations: tuple[int, ...] = XOF_DENOMINATIONS

    def __post_init__(self) -> None:
        if not self.denominations:
            raise ValueError("denominations must not be empty")
        if any(d <= 0 for d in self.denominations):
            raise ValueError("denominations must be positive")
        if len(set(self.denominations)) != len(self.denominations):
            raise ValueError("denominations must be unique")


@dataclass(frozen=True)
class TreasuryPolicy:
    low_collection_rate_threshold: Decimal = Decimal("70")
    flag_unvalidated_closures: bool = True

    def __post_init__(self) -> None:
        if not Decimal("0") <= self.low_collection_rate_threshold <= Decimal("100"):
            raise ValueError("low_collection_rate_threshold must be between 0 and 100")


@dataclass(frozen=True)
class ClosureEngineConfig:
    """One validated configuration set for the closure engine."""

    config_id: str
    version: int
    reference: ReferencePolicy = field(default_factory=ReferencePolicy)
    aggregation: AggregationPolicy = field(default_factory=AggregationPolicy)
    reconciliation: ReconciliationPolicy = field(default_factory=ReconciliationPolicy)
    treasury: TreasuryPolicy = field(default_factory=TreasuryPolicy)
    checksum: str = ""

    @classmethod
    def with_defaults(cls) -> ClosureEngineConfig:
        return cls(config_id="defaults", version=1)
