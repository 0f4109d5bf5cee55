"""
closure_engines.variance -- cash variance and denomination counts.

Formulas:
    expected_cash = opening_cash + net_balance
    variance      = cash_on_hand - expected_cash

A zero variance never requires justification; any other value does.
Inputs may arrive as floats from operator forms and are converted through
``str`` so that ``0.1`` stays ``Decimal("0.1")``.

Pure calculation layer, zero I/O.  Persistence of justifications lives in
``closure_kernel.services.variance_reconciler``.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from decimal import Decimal

from closure_engines.tracer import traced_engine
from closure_kernel.domain.transactions import to_decimal

_ZERO = Decimal("0")


@dataclass(frozen=True)
class VarianceResult:
    opening_cash: Decimal
    cash_on_hand: Decimal
    net_balance: Decimal
    expected_cash: Decimal
    variance: Decimal
    requires_justification: bool

    @property
    def is_surplus(self) -> bool:
        return self.variance > _ZERO

    @property
    def is_shortage(self) -> bool:
        return self.variance < _ZERO


@traced_engine(
    "variance",
    "1.0",
    fingerprint_fields=("opening_cash", "cash_on_hand", "net_balance"),
)
def compute_variance(
    *,
    opening_cash: Decimal | float | int | str,
    cash_on_hand: Decimal | float | int | str,
    net_balance: Decimal | float | int | str,
) -> VarianceResult:
    opening = to_decimal(opening_cash)
    current = to_decimal(cash_on_hand)
    net = to_decimal(net_balance)

    expected = opening + net
    variance = current - expected

    return VarianceResult(
        opening_cash=opening,
        cash_on_hand=current,
        net_balance=net,
        expected_cash=expected,
        variance=variance,
        requires_justification=variance != _ZERO,
    )


@dataclass(frozen=True)
class CashCountLine:
    denomination: int
    count: int
    subtotal: Decimal


@dataclass(frozen=True)
class CashCount:
    lines: tuple[CashCountLine, ...]
    total: Decimal

    def as_mapping(self) -> dict[str, int]:
        """Denomination -> count, as stored on the closure."""
        return {str(line.denomination): line.count for line in self.lines}


def count_cash(
    counts: Mapping[str | int, int],
    denominations: Sequence[int],
) -> CashCount:
    """
    Total a physical cash count.

    Lines come out in ``denominations`` order; zero counts are kept so the
    stored count shows every denomination that was checked.

    Raises:
        ValueError: For an unknown denomination or a negative count.
    """
    allowed = set(denominations)
    normalized: dict[int, int] = {}
    for raw_denomination, raw_count in counts.items():
        denomination = int(raw_denomination)
        count = int(raw_count)
        if denomination not in allowed:
            raise ValueError(f"Unknown denomination: {raw_denomination!r}")
        if count < 0:
            raise ValueError(f"Negative count for denomination {denomination}: {count}")
        normalized[denomination] = normalized.get(denomination, 0) + count

    lines = tuple(
        CashCountLine(
            denomination=d,
            count=normalized[d],
            subtotal=Decimal(d) * normalized[d],
        )
        for d in denominations
        if d in normalized
    )
    return CashCount(lines=lines, total=sum((line.subtotal for line in lines), _ZERO))
