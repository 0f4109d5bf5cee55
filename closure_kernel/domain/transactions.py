"""
Transactions -- tagged Revenue / Expense variants read by the closure engine.

Responsibility:
    Typed, immutable views over the records owned by the payment and expense
    subsystems.  The closure engine only reads them; it never mutates one.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - ``amount`` is a strictly positive ``Decimal`` (floats go through ``str``).
    - ``occurred_on`` resolves to a calendar day (see ``calendar_day``).
    - ``kind`` is always one of ``RevenueKind``; unknown category tags map to
      ``OTHER`` instead of leaking free text into the type.

Failure modes:
    - InvalidTransactionError for a non-positive/unparseable amount, an
      unknown status, or an unparseable date.
"""

from __future__ import annotations

import unicodedata
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Union

from closure_kernel.exceptions import InvalidTransactionError


class TransactionStatus(str, Enum):
    COMPLETED = "completed"
    PENDING = "pending"
    CANCELLED = "cancelled"
    REJECTED = "rejected"


class RevenueKind(str, Enum):
    """Revenue variants. Each category tag of the payment subsystem maps to one."""

    TUITION = "tuition"
    UNIFORM = "uniform"
    SUPPLIES = "supplies"
    CANTEEN = "canteen"
    DONATION = "donation"
    GRANT = "grant"
    OTHER = "other"


# Category tags as the payment subsystem records them (French and English).
_CATEGORY_KINDS: dict[str, RevenueKind] = {
    "inscription": RevenueKind.TUITION,
    "reinscription": RevenueKind.TUITION,
    "scolarite": RevenueKind.TUITION,
    "tuition": RevenueKind.TUITION,
    "frais_scolarite": RevenueKind.TUITION,
    "uniforme": RevenueKind.UNIFORM,
    "uniform": RevenueKind.UNIFORM,
    "tenue": RevenueKind.UNIFORM,
    "fournitures": RevenueKind.SUPPLIES,
    "supplies": RevenueKind.SUPPLIES,
    "cantine": RevenueKind.CANTEEN,
    "canteen": RevenueKind.CANTEEN,
    "don": RevenueKind.DONATION,
    "donation": RevenueKind.DONATION,
    "subvention": RevenueKind.GRANT,
    "grant": RevenueKind.GRANT,
}


def normalize_tag(tag: str | None) -> str:
    """Lowercase, strip diacritics and map separators to underscores."""
    if not tag:
        return ""
    decomposed = unicodedata.normalize("NFKD", tag)
    ascii_only = "".join(c for c in decomposed if not unicodedata.combining(c))
    return "_".join(ascii_only.strip().lower().replace("-", " ").split())


def kind_for_category(category: str | None) -> RevenueKind:
    return _CATEGORY_KINDS.get(normalize_tag(category), RevenueKind.OTHER)


def calendar_day(value: str | date | datetime) -> date:
    """
    Calendar day of a stored transaction date.

    Strings are truncated to their first 10 characters (``YYYY-MM-DD``);
    datetimes use their own ``.date()`` with no timezone conversion.

    Raises:
        ValueError: If the value cannot be read as a date.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        return date.fromisoformat(value.strip()[:10])
    raise ValueError(f"Unsupported date value: {value!r}")


def to_decimal(value: Any) -> Decimal:
    """Convert an amount to Decimal. Floats are converted through ``str``."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise InvalidOperation(f"Boolean is not an amount: {value!r}")
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def _coerce_amount(transaction_id: str, value: Any) -> Decimal:
    try:
        amount = to_decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidTransactionError(transaction_id, f"unparseable amount {value!r}")
    if not amount.is_finite() or amount <= 0:
        raise InvalidTransactionError(
            transaction_id, f"amount must be strictly positive, got {amount}"
        )
    return amount


def _coerce_status(transaction_id: str, value: Any) -> TransactionStatus:
    if isinstance(value, TransactionStatus):
        return value
    if value is None:
        return TransactionStatus.COMPLETED
    try:
        return TransactionStatus(str(value).strip().lower())
    except ValueError:
        raise InvalidTransactionError(transaction_id, f"unknown status {value!r}")


def _coerce_day(transaction_id: str, value: Any) -> date:
    try:
        return calendar_day(value)
    except (TypeError, ValueError):
        raise InvalidTransactionError(transaction_id, f"unparseable date {value!r}")


@dataclass(frozen=True)
class Revenue:
    """A cash-generating transaction (payment) recorded by the payment subsystem."""

    id: str
    amount: Decimal
    occurred_on: str | date | datetime
    kind: RevenueKind = RevenueKind.OTHER
    category: str | None = None
    status: TransactionStatus = TransactionStatus.COMPLETED
    student_id: str | None = None
    class_name: str | None = None
    payment_method: str | None = None
    reference: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "amount", _coerce_amount(self.id, self.amount))
        object.__setattr__(self, "status", _coerce_status(self.id, self.status))
        if not isinstance(self.kind, RevenueKind):
            object.__setattr__(self, "kind", RevenueKind(self.kind))
        _coerce_day(self.id, self.occurred_on)

    @property
    def day(self) -> date:
        return calendar_day(self.occurred_on)

    @property
    def tags(self) -> frozenset[str]:
        """Normalized category tag plus the kind, for category matching."""
        tags = {self.kind.value}
        if self.category:
            tags.add(normalize_tag(self.category))
        return frozenset(tags)


@dataclass(frozen=True)
class Expense:
    """A cash outflow recorded by the expense subsystem."""

    id: str
    amount: Decimal
    occurred_on: str | date | datetime
    category: str | None = None
    status: TransactionStatus = TransactionStatus.COMPLETED
    payment_method: str | None = None
    supplier: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "amount", _coerce_amount(self.id, self.amount))
        object.__setattr__(self, "status", _coerce_status(self.id, self.status))
        _coerce_day(self.id, self.occurred_on)

    @property
    def day(self) -> date:
        return calendar_day(self.occurred_on)


Transaction = Union[Revenue, Expense]


def _pick(record: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in record and record[key] is not None:
            return record[key]
    return None


def revenue_from_record(record: Mapping[str, Any]) -> Revenue:
    """
    Build a Revenue from a payment-subsystem record.

    Accepts both snake_case and camelCase keys.  The revenue kind comes from
    an explicit ``kind`` when present, otherwise from the category tag.
    """
    transaction_id = str(_pick(record, "id") or "<missing id>")
    category = _pick(record, "category", "type", "paymentType", "payment_type")
    explicit_kind = _pick(record, "kind")
    if explicit_kind is not None:
        try:
            kind = RevenueKind(str(explicit_kind).lower())
        except ValueError:
            raise InvalidTransactionError(transaction_id, f"unknown revenue kind {explicit_kind!r}")
    else:
        kind = kind_for_category(category)

    occurred_on = _pick(record, "occurred_on", "date", "paymentDate", "payment_date", "createdAt")
    if occurred_on is None:
        raise InvalidTransactionError(transaction_id, "missing date")

    return Revenue(
        id=transaction_id,
        amount=_pick(record, "amount"),
        occurred_on=occurred_on,
        kind=kind,
        category=category,
        status=_pick(record, "status"),
        student_id=_pick(record, "student_id", "studentId"),
        class_name=_pick(record, "class_name", "className"),
        payment_method=_pick(record, "payment_method", "paymentMethod", "method"),
        reference=_pick(record, "reference", "receiptNumber", "receipt_number"),
    )


def expense_from_record(record: Mapping[str, Any]) -> Expense:
    """Build an Expense from an expense-subsystem record."""
    transaction_id = str(_pick(record, "id") or "<missing id>")
    occurred_on = _pick(record, "occurred_on", "date", "expenseDate", "expense_date", "createdAt")
    if occurred_on is None:
        raise InvalidTransactionError(transaction_id, "missing date")

    return Expense(
        id=transaction_id,
        amount=_pick(record, "amount"),
        occurred_on=occurred_on,
        category=_pick(record, "category", "type"),
        status=_pick(record, "status"),
        payment_method=_pick(record, "payment_method", "paymentMethod", "method"),
        supplier=_pick(record, "supplier", "vendor"),
    )
