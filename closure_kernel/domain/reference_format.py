"""
Receipt reference formatting -- pure codes and layout, zero I/O.

Layout:
    typed      REC-{year_code}-{type_letter}{ordinal:04d}-{class_code}
    untyped    REC-{year_code}-{ordinal:04d}-{class_code}
    fallback   REC-{year_code}-T{yyyymmddHHMMSSffffff}-{class_code}

    year_code   last three digits of each academic-year boundary,
                ``2025-2026`` -> ``025026``.
    class_code  uppercased, diacritics and non-alphanumerics removed,
                ``Maternelle 2`` -> ``MAT2``, capped in length, ``NA`` if empty.
    type_letter first letter of the revenue type, ``A`` when absent.

The ordinal itself is allocated by the ReferenceIssuer service; this module
only derives scope codes and renders strings.
"""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass
from datetime import datetime

from closure_kernel.domain.clock import Clock, SystemClock

REFERENCE_PREFIX = "REC"
DEFAULT_TYPE_LETTER = "A"
EMPTY_CLASS_CODE = "NA"
FALLBACK_MARKER = "T"

_YEAR_RE = re.compile(r"^\s*(\d{1,4})\s*[-/]\s*(\d{1,4})\s*$")
_MATERNELLE_RE = re.compile(r"MATERNELLE\s*(\d+)")
_NON_ALNUM_RE = re.compile(r"[^A-Z0-9]")
_REFERENCE_RE = re.compile(
    r"^REC-(?P<year>\d{6})-(?P<letter>[A-Z])?(?P<ordinal>\d{1,6})-(?P<klass>[A-Z0-9]+)$"
)


@dataclass(frozen=True)
class ReferenceScope:
    """
    Scope of a receipt reference sequence.

    ``typed`` selects the ``{letter}{ordinal}`` layout used for
    school-fee-adjacent revenues; untyped scopes omit the letter.
    """

    academic_year: str
    class_name: str | None
    revenue_type: str | None = None
    typed: bool = True


@dataclass(frozen=True)
class ReferenceParts:
    year_code: str
    class_code: str
    type_letter: str | None

    @property
    def scope_key(self) -> str:
        return f"{self.year_code}:{self.type_letter or '-'}:{self.class_code}"


@dataclass(frozen=True)
class ParsedReference:
    year_code: str
    type_letter: str | None
    ordinal: int
    class_code: str


def strip_diacritics(value: str) -> str:
    decomposed = unicodedata.normalize("NFKD", value)
    return "".join(c for c in decomposed if not unicodedata.combining(c))


def year_code(academic_year: str | None, clock: Clock | None = None) -> str:
    """
    ``2025-2026`` -> ``025026``.

    A year that is not two numeric boundaries falls back to the clock's
    current year and the next one.
    """
    match = _YEAR_RE.match(academic_year or "")
    if match:
        first, second = match.group(1), match.group(2)
    else:
        current = (clock or SystemClock()).now().year
        first, second = str(current), str(current + 1)
    return f"{first[-3:].zfill(3)}{second[-3:].zfill(3)}"


def class_code(class_name: str | None, max_length: int = 10) -> str:
    """Normalize a class name into its reference code."""
    name = strip_diacritics((class_name or "").upper())
    if "MATERNELLE" in name:
        match = _MATERNELLE_RE.search(name)
        return f"MAT{match.group(1)}" if match else "MAT"
    code = _NON_ALNUM_RE.sub("", name)[:max_length]
    return code or EMPTY_CLASS_CODE


def type_letter(revenue_type: str | None, default: str = DEFAULT_TYPE_LETTER) -> str:
    """First alphabetic letter of the revenue type, uppercased."""
    for char in strip_diacritics(revenue_type or "").upper():
        if "A" <= char <= "Z":
            return char
    return default


def scope_parts(
    scope: ReferenceScope,
    *,
    clock: Clock | None = None,
    class_code_max_length: int = 10,
    default_type_letter: str = DEFAULT_TYPE_LETTER,
) -> ReferenceParts:
    return ReferenceParts(
        year_code=year_code(scope.academic_year, clock),
        class_code=class_code(scope.class_name, class_code_max_length),
        type_letter=(
            type_letter(scope.revenue_type, default_type_letter) if scope.typed else None
        ),
    )


def format_reference(parts: ReferenceParts, ordinal: int, width: int = 4) -> str:
    if ordinal <= 0:
        raise ValueError(f"ordinal must be positive, got {ordinal}")
    number = str(ordinal).zfill(width)
    return f"{REFERENCE_PREFIX}-{parts.year_code}-{parts.type_letter or ''}{number}-{parts.class_code}"


def format_fallback_reference(parts: ReferenceParts, moment: datetime) -> str:
    """Time-based, non-sequential reference used when the store is unavailable."""
    stamp = moment.strftime("%Y%m%d%H%M%S%f")
    return f"{REFERENCE_PREFIX}-{parts.year_code}-{FALLBACK_MARKER}{stamp}-{parts.class_code}"


def parse_reference(reference: str | None) -> ParsedReference | None:
    """Parse a sequential reference; returns None for fallback or foreign strings."""
    if not reference:
        return None
    match = _REFERENCE_RE.match(reference.strip())
    if match is None:
        return None
    return ParsedReference(
        year_code=match.group("year"),
        type_letter=match.group("letter"),
        ordinal=int(match.group("ordinal")),
        class_code=match.group("klass"),
    )


def matches_scope(parsed: ParsedReference, parts: ReferenceParts) -> bool:
    return (
        parsed.year_code == parts.year_code
        and parsed.class_code == parts.class_code
        and parsed.type_letter == parts.type_letter
    )
