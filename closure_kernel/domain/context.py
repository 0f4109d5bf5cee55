"""
SchoolContext -- explicit tenant/actor context for every kernel operation.

The current school and academic year are passed in, never looked up from
ambient globals.  ``log_context()`` binds the same fields onto structured
log records for the duration of an operation.
"""

from dataclasses import dataclass
from uuid import UUID

from closure_kernel.logging_config import LogContext


@dataclass(frozen=True)
class SchoolContext:
    """Who is acting, for which school and which academic year."""

    school_id: str
    academic_year: str
    actor_id: UUID

    def __post_init__(self) -> None:
        if not self.school_id or not self.school_id.strip():
            raise ValueError("school_id must not be empty")
        if not self.academic_year or not self.academic_year.strip():
            raise ValueError("academic_year must not be empty")
        if self.actor_id is None:
            raise ValueError("actor_id is required")

    def log_context(self, **extra: str | None):
        """Bind school/year/actor (plus ``extra``) onto log records."""
        return LogContext.bind(
            school_id=self.school_id,
            academic_year=self.academic_year,
            actor_id=str(self.actor_id),
            **extra,
        )
