"""
Module: closure_kernel.selectors.closure_selector
Responsibility: Read access to daily closures -- lookups by id and date,
    filtered history, the latest validated closure and drafts left behind.
Architecture position: Kernel > Selectors.  Read-only; returns ClosureInfo DTOs.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from uuid import UUID

from sqlalchemy import select

from closure_kernel.domain.dtos import ClosureInfo
from closure_kernel.models.daily_closure import ClosureStatus, DailyClosure
from closure_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class ClosureFilters:
    """Optional filters for ``ClosureSelector.list_closures``; all bounds inclusive."""

    academic_year: str | None = None
    start_date: date | None = None
    end_date: date | None = None
    status: ClosureStatus | None = None
    limit: int | None = None


class ClosureSelector(BaseSelector[DailyClosure]):
    """Query daily closures."""

    def get(self, closure_id: UUID) -> ClosureInfo | None:
        closure = self.session.get(DailyClosure, closure_id)
        return ClosureInfo.from_model(closure) if closure else None

    def get_for_date(
        self, school_id: str, academic_year: str, closure_date: date
    ) -> ClosureInfo | None:
        closure = self.session.execute(
            select(DailyClosure).where(
                DailyClosure.school_id == school_id,
                DailyClosure.academic_year == academic_year,
                DailyClosure.closure_date == closure_date,
            )
        ).scalar_one_or_none()
        return ClosureInfo.from_model(closure) if closure else None

    def list_closures(self, school_id: str, filters: ClosureFilters | None = None) -> list[ClosureInfo]:
        """Closures of a school, newest date first."""
        filters = filters or ClosureFilters()
        query = select(DailyClosure).where(DailyClosure.school_id == school_id)
        if filters.academic_year is not None:
            query = query.where(DailyClosure.academic_year == filters.academic_year)
        if filters.start_date is not None:
            query = query.where(DailyClosure.closure_date >= filters.start_date)
        if filters.end_date is not None:
            query = query.where(DailyClosure.closure_date <= filters.end_date)
        if filters.status is not None:
            query = query.where(DailyClosure.status == ClosureStatus(filters.status).value)
        query = query.order_by(DailyClosure.closure_date.desc())
        if filters.limit is not None:
            query = query.limit(filters.limit)
        return [ClosureInfo.from_model(c) for c in self.session.execute(query).scalars()]

    def latest_validated(self, school_id: str, academic_year: str) -> ClosureInfo | None:
        closure = self.session.execute(
            select(DailyClosure)
            .where(
                DailyClosure.school_id == school_id,
                DailyClosure.academic_year == academic_year,
                DailyClosure.status == ClosureStatus.COMPLETED.value,
            )
            .order_by(DailyClosure.closure_date.desc())
            .limit(1)
        ).scalar_one_or_none()
        return ClosureInfo.from_model(closure) if closure else None

    def unvalidated_before(
        self,
        school_id: str,
        academic_year: str,
        before: date,
        limit: int | None = None,
    ) -> list[ClosureInfo]:
        """Drafts dated strictly before ``before``, newest first; all of them unless ``limit`` is given."""
        query = (
            select(DailyClosure)
            .where(
                DailyClosure.school_id == school_id,
                DailyClosure.academic_year == academic_year,
                DailyClosure.status == ClosureStatus.DRAFT.value,
                DailyClosure.closure_date < before,
            )
            .order_by(DailyClosure.closure_date.desc())
        )
        if limit is not None:
            query = query.limit(limit)
        return [ClosureInfo.from_model(c) for c in self.session.execute(query).scalars()]
