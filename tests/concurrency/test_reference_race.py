"""
Receipt reference issuance under concurrent callers.

Two callers issuing in the same scope must never receive the same
reference, and the sequence must stay gapless when nothing rolls back.

The interleaving tests run everywhere with two sessions taking turns.
The threaded tests need real row locks and only run on PostgreSQL:

    DATABASE_URL=postgresql://... pytest tests/concurrency -m postgres
"""

from concurrent.futures import ThreadPoolExecutor
from threading import Barrier

import pytest
from sqlalchemy import select

from closure_kernel.domain.reference_format import ReferenceScope
from closure_kernel.models.receipt_reference import ReceiptReference
from closure_kernel.services.reference_issuer import ReferenceIssuer

CANTEEN_CI = ReferenceScope(academic_year="2025-2026", class_name="CI", revenue_type="cantine")


def _issue_and_commit(session_factory, ctx, clock, scope=CANTEEN_CI) -> str:
    with session_factory() as session:
        issued = ReferenceIssuer(session, clock).issue(ctx, scope)
        session.commit()
    return issued.reference


class TestInterleavedSessions:
    def test_alternating_sessions_share_one_counter(self, session_factory, ctx, clock):
        issued = [_issue_and_commit(session_factory, ctx, clock) for _ in range(6)]

        assert issued == [f"REC-025026-C{n:04d}-CI" for n in range(1, 7)]

    def test_rolled_back_issue_returns_its_ordinal(self, session_factory, ctx, clock):
        with session_factory() as abandoned:
            first = ReferenceIssuer(abandoned, clock).issue(ctx, CANTEEN_CI)
            abandoned.rollback()

        second = _issue_and_commit(session_factory, ctx, clock)

        assert first.reference == second == "REC-025026-C0001-CI"

    def test_other_scopes_do_not_interfere(self, session_factory, ctx, clock):
        tuition = ReferenceScope("2025-2026", "CI", "scolarite")

        a = _issue_and_commit(session_factory, ctx, clock)
        b = _issue_and_commit(session_factory, ctx, clock, tuition)
        c = _issue_and_commit(session_factory, ctx, clock)

        assert (a, b, c) == (
            "REC-025026-C0001-CI",
            "REC-025026-S0001-CI",
            "REC-025026-C0002-CI",
        )


@pytest.mark.postgres
@pytest.mark.slow_locks
class TestThreadedIssue:
    THREADS = 8
    PER_THREAD = 5

    def test_no_duplicates_and_no_gaps(self, postgres_only, facade):
        barrier = Barrier(self.THREADS)
        scope = facade.reference_scope("CI", "cantine")

        def worker(_):
            barrier.wait()
            return [facade.issue_reference(scope).reference for _ in range(self.PER_THREAD)]

        with ThreadPoolExecutor(max_workers=self.THREADS) as pool:
            results = [ref for batch in pool.map(worker, range(self.THREADS)) for ref in batch]

        total = self.THREADS * self.PER_THREAD
        assert len(set(results)) == total
        assert sorted(results) == [f"REC-025026-C{n:04d}-CI" for n in range(1, total + 1)]
        assert not any(r.startswith("REC-025026-T") for r in results)

    def test_first_use_of_scope_races_on_counter_creation(
        self, postgres_only, session_factory, facade
    ):
        barrier = Barrier(self.THREADS)
        scope = facade.reference_scope("CP2", "uniforme")

        def worker(_):
            barrier.wait()
            return facade.issue_reference(scope).reference

        with ThreadPoolExecutor(max_workers=self.THREADS) as pool:
            results = list(pool.map(worker, range(self.THREADS)))

        assert sorted(results) == [f"REC-025026-U{n:04d}-CP2" for n in range(1, self.THREADS + 1)]
        with session_factory() as session:
            stored = session.execute(select(ReceiptReference.reference)).scalars().all()
        assert sorted(stored) == sorted(results)
