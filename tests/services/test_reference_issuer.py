"""
Tests for ReferenceIssuer.

Covers:
- Sequential references per (school, year, type, class) scope
- Counter seeding from the payment subsystem's existing references
- Unique-constraint collision retry and exhaustion
- Time-based fallback when the store is unavailable
"""

from sqlalchemy import create_engine, event, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

import pytest

from closure_kernel.db.engine import _on_sqlite_begin, _on_sqlite_connect
from closure_kernel.domain.collaborators import InMemoryGateway
from closure_kernel.domain.reference_format import ReferenceScope
from closure_kernel.domain.transactions import Revenue
from closure_kernel.exceptions import ReferenceIssuanceFailedError
from closure_kernel.models.receipt_reference import ReceiptReference
from closure_kernel.services.reference_issuer import ReferenceIssuer
from closure_kernel.services.sequence_service import SequenceService

CANTEEN_CI = ReferenceScope(academic_year="2025-2026", class_name="CI", revenue_type="cantine")


def legacy_payment(id, reference):
    return Revenue(id=id, amount=1000, occurred_on="2025-09-15", reference=reference)


class TestSequentialIssue:
    def test_first_three_references(self, session, ctx, clock):
        issuer = ReferenceIssuer(session, clock)

        issued = [issuer.issue(ctx, CANTEEN_CI).reference for _ in range(3)]

        assert issued == [
            "REC-025026-C0001-CI",
            "REC-025026-C0002-CI",
            "REC-025026-C0003-CI",
        ]

    def test_issued_reference_fields(self, session, ctx, clock):
        issued = ReferenceIssuer(session, clock).issue(ctx, CANTEEN_CI, transaction_id="pay-42")

        assert issued.ordinal == 1
        assert issued.is_sequential
        assert issued.scope_key == "025026:C:CI"
        assert issued.transaction_id == "pay-42"
        assert issued.issued_at == clock.now()

    def test_scopes_are_independent(self, session, ctx, clock):
        issuer = ReferenceIssuer(session, clock)

        issuer.issue(ctx, CANTEEN_CI)
        uniform = issuer.issue(ctx, ReferenceScope("2025-2026", "CI", "uniforme"))
        other_class = issuer.issue(ctx, ReferenceScope("2025-2026", "CP1", "cantine"))
        untyped = issuer.issue(ctx, ReferenceScope("2025-2026", "CI", "cantine", typed=False))

        assert uniform.reference == "REC-025026-U0001-CI"
        assert other_class.reference == "REC-025026-C0001-CP1"
        assert untyped.reference == "REC-025026-0001-CI"

    def test_each_reference_is_recorded(self, session, ctx, clock):
        issuer = ReferenceIssuer(session, clock)
        issuer.issue(ctx, CANTEEN_CI)
        issuer.issue(ctx, CANTEEN_CI)

        rows = session.execute(
            select(ReceiptReference.reference).order_by(ReceiptReference.ordinal)
        ).scalars().all()

        assert rows == ["REC-025026-C0001-CI", "REC-025026-C0002-CI"]

    def test_counter_survives_new_issuer(self, session_factory, ctx, clock):
        with session_factory() as s1:
            ReferenceIssuer(s1, clock).issue(ctx, CANTEEN_CI)
            s1.commit()

        with session_factory() as s2:
            issued = ReferenceIssuer(s2, clock).issue(ctx, CANTEEN_CI)
            s2.commit()

        assert issued.reference == "REC-025026-C0002-CI"

    def test_logs_issue(self, session, ctx, clock, captured_logs):
        ReferenceIssuer(session, clock).issue(ctx, CANTEEN_CI)

        records = [r for r in captured_logs() if r["message"] == "reference_issued"]
        assert records[-1]["reference"] == "REC-025026-C0001-CI"


class TestSeeding:
    def test_new_counter_starts_after_highest_legacy_ordinal(self, session, ctx, clock):
        gateway = InMemoryGateway(
            payments=[
                legacy_payment("p1", "REC-025026-C0002-CI"),
                legacy_payment("p2", "REC-025026-C0007-CI"),
                legacy_payment("p3", "REC-025026-S0099-CI"),
                legacy_payment("p4", "REC-024025-C0050-CI"),
                legacy_payment("p5", "RECU-OLD-17"),
                legacy_payment("p6", None),
            ]
        )

        issued = ReferenceIssuer(session, clock, gateway).issue(ctx, CANTEEN_CI)

        assert issued.reference == "REC-025026-C0008-CI"

    def test_seed_read_only_once(self, session, ctx, clock):
        gateway = InMemoryGateway(payments=[legacy_payment("p1", "REC-025026-C0002-CI")])
        issuer = ReferenceIssuer(session, clock, gateway)
        issuer.issue(ctx, CANTEEN_CI)

        # A later legacy reference does not move an existing counter.
        gateway.payments.append(legacy_payment("p2", "REC-025026-C0040-CI"))

        assert issuer.issue(ctx, CANTEEN_CI).reference == "REC-025026-C0004-CI"


class TestCollisions:
    def _insert_row(self, session, ctx, reference, ordinal):
        session.add(
            ReceiptReference(
                school_id=ctx.school_id,
                reference=reference,
                scope_key="025026:C:CI",
                academic_year="2025-2026",
                year_code="025026",
                class_code="CI",
                type_letter="C",
                ordinal=ordinal,
                is_sequential=True,
                created_by_id=ctx.actor_id,
            )
        )
        session.flush()

    def test_collision_burns_ordinal_and_retries(self, session, ctx, clock, captured_logs):
        self._insert_row(session, ctx, "REC-025026-C0001-CI", 1)

        issued = ReferenceIssuer(session, clock).issue(ctx, CANTEEN_CI)

        assert issued.reference == "REC-025026-C0002-CI"
        retries = [r for r in captured_logs() if r["message"] == "reference_collision_retry"]
        assert retries[0]["reference"] == "REC-025026-C0001-CI"

    def test_exhausted_attempts_raise(self, session, ctx, clock):
        self._insert_row(session, ctx, "REC-025026-C0001-CI", 1)
        self._insert_row(session, ctx, "REC-025026-C0002-CI", 2)
        issuer = ReferenceIssuer(session, clock, max_attempts=2)

        with pytest.raises(ReferenceIssuanceFailedError) as exc_info:
            issuer.issue(ctx, CANTEEN_CI)

        assert exc_info.value.attempts == 2
        assert exc_info.value.last_reference == "REC-025026-C0002-CI"
        assert exc_info.value.scope_key == "025026:C:CI"

    def test_burned_ordinals_stay_consumed(self, session, ctx, clock):
        self._insert_row(session, ctx, "REC-025026-C0001-CI", 1)
        issuer = ReferenceIssuer(session, clock, max_attempts=1)

        with pytest.raises(ReferenceIssuanceFailedError):
            issuer.issue(ctx, CANTEEN_CI)

        sequence = issuer.sequence_name(ctx, issuer.parts_for(CANTEEN_CI))
        assert SequenceService(session).current_value(sequence) == 1
        assert issuer.issue(ctx, CANTEEN_CI).reference == "REC-025026-C0002-CI"

    def test_rollback_releases_burned_ordinals(self, session_factory, ctx, clock):
        with session_factory() as setup:
            self._insert_row(setup, ctx, "REC-025026-C0001-CI", 1)
            setup.commit()

        with session_factory() as failed:
            issuer = ReferenceIssuer(failed, clock, max_attempts=1)
            sequence = issuer.sequence_name(ctx, issuer.parts_for(CANTEEN_CI))
            with pytest.raises(ReferenceIssuanceFailedError):
                issuer.issue(ctx, CANTEEN_CI)
            failed.rollback()

        with session_factory() as after:
            assert SequenceService(after).current_value(sequence) is None

    def test_same_reference_allowed_for_another_school(self, session, ctx, clock):
        self._insert_row(session, ctx, "REC-025026-C0001-CI", 1)
        other = type(ctx)(school_id="school-2", academic_year=ctx.academic_year, actor_id=ctx.actor_id)

        issued = ReferenceIssuer(session, clock).issue(other, CANTEEN_CI)

        assert issued.reference == "REC-025026-C0001-CI"


class TestFallback:
    def test_store_unavailable_returns_unrecorded_fallback(self, tmp_path, ctx, clock, captured_logs):
        # Tables were never created: every statement fails with OperationalError.
        engine = create_engine(f"sqlite:///{tmp_path / 'empty.db'}")
        event.listen(engine, "connect", _on_sqlite_connect)
        event.listen(engine, "begin", _on_sqlite_begin)
        try:
            with Session(engine) as broken:
                issued = ReferenceIssuer(broken, clock).issue(ctx, CANTEEN_CI)
        finally:
            engine.dispose()

        assert issued.reference == "REC-025026-T20251006173000000000-CI"
        assert not issued.is_sequential
        assert issued.ordinal is None
        messages = [r["message"] for r in captured_logs()]
        assert "reference_store_unavailable" in messages
        assert "reference_fallback_unrecorded" in messages

    def test_fallback_recorded_when_possible(self, session, ctx, clock, monkeypatch, captured_logs):
        def unavailable(self, sequence_name, seed=None):
            raise OperationalError("SELECT sequence_counters", {}, Exception("database is locked"))

        monkeypatch.setattr(SequenceService, "next_value", unavailable)
        issuer = ReferenceIssuer(session, clock)

        issued = issuer.issue(ctx, CANTEEN_CI, transaction_id="pay-7")

        assert not issued.is_sequential
        pending = issuer.list_non_sequential(ctx)
        assert [p.reference for p in pending] == [issued.reference]
        assert pending[0].transaction_id == "pay-7"
        assert pending[0].ordinal is None
        assert "reference_fallback_issued" in [r["message"] for r in captured_logs()]

    def test_gateway_failure_while_seeding_falls_back(self, session, ctx, clock):
        class DownGateway:
            def list_payments(self):
                raise ConnectionError("payments API unreachable")

        issued = ReferenceIssuer(session, clock, DownGateway()).issue(ctx, CANTEEN_CI)

        assert not issued.is_sequential
        assert issued.reference.startswith("REC-025026-T")

    def test_sequential_references_not_listed_as_pending(self, session, ctx, clock):
        issuer = ReferenceIssuer(session, clock)
        issuer.issue(ctx, CANTEEN_CI)

        assert issuer.list_non_sequential(ctx) == []

    def test_fallbacks_in_the_same_instant_stay_unique(self, session, ctx, clock, monkeypatch):
        def unavailable(self, sequence_name, seed=None):
            raise OperationalError("SELECT sequence_counters", {}, Exception("database is locked"))

        monkeypatch.setattr(SequenceService, "next_value", unavailable)
        issuer = ReferenceIssuer(session, clock)

        first = issuer.issue(ctx, CANTEEN_CI)
        second = issuer.issue(ctx, CANTEEN_CI)
        clock.advance(2)
        third = issuer.issue(ctx, CANTEEN_CI)

        assert first.reference == "REC-025026-T20251006173000000000-CI"
        assert second.reference == "REC-025026-T20251006173000000001-CI"
        assert third.reference == "REC-025026-T20251006173002000000-CI"
        assert len(issuer.list_non_sequential(ctx)) == 3
