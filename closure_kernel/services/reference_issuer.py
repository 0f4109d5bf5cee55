"""
ReferenceIssuer -- collision-free receipt references.

Responsibility:
    Issues ``REC-{year}-{L}{ordinal}-{class}`` references for every
    cash-generating transaction, unique and strictly increasing within a
    (school, year, type letter, class) scope.

Architecture position:
    Kernel > Services -- imperative shell.
    Pure formatting lives in ``closure_kernel.domain.reference_format``.

Invariants enforced:
    - Ordinals come from a locked per-scope counter row (SequenceService),
      never from counting existing payments.
    - Second layer: unique constraint on (school_id, reference).  A
      collision (legacy row, manual insert) burns the ordinal and retries
      inside a savepoint, up to ``max_attempts``.
    - A new scope counter is seeded from the highest ordinal already
      carried by the payment subsystem's references for that scope.

Failure modes:
    - ReferenceIssuanceFailedError when every attempt collided.
    - Store unavailable (OperationalError): a time-based reference flagged
      ``is_sequential=False`` is returned instead, and recorded when the
      store accepts it.  It is never dropped silently: an unrecordable
      fallback is logged at ERROR with the reference.
"""

from datetime import timedelta

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, OperationalError, PendingRollbackError
from sqlalchemy.orm import Session

from closure_kernel.domain.clock import Clock, SystemClock
from closure_kernel.domain.collaborators import PaymentsGateway
from closure_kernel.domain.context import SchoolContext
from closure_kernel.domain.dtos import IssuedReference
from closure_kernel.domain.reference_format import (
    DEFAULT_TYPE_LETTER,
    ReferenceParts,
    ReferenceScope,
    format_fallback_reference,
    format_reference,
    matches_scope,
    parse_reference,
    scope_parts,
)
from closure_kernel.exceptions import ReferenceIssuanceFailedError, TransientGatewayError
from closure_kernel.logging_config import get_logger
from closure_kernel.models.receipt_reference import ReceiptReference
from closure_kernel.services.base import BaseService
from closure_kernel.services.sequence_service import SequenceService

logger = get_logger("services.reference_issuer")


class ReferenceIssuer(BaseService[ReceiptReference]):
    """
    Issues and records receipt references.

    Non-goals:
        - Does NOT commit; the caller's transaction makes the reference and
          its counter increment durable together.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        payments: PaymentsGateway | None = None,
        *,
        ordinal_width: int = 4,
        class_code_max_length: int = 10,
        default_type_letter: str = DEFAULT_TYPE_LETTER,
        max_attempts: int = 5,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._payments = payments
        self._sequences = SequenceService(session)
        self._ordinal_width = ordinal_width
        self._class_code_max_length = class_code_max_length
        self._default_type_letter = default_type_letter
        self._max_attempts = max_attempts

    def parts_for(self, scope: ReferenceScope) -> ReferenceParts:
        return scope_parts(
            scope,
            clock=self._clock,
            class_code_max_length=self._class_code_max_length,
            default_type_letter=self._default_type_letter,
        )

    @staticmethod
    def sequence_name(ctx: SchoolContext, parts: ReferenceParts) -> str:
        return f"receipt:{ctx.school_id}:{parts.scope_key}"

    def issue(
        self,
        ctx: SchoolContext,
        scope: ReferenceScope,
        transaction_id: str | None = None,
    ) -> IssuedReference:
        """
        Issue the next reference for ``scope``.

        Raises:
            ReferenceIssuanceFailedError: every attempt collided.
        """
        parts = self.parts_for(scope)
        try:
            with self.session.begin_nested():
                issued, last_reference = self._issue_sequential(
                    ctx, scope, parts, transaction_id
                )
        except (OperationalError, ConnectionError, TimeoutError, TransientGatewayError):
            logger.error(
                "reference_store_unavailable",
                extra={"scope_key": parts.scope_key, "school_id": ctx.school_id},
                exc_info=True,
            )
            return self._issue_fallback(ctx, scope, parts, transaction_id)

        if issued is None:
            # Burned ordinals persist only if the caller commits; a rolled-back
            # transaction hands them out again.
            logger.error(
                "reference_issuance_failed",
                extra={
                    "scope_key": parts.scope_key,
                    "attempts": self._max_attempts,
                    "last_reference": last_reference,
                },
            )
            raise ReferenceIssuanceFailedError(
                scope_key=parts.scope_key,
                attempts=self._max_attempts,
                last_reference=last_reference,
            )
        return issued

    def _seed_for(self, parts: ReferenceParts):
        if self._payments is None:
            return None

        def seed() -> int:
            highest = 0
            for revenue in self._payments.list_payments():
                parsed = parse_reference(revenue.reference)
                if parsed is not None and matches_scope(parsed, parts):
                    highest = max(highest, parsed.ordinal)
            return highest

        return seed

    def _issue_sequential(
        self,
        ctx: SchoolContext,
        scope: ReferenceScope,
        parts: ReferenceParts,
        transaction_id: str | None,
    ) -> tuple[IssuedReference | None, str | None]:
        """Try up to ``max_attempts`` ordinals; returns (issued or None, last candidate)."""
        sequence_name = self.sequence_name(ctx, parts)
        seed = self._seed_for(parts)
        last_reference: str | None = None

        for attempt in range(1, self._max_attempts + 1):
            ordinal = self._sequences.next_value(sequence_name, seed=seed)
            reference = format_reference(parts, ordinal, self._ordinal_width)
            last_reference = reference

            savepoint = self.session.begin_nested()
            try:
                row = ReceiptReference(
                    school_id=ctx.school_id,
                    reference=reference,
                    scope_key=parts.scope_key,
                    academic_year=scope.academic_year,
                    year_code=parts.year_code,
                    class_code=parts.class_code,
                    type_letter=parts.type_letter,
                    ordinal=ordinal,
                    is_sequential=True,
                    transaction_id=transaction_id,
                    created_by_id=ctx.actor_id,
                )
                self.session.add(row)
                self.session.flush()
                savepoint.commit()
            except IntegrityError:
                savepoint.rollback()
                logger.warning(
                    "reference_collision_retry",
                    extra={
                        "reference": reference,
                        "scope_key": parts.scope_key,
                        "attempt": attempt,
                        "max_attempts": self._max_attempts,
                    },
                )
                continue

            logger.info(
                "reference_issued",
                extra={
                    "reference": reference,
                    "scope_key": parts.scope_key,
                    "ordinal": ordinal,
                    "attempt": attempt,
                    "transaction_id": transaction_id,
                },
            )
            issued = IssuedReference(
                reference=reference,
                scope_key=parts.scope_key,
                ordinal=ordinal,
                is_sequential=True,
                issued_at=self._clock.now(),
                transaction_id=transaction_id,
            )
            return issued, reference

        return None, last_reference

    def _issue_fallback(
        self,
        ctx: SchoolContext,
        scope: ReferenceScope,
        parts: ReferenceParts,
        transaction_id: str | None,
    ) -> IssuedReference:
        issued_at = self._clock.now()
        for _ in range(self._max_attempts):
            reference = format_fallback_reference(parts, issued_at)
            issued = IssuedReference(
                reference=reference,
                scope_key=parts.scope_key,
                ordinal=None,
                is_sequential=False,
                issued_at=issued_at,
                transaction_id=transaction_id,
            )
            try:
                with self.session.begin_nested():
                    self.session.add(
                        ReceiptReference(
                            school_id=ctx.school_id,
                            reference=reference,
                            scope_key=parts.scope_key,
                            academic_year=scope.academic_year,
                            year_code=parts.year_code,
                            class_code=parts.class_code,
                            type_letter=parts.type_letter,
                            ordinal=None,
                            is_sequential=False,
                            transaction_id=transaction_id,
                            created_by_id=ctx.actor_id,
                        )
                    )
                    self.session.flush()
                break
            except IntegrityError:
                # Same instant as an earlier fallback in this scope.
                issued_at += timedelta(microseconds=1)
            except (OperationalError, PendingRollbackError):
                logger.error(
                    "reference_fallback_unrecorded",
                    extra={"reference": reference, "scope_key": parts.scope_key},
                    exc_info=True,
                )
                return issued
        else:
            raise ReferenceIssuanceFailedError(
                scope_key=parts.scope_key,
                attempts=self._max_attempts,
                last_reference=reference,
            )

        logger.warning(
            "reference_fallback_issued",
            extra={"reference": reference, "scope_key": parts.scope_key},
        )
        return issued

    def list_non_sequential(self, ctx: SchoolContext) -> list[IssuedReference]:
        """Recorded fallback references awaiting reconciliation, oldest first."""
        rows = self.session.execute(
            select(ReceiptReference)
            .where(
                ReceiptReference.school_id == ctx.school_id,
                ReceiptReference.is_sequential.is_(False),
            )
            .order_by(ReceiptReference.created_at, ReceiptReference.reference)
        ).scalars()
        return [IssuedReference.from_model(row) for row in rows]
