"""
SequenceService -- monotonic sequence allocation via locked counter rows.

Responsibility:
    Provides strictly increasing ordinals per named sequence (one sequence
    per school and receipt-reference scope).  A dedicated counter table
    with row-level locking (``SELECT ... FOR UPDATE``) guarantees uniqueness
    and ordering under concurrent access.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    Called by ReferenceIssuer.

Invariants enforced:
    - The locked counter row is the sole source of truth for the next
      value.  Counting existing rows and adding one is FORBIDDEN; that is
      exactly the race this table exists to close.
    - The increment is only visible after the caller's transaction commits.
      Rollback returns the value.

Failure modes:
    - IntegrityError: concurrent counter creation race (handled via
      savepoint rollback and retry).
    - OperationalError: store unavailable; propagates to the caller.
"""

from collections.abc import Callable

from sqlalchemy import BigInteger, String, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Mapped, Session, mapped_column

from closure_kernel.db.base import Base
from closure_kernel.logging_config import get_logger

logger = get_logger("services.sequence")


class SequenceCounter(Base):
    """
    Sequence counter table.

    Each row is a named sequence with its current value; row-level locking
    keeps it monotonic under concurrency.
    """

    __tablename__ = "sequence_counters"

    # e.g. "receipt:school-1:025026:C:CI"
    name: Mapped[str] = mapped_column(
        String(128),
        nullable=False,
        unique=True,
    )

    current_value: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
    )


SeedFn = Callable[[], int]


class SequenceService:
    """
    Service for generating transactional sequence numbers.

    Non-goals:
        - Does NOT call ``session.commit()``; the caller controls boundaries.

    Usage:
        seq = sequence_service.next_value("receipt:school-1:025026:C:CI")
    """

    def __init__(self, session: Session):
        self._session = session

    def _locked_counter(self, sequence_name: str) -> SequenceCounter | None:
        return self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def next_value(self, sequence_name: str, seed: SeedFn | None = None) -> int:
        """
        Get the next value for a named sequence.

        Locks the sequence row (creating it on first use), increments it and
        returns the new value.

        Args:
            sequence_name: Name of the sequence.
            seed: Called once, only when the counter does not exist yet;
                returns the highest value already used outside this table
                (legacy data).  The first value returned is ``seed() + 1``.

        Returns:
            The next sequence value (always > 0).
        """
        counter = self._locked_counter(sequence_name)

        if counter is None:
            start = max(int(seed()), 0) if seed is not None else 0
            # Savepoint so a lost creation race does not roll back other work.
            savepoint = self._session.begin_nested()
            try:
                counter = SequenceCounter(name=sequence_name, current_value=start + 1)
                self._session.add(counter)
                self._session.flush()
                savepoint.commit()
                logger.debug(
                    "sequence_allocated",
                    extra={
                        "sequence_name": sequence_name,
                        "value": start + 1,
                        "seeded_from": start,
                    },
                )
                return start + 1
            except IntegrityError:
                logger.debug(
                    "sequence_counter_race_retry",
                    extra={"sequence_name": sequence_name},
                )
                savepoint.rollback()
                counter = self._locked_counter(sequence_name)
                if counter is None:
                    raise

        counter.current_value += 1
        self._session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": counter.current_value},
        )
        return counter.current_value

    def current_value(self, sequence_name: str) -> int | None:
        """Current value of a sequence without incrementing, or None if unused."""
        counter = self._session.execute(
            select(SequenceCounter).where(SequenceCounter.name == sequence_name)
        ).scalar_one_or_none()
        return counter.current_value if counter else None
