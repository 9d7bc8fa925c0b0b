"""
SequenceService -- gap-free per-project numbering via locked counter rows.

Responsibility:
    Hands out strictly increasing numbers for certifications and budget
    version codes.  Each named sequence is a row in ``sequence_counters``
    read with ``SELECT ... FOR UPDATE``, so two concurrent requests for
    the same project serialize on the row lock instead of both computing
    ``max(number) + 1``.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.  Called by the
    budget and certification module services inside their transaction.

Invariants enforced:
    - The aggregate max-plus-one pattern is never used; the locked counter
      row is the sole source of the next value.
    - Transactional: a rolled-back transaction returns its number, so
      committed numbers stay gap-free.

Failure modes:
    - DB IntegrityError on concurrent first use of a counter is absorbed
      by a savepoint and a re-read.
"""

from uuid import UUID

from sqlalchemy import BigInteger, String, select
from sqlalchemy.exc import IntegrityError as DBIntegrityError
from sqlalchemy.orm import Mapped, Session, mapped_column

from costcontrol_kernel.db.base import Base
from costcontrol_kernel.logging_config import get_logger

logger = get_logger("services.sequence")


class SequenceCounter(Base):
    """One row per named sequence; row lock serializes allocation."""

    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    current_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)


def certification_sequence(project_id: UUID) -> str:
    return f"certification:{project_id}"


def version_sequence(project_id: UUID) -> str:
    return f"budget_version:{project_id}"


class SequenceService:
    """
    Transactional sequence numbers.

    Guarantees:
        - Returned values are strictly greater than any previously
          committed value for the same name.
        - ``SELECT ... FOR UPDATE`` serializes concurrent allocations.

    Non-goals:
        - Does NOT call ``session.commit()``; the caller controls boundaries.
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

    def next_value(self, sequence_name: str) -> int:
        """
        Lock the counter row (creating it on first use), increment, return.

        Postconditions:
            - Returns an integer > 0.
            - The counter row stays locked until the transaction completes.
        """
        counter = self._locked_counter(sequence_name)

        if counter is None:
            # Savepoint keeps the caller's pending work if another
            # transaction creates the same counter first
            savepoint = self._session.begin_nested()
            try:
                counter = SequenceCounter(name=sequence_name, current_value=1)
                self._session.add(counter)
                self._session.flush()
                savepoint.commit()
                logger.debug(
                    "sequence_allocated",
                    extra={"sequence_name": sequence_name, "value": 1},
                )
                return 1
            except DBIntegrityError:
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

    def release(self, sequence_name: str, value: int) -> bool:
        """
        Give ``value`` back when it is the latest number handed out.

        Used when the holder of the newest number is discarded, so the
        next allocation reuses it and numbering stays gap-free.  Older
        values are never released.

        Returns:
            True if the counter moved back.
        """
        counter = self._locked_counter(sequence_name)
        if counter is None or counter.current_value != value:
            return False
        counter.current_value = value - 1
        self._session.flush()
        logger.debug(
            "sequence_released",
            extra={"sequence_name": sequence_name, "value": value},
        )
        return True

    def current_value(self, sequence_name: str) -> int | None:
        """Current value without incrementing, or None if never used."""
        counter = self._session.execute(
            select(SequenceCounter).where(SequenceCounter.name == sequence_name)
        ).scalar_one_or_none()
        return counter.current_value if counter else None

    def reset(self, sequence_name: str, value: int = 0) -> None:
        """
        Reset a sequence to a specific value.

        WARNING: tests and migration scripts only.
        """
        counter = self._locked_counter(sequence_name)
        if counter is None:
            self._session.add(SequenceCounter(name=sequence_name, current_value=value))
        else:
            counter.current_value = value
        self._session.flush()
