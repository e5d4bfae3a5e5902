"""
SequenceService -- named counters backed by locked rows.

Each sequence is one row in ``sequence_counters``.  ``next_value`` locks the
row (``SELECT ... FOR UPDATE``), bumps it and flushes, so two transactions
asking for the same sequence are serialized by the database and never see
the same value.  Receipt numbers use one sequence per company
(``receipt:<company_id>``).

The bump is part of the caller's transaction: if the caller rolls back,
the value is handed out again.  Nothing here commits.
"""

from uuid import UUID

from sqlalchemy import BigInteger, String, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Mapped, Session, mapped_column

from settlement_kernel.db.base import Base
from settlement_kernel.exceptions import SequenceAllocationError
from settlement_kernel.logging_config import get_logger

logger = get_logger("services.sequence")


class SequenceCounter(Base):
    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(String(80), nullable=False, unique=True)
    current_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<SequenceCounter {self.name}={self.current_value}>"


class SequenceService:
    """
    Usage:
        value = SequenceService(session).next_value(SequenceService.receipt_sequence(company_id))
    """

    RECEIPT_PREFIX = "receipt"

    def __init__(self, session: Session):
        self._session = session

    @classmethod
    def receipt_sequence(cls, company_id: UUID | str) -> str:
        return f"{cls.RECEIPT_PREFIX}:{company_id}"

    def _lock(self, name: str) -> SequenceCounter | None:
        stmt = (
            select(SequenceCounter)
            .where(SequenceCounter.name == name)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return self._session.execute(stmt).scalar_one_or_none()

    def _create(self, name: str) -> SequenceCounter | None:
        """
        Insert the row for a first use.  Returns None when a concurrent
        transaction inserted it first; the caller then locks that row.
        """
        try:
            with self._session.begin_nested():
                counter = SequenceCounter(name=name, current_value=0)
                self._session.add(counter)
                self._session.flush()
        except IntegrityError:
            logger.debug("sequence_create_race", extra={"sequence_name": name})
            return None
        return counter

    def next_value(self, name: str) -> int:
        """
        Allocate the next value of ``name`` (1 on first use).

        Raises:
            SequenceAllocationError: The counter row could not be read or
                written.  The caller's transaction should be rolled back.
        """
        try:
            counter = self._lock(name) or self._create(name) or self._lock(name)
            if counter is None:
                raise SequenceAllocationError(name, "counter row missing after insert race")
            counter.current_value += 1
            self._session.flush()
        except SQLAlchemyError as exc:
            logger.error(
                "sequence_allocation_failed",
                extra={"sequence_name": name, "error": str(exc)},
            )
            raise SequenceAllocationError(name, str(exc)) from exc

        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": name, "value": counter.current_value},
        )
        return counter.current_value
