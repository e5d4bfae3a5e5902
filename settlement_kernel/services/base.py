"""
BaseService -- abstract base for kernel services that write.

Responsibility:
    Common constructor and session contract.  Services persist with
    ``session.flush()`` inside the caller's transaction and never commit or
    roll back; the orchestrator, the API request scope or the script owns
    the boundary.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
"""

from abc import ABC
from typing import Generic, TypeVar
from uuid import UUID

from sqlalchemy.orm import Session

from settlement_kernel.db.base import Base
from settlement_kernel.domain.clock import Clock, SystemClock
from settlement_kernel.exceptions import ValidationError

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for kernel services.

    Guarantees:
        - The service never calls ``session.commit()`` or
          ``session.rollback()``; savepoints it opens are released or
          rolled back before it returns.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        """
        Args:
            session: SQLAlchemy session for database operations.
            clock: Time source. Defaults to SystemClock.
        """
        self.session = session
        self.clock = clock or SystemClock()


def coerce_uuid(value, field: str) -> UUID:
    """Parse an id from the edge; malformed ids are a ValidationError."""
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid {field}: expected a UUID, got {value!r}", field=field) from None
