"""
Declarative base for the settlement kernel tables.

Every model gets a uuid4 primary key stored as ``String(36)`` (identical
on PostgreSQL and SQLite), money as ``Money`` (exact ``Numeric(38, 9)``)
and timezone-aware datetimes.  Nothing in this module imports from models,
services or domain.
"""

from datetime import datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID, uuid4

from sqlalchemy import BigInteger, DateTime, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import String, TypeDecorator

from settlement_kernel.db.types import Money


class UUIDString(TypeDecorator):
    """UUID bound as its text form, loaded back as ``uuid.UUID``."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else UUID(value)


class Base(DeclarativeBase):
    type_annotation_map: ClassVar[dict] = {
        Decimal: Money(),
        datetime: DateTime(timezone=True),
        UUID: UUIDString(),
        int: BigInteger,
    }

    id: Mapped[UUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)


class TrackedBase(Base):
    """
    Adds audit columns.  Services stamp ``created_at``/``updated_at`` from
    their clock; the server defaults only cover raw inserts.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )
    created_by_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
