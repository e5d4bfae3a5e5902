"""
Module: settlement_kernel.models.tenant
Responsibility: ORM persistence for tenants, the payers of invoices.
Architecture position: Kernel > Models.  May import from db/base.py only.

A tenant's id is the id of the tenant's user account, so a tenant actor's
``user_id`` identifies its own tenant row.  A tenant belongs to exactly one
company; an optional landlord manages the tenant directly.
"""

from uuid import UUID

from sqlalchemy import Index, String
from sqlalchemy.orm import Mapped, mapped_column

from settlement_kernel.db.base import TrackedBase, UUIDString


class Tenant(TrackedBase):
    """Tenant record used for scope checks on payments and invoices."""

    __tablename__ = "tenants"

    __table_args__ = (
        Index("idx_tenant_company", "company_id"),
        Index("idx_tenant_landlord", "landlord_id"),
    )

    company_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        nullable=False,
    )

    landlord_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )

    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)

    email: Mapped[str | None] = mapped_column(String(255), nullable=True)

    def __repr__(self) -> str:
        return f"<Tenant {self.full_name} ({self.id})>"

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()
