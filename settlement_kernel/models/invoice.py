"""
Module: settlement_kernel.models.invoice
Responsibility: ORM persistence for invoices, the billable obligations that
    payments settle.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - invoice_number is unique within a company (uq_invoice_company_number).
    - status becomes PAID only through a compare-and-set guarded on
      PAYABLE_STATUSES, so an invoice is settled at most once.

Failure modes:
    - InvoiceNotFoundError when an id does not resolve.
    - InvoiceAlreadySettledError when a manual path targets a paid invoice.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import Date, DateTime, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from settlement_kernel.db.base import TrackedBase, UUIDString


class InvoiceStatus(str, Enum):
    """Invoice lifecycle status.

    DRAFT/SENT/OVERDUE are payable; PAID and VOID are final.
    """

    DRAFT = "draft"
    SENT = "sent"
    OVERDUE = "overdue"
    PAID = "paid"
    VOID = "void"


class InvoiceType(str, Enum):
    MONTHLY_RENT = "monthly_rent"
    RENT = "rent"
    UTILITY = "utility"
    MAINTENANCE = "maintenance"
    DEPOSIT = "deposit"
    OTHER = "other"


# Statuses a settlement may move to PAID.
PAYABLE_STATUSES: tuple[str, ...] = (
    InvoiceStatus.DRAFT.value,
    InvoiceStatus.SENT.value,
    InvoiceStatus.OVERDUE.value,
)

# Statuses offered to auto-reconciliation (issued, not yet paid).
OPEN_STATUSES: tuple[str, ...] = (
    InvoiceStatus.SENT.value,
    InvoiceStatus.OVERDUE.value,
)


class Invoice(TrackedBase):
    """
    A billable obligation issued to a tenant.

    Guarantees:
        - (company_id, invoice_number) is unique.
        - payment_method / payment_reference / paid_date summarize the
          settlement that marked the invoice paid.
    """

    __tablename__ = "invoices"

    __table_args__ = (
        UniqueConstraint("company_id", "invoice_number", name="uq_invoice_company_number"),
        Index("idx_invoice_issued_to_status", "issued_to", "status"),
        Index("idx_invoice_due_date", "due_date"),
    )

    company_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        nullable=False,
    )

    invoice_number: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )

    # Tenant billed
    issued_to: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("tenants.id"),
        nullable=False,
    )

    # Landlord / agent who issued the invoice; receives settlement notifications
    issued_by: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )

    property_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    unit_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    lease_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    invoice_type: Mapped[str] = mapped_column(
        String(30),
        default=InvoiceType.MONTHLY_RENT.value,
        nullable=False,
    )

    total_amount: Mapped[Decimal] = mapped_column(nullable=False)

    currency: Mapped[str] = mapped_column(
        String(3),
        default="KES",
        nullable=False,
    )

    status: Mapped[str] = mapped_column(
        String(20),
        default=InvoiceStatus.DRAFT.value,
        nullable=False,
    )

    due_date: Mapped[date] = mapped_column(Date, nullable=False)

    paid_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    payment_method: Mapped[str | None] = mapped_column(String(30), nullable=True)
    payment_reference: Mapped[str | None] = mapped_column(String(100), nullable=True)

    description: Mapped[str | None] = mapped_column(String(500), nullable=True)

    def __repr__(self) -> str:
        return f"<Invoice {self.invoice_number}: {self.status}>"

    @property
    def is_paid(self) -> bool:
        return self.status == InvoiceStatus.PAID.value
