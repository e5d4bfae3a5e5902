"""
Module: settlement_kernel.models.payment
Responsibility: ORM persistence for payments -- one row per money movement
    from a tenant, optionally linked to the invoice it settles.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - receipt_number is unique within a company (uq_payment_company_receipt).
    - amount > 0 (ck_payment_amount_positive).
    - status moves only along PAYMENT_WORKFLOW (enforced by PaymentStore).
    - APPROVED and COMPLETED payments are never deleted.

Failure modes:
    - IntegrityError on a duplicate receipt number; the store surfaces it
      as DuplicateReceiptNumberError.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from settlement_kernel.db.base import TrackedBase, UUIDString


class PaymentStatus(str, Enum):
    """Payment lifecycle status. See ``domain.workflows.PAYMENT_WORKFLOW``."""

    PENDING = "pending"
    APPROVED = "approved"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class PaymentMethod(str, Enum):
    CASH = "cash"
    MOBILE_MONEY = "mobile_money"
    BANK_TRANSFER = "bank_transfer"
    CHEQUE = "cheque"
    CARD = "card"
    ONLINE = "online"
    OTHER = "other"


class PaymentType(str, Enum):
    RENT = "rent"
    DEPOSIT = "deposit"
    UTILITY = "utility"
    MAINTENANCE = "maintenance"
    LATE_FEE = "late_fee"
    PENALTY = "penalty"
    OTHER = "other"


_INVOICE_TYPE_TO_PAYMENT_TYPE: dict[str, PaymentType] = {
    "monthly_rent": PaymentType.RENT,
    "rent": PaymentType.RENT,
    "utility": PaymentType.UTILITY,
    "maintenance": PaymentType.MAINTENANCE,
    "deposit": PaymentType.DEPOSIT,
}


def payment_type_for_invoice(invoice_type: str | None) -> PaymentType:
    """Payment type recorded when a payment settles an invoice of ``invoice_type``."""
    if not invoice_type:
        return PaymentType.OTHER
    return _INVOICE_TYPE_TO_PAYMENT_TYPE.get(invoice_type, PaymentType.OTHER)


class Payment(TrackedBase):
    """
    A tenant payment.

    Contract:
        Created PENDING by staff or as an invoice-issuance placeholder
        (receipt ``PENDING-<invoice_number>``), or APPROVED directly by the
        settlement orchestrator.  Gateway metadata lives in ``attachments``
        as a list of tagged records (see ``domain.gateway``).
    """

    __tablename__ = "payments"

    __table_args__ = (
        UniqueConstraint("company_id", "receipt_number", name="uq_payment_company_receipt"),
        CheckConstraint("amount > 0", name="ck_payment_amount_positive"),
        Index("idx_payment_invoice_status", "invoice_id", "status"),
        Index("idx_payment_tenant", "tenant_id"),
        Index("idx_payment_company_created", "company_id", "created_at"),
        Index("idx_payment_transaction", "transaction_id"),
    )

    company_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        nullable=False,
    )

    tenant_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("tenants.id"),
        nullable=False,
    )

    invoice_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("invoices.id"),
        nullable=True,
    )

    unit_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    property_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    lease_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    amount: Mapped[Decimal] = mapped_column(nullable=False)

    currency: Mapped[str] = mapped_column(
        String(3),
        default="KES",
        nullable=False,
    )

    payment_method: Mapped[str] = mapped_column(
        String(30),
        default=PaymentMethod.CASH.value,
        nullable=False,
    )

    payment_type: Mapped[str] = mapped_column(
        String(30),
        default=PaymentType.RENT.value,
        nullable=False,
    )

    status: Mapped[str] = mapped_column(
        String(20),
        default=PaymentStatus.PENDING.value,
        nullable=False,
    )

    payment_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    # e.g. "January 2024"
    payment_period: Mapped[str | None] = mapped_column(String(50), nullable=True)

    receipt_number: Mapped[str] = mapped_column(String(100), nullable=False)

    # Gateway correlation
    transaction_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    reference_number: Mapped[str | None] = mapped_column(String(100), nullable=True)

    approved_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    approval_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Tagged gateway metadata records
    attachments: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON,
        default=list,
        nullable=False,
    )

    received_from: Mapped[str | None] = mapped_column(String(200), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<Payment {self.receipt_number}: {self.amount} {self.currency} {self.status}>"
