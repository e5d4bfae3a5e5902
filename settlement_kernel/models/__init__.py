"""ORM models for the settlement kernel."""

from settlement_kernel.models.invoice import (
    OPEN_STATUSES,
    PAYABLE_STATUSES,
    Invoice,
    InvoiceStatus,
    InvoiceType,
)
from settlement_kernel.models.payment import (
    Payment,
    PaymentMethod,
    PaymentStatus,
    PaymentType,
    payment_type_for_invoice,
)
from settlement_kernel.models.tenant import Tenant

__all__ = [
    "Tenant",
    "Invoice",
    "InvoiceStatus",
    "InvoiceType",
    "PAYABLE_STATUSES",
    "OPEN_STATUSES",
    "Payment",
    "PaymentStatus",
    "PaymentMethod",
    "PaymentType",
    "payment_type_for_invoice",
]
