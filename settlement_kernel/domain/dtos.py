"""
DTOs -- Pure domain data transfer objects.

Responsibility:
    Immutable inputs and outputs of the payment record store, the settlement
    orchestrator, the reconciliation service and the notifier.  Services
    accept these instead of raw dicts so that validation happens once, at
    construction.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  No ORM imports.

Invariants enforced:
    - Monetary amounts are ``Decimal`` and strictly positive.
    - A settlement request names at least one invoice.
    - ``PaymentUpdate`` never carries a status; status changes go through
      the payment workflow.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass, field, fields
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any
from uuid import UUID

from settlement_kernel.domain.gateway import GatewayMetadata
from settlement_kernel.exceptions import InvalidAmountError, InvalidInvoiceSelectionError


def to_decimal(value: Any) -> Decimal:
    """Coerce an API or CLI value to ``Decimal``; floats go through ``str``."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        value = str(value)
    try:
        return Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidAmountError(str(value)) from None


def _positive(amount: Any) -> Decimal:
    dec = to_decimal(amount)
    if not dec.is_finite() or dec <= 0:
        raise InvalidAmountError(str(amount))
    return dec


def payment_period_label(when: date | datetime) -> str:
    """Human-readable billing month, e.g. ``"January 2024"``."""
    return f"{calendar.month_name[when.month]} {when.year}"


# =============================================================================
# Payment record store
# =============================================================================


@dataclass(frozen=True)
class PaymentCreate:
    """Fields for a manually entered payment."""

    tenant_id: UUID
    amount: Decimal
    payment_type: str = "rent"
    payment_method: str = "cash"
    currency: str | None = None
    payment_date: date | datetime | None = None
    invoice_id: UUID | None = None
    unit_id: UUID | None = None
    property_id: UUID | None = None
    lease_id: UUID | None = None
    receipt_number: str | None = None
    transaction_id: str | None = None
    reference_number: str | None = None
    payment_period: str | None = None
    received_from: str | None = None
    notes: str | None = None
    gateway_metadata: tuple[GatewayMetadata, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "amount", _positive(self.amount))


@dataclass(frozen=True)
class PaymentUpdate:
    """Partial update; ``None`` means "leave unchanged"."""

    amount: Decimal | None = None
    payment_type: str | None = None
    payment_method: str | None = None
    currency: str | None = None
    payment_date: date | datetime | None = None
    unit_id: UUID | None = None
    property_id: UUID | None = None
    lease_id: UUID | None = None
    transaction_id: str | None = None
    reference_number: str | None = None
    payment_period: str | None = None
    received_from: str | None = None
    notes: str | None = None

    def __post_init__(self) -> None:
        if self.amount is not None:
            object.__setattr__(self, "amount", _positive(self.amount))

    def provided(self) -> dict[str, Any]:
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name) is not None
        }


@dataclass(frozen=True)
class PaymentFilters:
    tenant_id: UUID | None = None
    property_id: UUID | None = None
    unit_id: UUID | None = None
    invoice_id: UUID | None = None
    payment_method: str | None = None
    payment_type: str | None = None
    status: str | None = None
    date_from: date | datetime | None = None
    date_to: date | datetime | None = None
    min_amount: Decimal | None = None
    max_amount: Decimal | None = None


@dataclass(frozen=True)
class PaymentPage:
    """One page of payments, newest first."""

    items: tuple[Any, ...]
    total: int
    page: int
    limit: int

    @property
    def pages(self) -> int:
        if self.limit <= 0:
            return 0
        return (self.total + self.limit - 1) // self.limit


# =============================================================================
# Settlement
# =============================================================================


@dataclass(frozen=True)
class SettlementRequest:
    """
    A tenant's request to settle a set of invoices.

    ``invoice_ids`` are kept as strings until the orchestrator validates
    them, so malformed ids surface as ``InvalidInvoiceSelectionError``
    rather than a parsing failure at the edge.
    """

    invoice_ids: tuple[str, ...]
    transaction_id: str | None = None
    reference_number: str | None = None
    payment_method: str = "online"
    gateway: str = "paystack"
    gateway_response: dict[str, Any] | None = None

    def __post_init__(self) -> None:
        ids = tuple(str(i) for i in (self.invoice_ids or ()))
        if not ids:
            raise InvalidInvoiceSelectionError("At least one invoice must be selected")
        object.__setattr__(self, "invoice_ids", ids)

    @property
    def payment_reference(self) -> str | None:
        return self.reference_number or self.transaction_id


class SettlementStatus(str, Enum):
    """Outcome of a settlement call."""

    SETTLED = "settled"
    NO_PAYABLE_INVOICES = "no_payable_invoices"


@dataclass(frozen=True)
class SettlementReceipt:
    payment_id: UUID
    invoice_id: UUID
    invoice_number: str
    receipt_number: str
    amount: Decimal
    currency: str
    issuer_id: UUID | None = None


@dataclass(frozen=True)
class SettlementResult:
    """Result of ``SettlementOrchestrator.settle``."""

    status: SettlementStatus
    receipts: tuple[SettlementReceipt, ...] = ()
    message: str | None = None

    @property
    def invoices_paid(self) -> int:
        return len(self.receipts)

    @property
    def total_amount(self) -> Decimal:
        return sum((r.amount for r in self.receipts), Decimal("0"))


# =============================================================================
# Reconciliation
# =============================================================================


@dataclass(frozen=True)
class ReconciliationSummary:
    """What a reconciliation pass did, by payment id."""

    examined: int = 0
    linked: tuple[UUID, ...] = ()
    approved: tuple[UUID, ...] = ()
    cancelled: tuple[UUID, ...] = ()
    skipped: tuple[UUID, ...] = ()
    invoices_paid: tuple[UUID, ...] = ()

    @property
    def changed(self) -> int:
        return len(self.linked) + len(self.approved) + len(self.cancelled)


# =============================================================================
# Notification
# =============================================================================


@dataclass(frozen=True)
class NotificationIntent:
    """A message for the external notification collaborator."""

    recipient_id: UUID
    title: str
    message: str
    type: str = "payment_received"
    category: str = "payment"
    priority: str = "high"
    action_url: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
