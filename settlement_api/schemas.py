"""
Pydantic schemas for the settlement API.

Request bodies convert to kernel DTOs with ``to_dto()``; responses are built
from ORM rows (``from_attributes``) or kernel results.  Money leaves the API
as a decimal string, never a float.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Annotated, Any, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer, computed_field

from settlement_kernel.domain.dtos import (
    PaymentCreate,
    PaymentUpdate,
    ReconciliationSummary,
    SettlementRequest,
    SettlementResult,
)
from settlement_kernel.domain.gateway import (
    format_payment_method_display,
    load_gateway_metadata,
    parse_gateway_metadata,
    to_short_reference,
    to_short_transaction_id,
)

_CENTS = Decimal("0.01")


def money_str(value: Decimal) -> str:
    """``Decimal("5000.000000000")`` -> ``"5000.00"``; extra precision is kept."""
    cents = value.quantize(_CENTS)
    if cents == value:
        return str(cents)
    return format(value.normalize(), "f")


Money = Annotated[Decimal, PlainSerializer(money_str, return_type=str, when_used="json")]


# =============================================================================
# Payments
# =============================================================================


class PaymentCreateRequest(BaseModel):
    """Request body for POST /api/payments."""

    tenant_id: UUID
    amount: Decimal = Field(..., gt=0)
    payment_type: str = "rent"
    payment_method: str = "cash"
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    payment_date: Optional[datetime] = None
    invoice_id: Optional[UUID] = None
    unit_id: Optional[UUID] = None
    property_id: Optional[UUID] = None
    lease_id: Optional[UUID] = None
    receipt_number: Optional[str] = Field(default=None, max_length=64)
    transaction_id: Optional[str] = None
    reference_number: Optional[str] = None
    payment_period: Optional[str] = None
    received_from: Optional[str] = None
    notes: Optional[str] = None
    gateway: Optional[str] = Field(default=None, description="paystack, mpesa or manual")
    gateway_response: Optional[dict[str, Any]] = None
    phone_number: Optional[str] = None

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "tenant_id": "0b7f6c1e-4d1a-4d55-9b7e-2f6f0b3f6a10",
                "amount": "25000.00",
                "payment_method": "mobile_money",
                "gateway": "mpesa",
                "transaction_id": "QFT12ABC34",
                "phone_number": "254712345678",
            }
        }
    )

    def to_dto(self) -> PaymentCreate:
        metadata = ()
        if self.gateway:
            metadata = (
                parse_gateway_metadata(
                    self.gateway,
                    transaction_id=self.transaction_id,
                    reference_number=self.reference_number,
                    gateway_response=self.gateway_response,
                    phone_number=self.phone_number,
                    received_from=self.received_from,
                    notes=self.notes,
                ),
            )
        data = self.model_dump(exclude={"gateway", "gateway_response", "phone_number"})
        return PaymentCreate(**data, gateway_metadata=metadata)


class PaymentUpdateRequest(BaseModel):
    """Request body for PUT /api/payments/{id}.  Status is not accepted here."""

    amount: Optional[Decimal] = Field(default=None, gt=0)
    payment_type: Optional[str] = None
    payment_method: Optional[str] = None
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    payment_date: Optional[datetime] = None
    unit_id: Optional[UUID] = None
    property_id: Optional[UUID] = None
    lease_id: Optional[UUID] = None
    transaction_id: Optional[str] = None
    reference_number: Optional[str] = None
    payment_period: Optional[str] = None
    received_from: Optional[str] = None
    notes: Optional[str] = None

    model_config = ConfigDict(extra="forbid")

    def to_dto(self) -> PaymentUpdate:
        return PaymentUpdate(**self.model_dump(exclude_none=True))


class ApproveRequest(BaseModel):
    notes: Optional[str] = None


class TransitionRequest(BaseModel):
    action: Literal["approve", "complete", "fail", "cancel", "refund"]
    notes: Optional[str] = None


class PaymentResponse(BaseModel):
    """A payment record with its display labels."""

    id: UUID
    company_id: UUID
    tenant_id: UUID
    invoice_id: Optional[UUID] = None
    unit_id: Optional[UUID] = None
    property_id: Optional[UUID] = None
    lease_id: Optional[UUID] = None
    amount: Money
    currency: str
    payment_method: str
    payment_type: str
    status: str
    payment_date: datetime
    payment_period: Optional[str] = None
    receipt_number: str
    transaction_id: Optional[str] = None
    reference_number: Optional[str] = None
    approved_by: Optional[UUID] = None
    approved_at: Optional[datetime] = None
    approval_notes: Optional[str] = None
    received_from: Optional[str] = None
    notes: Optional[str] = None
    attachments: list[dict[str, Any]] = Field(default_factory=list)
    created_by_id: UUID
    created_at: datetime
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @computed_field
    @property
    def payment_method_display(self) -> str:
        return format_payment_method_display(self.payment_method, self.attachments)

    @computed_field
    @property
    def short_reference(self) -> str:
        return to_short_reference(self.reference_number)

    @computed_field
    @property
    def short_transaction_id(self) -> str:
        return to_short_transaction_id(self.transaction_id)

    @computed_field
    @property
    def gateway(self) -> Optional[str]:
        """Tag of the first gateway record in ``attachments``, if any."""
        records = load_gateway_metadata(self.attachments)
        return records[0].gateway if records else None


class PaymentPageResponse(BaseModel):
    items: list[PaymentResponse]
    total: int
    page: int
    limit: int
    pages: int


# =============================================================================
# Reconciliation
# =============================================================================


class ReconcileRequest(BaseModel):
    """
    ``mode="auto"`` links approved, unlinked payments to matching invoices.
    ``mode="pending"`` resolves one tenant's pending payments by reference.
    """

    mode: Literal["auto", "pending"] = "auto"
    tenant_id: Optional[UUID] = None
    references: list[str] = Field(default_factory=list)
    include_all: bool = False


class ReconciliationResponse(BaseModel):
    examined: int
    linked: list[UUID]
    approved: list[UUID]
    cancelled: list[UUID]
    skipped: list[UUID]
    invoices_paid: list[UUID]
    changed: int

    @classmethod
    def from_summary(cls, summary: ReconciliationSummary) -> "ReconciliationResponse":
        return cls(
            examined=summary.examined,
            linked=list(summary.linked),
            approved=list(summary.approved),
            cancelled=list(summary.cancelled),
            skipped=list(summary.skipped),
            invoices_paid=list(summary.invoices_paid),
            changed=summary.changed,
        )


# =============================================================================
# Settlement
# =============================================================================


class SettlementRequestBody(BaseModel):
    """Tenant checkout: settle the selected invoices."""

    invoice_ids: list[str]
    transaction_id: Optional[str] = None
    reference_number: Optional[str] = None
    payment_method: str = "online"
    gateway: str = "paystack"
    gateway_response: Optional[dict[str, Any]] = None

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "invoice_ids": ["5c0e2a8e-7f0e-4a63-8b38-9d0f1c1c2b11"],
                "reference_number": "T123456789",
                "gateway": "paystack",
                "gateway_response": {"data": {"channel": "card"}},
            }
        }
    )

    def to_dto(self) -> SettlementRequest:
        return SettlementRequest(
            invoice_ids=tuple(self.invoice_ids),
            transaction_id=self.transaction_id,
            reference_number=self.reference_number,
            payment_method=self.payment_method,
            gateway=self.gateway,
            gateway_response=self.gateway_response,
        )


class GatewayConfirmationBody(SettlementRequestBody):
    """Normalized gateway confirmation: the paying tenant plus the settlement facts."""

    tenant_id: UUID
    company_id: UUID


class ReceiptResponse(BaseModel):
    payment_id: UUID
    invoice_id: UUID
    invoice_number: str
    receipt_number: str
    amount: Money
    currency: str


class SettlementResponse(BaseModel):
    status: str
    invoices_paid: int
    total_amount: Money
    message: Optional[str] = None
    receipts: list[ReceiptResponse]

    @classmethod
    def from_result(cls, result: SettlementResult) -> "SettlementResponse":
        return cls(
            status=result.status.value,
            invoices_paid=result.invoices_paid,
            total_amount=result.total_amount,
            message=result.message,
            receipts=[
                ReceiptResponse(
                    payment_id=r.payment_id,
                    invoice_id=r.invoice_id,
                    invoice_number=r.invoice_number,
                    receipt_number=r.receipt_number,
                    amount=r.amount,
                    currency=r.currency,
                )
                for r in result.receipts
            ],
        )


class ErrorResponse(BaseModel):
    error: str
    message: str
    field: Optional[str] = None
    current_state: Optional[str] = None


class PaymentListQuery(BaseModel):
    """Query-string filters for GET /api/payments."""

    tenant_id: Optional[UUID] = None
    property_id: Optional[UUID] = None
    unit_id: Optional[UUID] = None
    invoice_id: Optional[UUID] = None
    payment_method: Optional[str] = None
    payment_type: Optional[str] = None
    status: Optional[str] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    min_amount: Optional[Decimal] = None
    max_amount: Optional[Decimal] = None
    page: int = Field(default=1, ge=1)
    limit: Optional[int] = Field(default=None, ge=1)
