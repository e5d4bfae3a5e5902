"""
InvoiceLinker -- attaches payments to invoices and marks invoices paid.

Responsibility:
    Links a payment to an invoice after checking that both belong to the
    same tenant and company, then settles the invoice when the approved and
    completed payments linked to it cover its total.  ``mark_paid`` is the
    single compare-and-set that moves an invoice to PAID; the settlement
    orchestrator, manual approval and reconciliation all go through it.

Architecture position:
    Kernel > Services.  Injected into PaymentStore, SettlementOrchestrator
    and ReconciliationService.

Invariants enforced:
    - An invoice becomes PAID only from a payable status (DRAFT/SENT/OVERDUE),
      via ``UPDATE ... WHERE status IN (...)``.  The loser of a race updates
      zero rows and treats it as a no-op.
    - A payment is linked to at most one invoice.

Failure modes:
    - ValidationError when payment and invoice belong to different tenants
      or companies.
    - PaymentAlreadyLinkedError when the payment references another invoice.
    - InvoiceAlreadySettledError when the invoice is already PAID.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from settlement_kernel.domain.clock import Clock, SystemClock
from settlement_kernel.domain.workflows import SETTLED_PAYMENT_STATES
from settlement_kernel.exceptions import (
    InvoiceAlreadySettledError,
    PaymentAlreadyLinkedError,
    ValidationError,
)
from settlement_kernel.logging_config import get_logger
from settlement_kernel.models.invoice import PAYABLE_STATUSES, Invoice, InvoiceStatus
from settlement_kernel.models.payment import Payment

logger = get_logger("services.invoice_linker")


@dataclass(frozen=True)
class LinkResult:
    invoice_id: UUID
    payment_id: UUID
    amount_paid: Decimal
    is_fully_paid: bool


class InvoiceLinker:
    """Payment-to-invoice linkage and the PAID compare-and-set."""

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()

    def link(self, payment: Payment, invoice: Invoice) -> LinkResult:
        """Link ``payment`` to ``invoice`` and settle the invoice if covered."""
        if payment.tenant_id != invoice.issued_to or payment.company_id != invoice.company_id:
            raise ValidationError(
                "Payment and invoice must belong to the same tenant and company",
                field="invoice_id",
            )
        if payment.invoice_id is not None and payment.invoice_id != invoice.id:
            raise PaymentAlreadyLinkedError(str(payment.id), str(payment.invoice_id))
        if invoice.is_paid:
            raise InvoiceAlreadySettledError(str(invoice.id))

        payment.invoice_id = invoice.id
        payment.updated_at = self._clock.now()
        self._session.flush()

        is_fully_paid = self.settle_if_covered(invoice, payment)
        amount_paid = self.amount_paid(invoice)

        logger.info(
            "payment_linked_to_invoice",
            extra={
                "payment_id": str(payment.id),
                "invoice_id": str(invoice.id),
                "amount_paid": str(amount_paid),
                "is_fully_paid": is_fully_paid,
            },
        )
        return LinkResult(
            invoice_id=invoice.id,
            payment_id=payment.id,
            amount_paid=amount_paid,
            is_fully_paid=is_fully_paid,
        )

    def amount_paid(self, invoice: Invoice) -> Decimal:
        """Sum of approved and completed payments linked to ``invoice``."""
        amounts = self._session.execute(
            select(Payment.amount).where(
                Payment.invoice_id == invoice.id,
                Payment.status.in_(sorted(SETTLED_PAYMENT_STATES)),
            )
        ).scalars()
        return sum(amounts, Decimal("0"))

    def settle_if_covered(self, invoice: Invoice, payment: Payment | None = None) -> bool:
        """
        Mark ``invoice`` PAID when its linked settled payments cover the total.

        Returns:
            True if this call moved the invoice to PAID.
        """
        if self.amount_paid(invoice) < Decimal(invoice.total_amount):
            return False
        return self.mark_paid(
            invoice,
            paid_at=self._clock.now(),
            payment_method=payment.payment_method if payment is not None else None,
            payment_reference=(
                payment.reference_number or payment.transaction_id or payment.receipt_number
                if payment is not None
                else None
            ),
        )

    def mark_paid(
        self,
        invoice: Invoice,
        paid_at: datetime,
        payment_method: str | None = None,
        payment_reference: str | None = None,
    ) -> bool:
        """
        Compare-and-set ``invoice`` to PAID.

        Returns:
            True if this transaction won; False if the invoice was no longer
            payable (already paid or void).
        """
        invoice_id = invoice.id
        values: dict = {
            "status": InvoiceStatus.PAID.value,
            "paid_date": paid_at,
            "updated_at": paid_at,
        }
        if payment_method is not None:
            values["payment_method"] = payment_method
        if payment_reference is not None:
            values["payment_reference"] = payment_reference

        result = self._session.execute(
            update(Invoice)
            .where(
                Invoice.id == invoice_id,
                Invoice.status.in_(PAYABLE_STATUSES),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        won = result.rowcount == 1
        self._session.expire(invoice)

        if won:
            logger.info(
                "invoice_marked_paid",
                extra={"invoice_id": str(invoice_id), "payment_reference": payment_reference},
            )
        else:
            logger.info(
                "invoice_already_settled",
                extra={"invoice_id": str(invoice_id)},
            )
        return won
