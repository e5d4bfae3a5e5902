"""
ReconciliationService -- batch repair of payment/invoice linkage.

Responsibility:
    Two operator passes over existing payments:

    * ``auto_reconcile``: approved payments with no invoice are linked to an
      open invoice of the same tenant with exactly the same amount (oldest
      due first), which settles that invoice.
    * ``reconcile_pending``: a tenant's PENDING payments (selected by
      gateway reference, or every one carrying a reference) are cancelled
      when their invoice already has a settled payment, and approved
      otherwise, with placeholder receipt numbers replaced.

Architecture position:
    Kernel > Services.  Called by ``POST /api/payments/reconcile`` and by
    ``scripts/reconcile_pending.py``.  Flushes only; the caller commits.

Invariants enforced:
    - Each payment is handled in its own savepoint: one failure is logged
      and skipped without undoing the others.
    - Invoices move to PAID only through InvoiceLinker's compare-and-set.
"""

from typing import Sequence
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from settlement_kernel.config import Settings
from settlement_kernel.domain.access_policy import (
    Action,
    Actor,
    ResourceScope,
    authorize,
    visibility_for,
)
from settlement_kernel.domain.clock import Clock
from settlement_kernel.domain.dtos import ReconciliationSummary
from settlement_kernel.domain.workflows import PAYMENT_WORKFLOW, SETTLED_PAYMENT_STATES
from settlement_kernel.exceptions import (
    SettlementKernelError,
    TenantNotFoundError,
    ValidationError,
)
from settlement_kernel.logging_config import get_logger
from settlement_kernel.models.invoice import Invoice
from settlement_kernel.models.payment import Payment, PaymentMethod, PaymentStatus
from settlement_kernel.models.tenant import Tenant
from settlement_kernel.services.base import BaseService
from settlement_kernel.services.invoice_linker import InvoiceLinker
from settlement_kernel.services.invoice_matcher import InvoiceMatcher
from settlement_kernel.services.receipt_numbers import ReceiptNumberGenerator

logger = get_logger("services.reconciliation")

CANCEL_NOTE = "Auto-cancelled (approved payment exists)"
APPROVE_NOTE = "Auto-reconciled from pending"


def _append_note(existing: str | None, note: str) -> str:
    return f"{existing} - {note}" if existing else note


class ReconciliationService(BaseService[Payment]):
    """Operator-driven reconciliation passes."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        matcher: InvoiceMatcher | None = None,
        linker: InvoiceLinker | None = None,
        receipts: ReceiptNumberGenerator | None = None,
        settings: Settings | None = None,
    ):
        super().__init__(session, clock)
        settings = settings or Settings()
        self._matcher = matcher or InvoiceMatcher(session)
        self._linker = linker or InvoiceLinker(session, self.clock)
        self._receipts = receipts or ReceiptNumberGenerator(
            session,
            self.clock,
            prefix=settings.receipt_prefix,
            placeholder_prefix=settings.placeholder_prefix,
        )

    # =========================================================================
    # Auto-reconciliation of approved, unlinked payments
    # =========================================================================

    def auto_reconcile(self, actor: Actor) -> ReconciliationSummary:
        """Link approved payments without an invoice to matching open invoices."""
        authorize(actor, Action.RECONCILE_PAYMENTS)

        query = select(Payment).where(
            Payment.invoice_id.is_(None),
            Payment.status == PaymentStatus.APPROVED.value,
        )
        visibility = visibility_for(actor)
        if not visibility.unrestricted:
            scoped = []
            if visibility.company_id is not None:
                scoped.append(Payment.company_id == visibility.company_id)
            if visibility.landlord_id is not None:
                scoped.append(
                    Payment.tenant_id.in_(
                        select(Tenant.id).where(Tenant.landlord_id == visibility.landlord_id)
                    )
                )
            if not scoped:
                return ReconciliationSummary()
            query = query.where(or_(*scoped))

        payments = self.session.execute(
            query.order_by(Payment.payment_date.asc(), Payment.created_at.asc())
        ).scalars().all()

        linked: list[UUID] = []
        skipped: list[UUID] = []
        paid: list[UUID] = []
        for payment in payments:
            try:
                with self.session.begin_nested():
                    candidates = self._matcher.find_settlement_candidates(
                        payment.tenant_id, payment.company_id
                    )
                    invoice = self._matcher.match_by_amount(
                        candidates, payment.amount, payment.currency
                    )
                    if invoice is None:
                        skipped.append(payment.id)
                        continue
                    result = self._linker.link(payment, invoice)
            except (SettlementKernelError, SQLAlchemyError):
                logger.warning(
                    "auto_reconcile_link_failed",
                    extra={"payment_id": str(payment.id)},
                    exc_info=True,
                )
                skipped.append(payment.id)
                continue

            linked.append(payment.id)
            if result.is_fully_paid:
                paid.append(result.invoice_id)

        summary = ReconciliationSummary(
            examined=len(payments),
            linked=tuple(linked),
            skipped=tuple(skipped),
            invoices_paid=tuple(paid),
        )
        logger.info(
            "auto_reconcile_completed",
            extra={
                "examined": summary.examined,
                "linked": len(summary.linked),
                "invoices_paid": len(summary.invoices_paid),
            },
        )
        return summary

    # =========================================================================
    # Pending-payment reconciliation
    # =========================================================================

    def _pending_for(
        self,
        tenant_id: UUID,
        references: Sequence[str],
        include_all: bool,
    ) -> list[Payment]:
        conditions = []
        if references:
            conditions.append(Payment.reference_number.in_(list(references)))
            conditions.append(Payment.transaction_id.in_(list(references)))
        if include_all:
            conditions.append(Payment.reference_number.is_not(None))
            conditions.append(Payment.transaction_id.is_not(None))

        return list(
            self.session.execute(
                select(Payment)
                .where(
                    Payment.tenant_id == tenant_id,
                    Payment.status == PaymentStatus.PENDING.value,
                    or_(*conditions),
                )
                .order_by(Payment.created_at.asc())
                .with_for_update()
            ).scalars()
        )

    def _invoice_already_settled(self, payment: Payment) -> bool:
        count = self.session.execute(
            select(func.count()).select_from(Payment).where(
                Payment.invoice_id == payment.invoice_id,
                Payment.status.in_(sorted(SETTLED_PAYMENT_STATES)),
                Payment.id != payment.id,
            )
        ).scalar_one()
        return count > 0

    def reconcile_pending(
        self,
        tenant_id: UUID,
        actor: Actor,
        references: Sequence[str] = (),
        include_all: bool = False,
    ) -> ReconciliationSummary:
        """
        Resolve a tenant's PENDING payments.

        Preconditions:
            - ``references`` is non-empty or ``include_all`` is True.

        Raises:
            ValidationError: Neither references nor include_all given.
            TenantNotFoundError: Unknown tenant.
            ForbiddenError: Tenant outside the actor's scope.
        """
        references = [r.strip() for r in references if r and r.strip()]
        if not references and not include_all:
            raise ValidationError("Provide references or include_all=True", field="references")

        tenant = self.session.get(Tenant, tenant_id)
        if tenant is None:
            raise TenantNotFoundError(str(tenant_id))
        authorize(
            actor,
            Action.RECONCILE_PAYMENTS,
            ResourceScope(
                company_id=tenant.company_id,
                tenant_id=tenant.id,
                landlord_id=tenant.landlord_id,
            ),
        )

        pending = self._pending_for(tenant.id, references, include_all)
        approved: list[UUID] = []
        cancelled: list[UUID] = []
        skipped: list[UUID] = []
        paid: list[UUID] = []

        for payment in pending:
            try:
                with self.session.begin_nested():
                    now = self.clock.now()
                    if payment.invoice_id is not None and self._invoice_already_settled(payment):
                        payment.status = PAYMENT_WORKFLOW.find_transition(
                            payment.status, "cancel"
                        ).to_state
                        payment.notes = _append_note(payment.notes, CANCEL_NOTE)
                        payment.updated_at = now
                        self.session.flush()
                        cancelled.append(payment.id)
                        continue

                    if not payment.receipt_number or self._receipts.is_placeholder(
                        payment.receipt_number
                    ):
                        payment.receipt_number = self._receipts.next_receipt_number(
                            payment.company_id
                        )
                    payment.status = PAYMENT_WORKFLOW.find_transition(
                        payment.status, "approve"
                    ).to_state
                    payment.payment_method = payment.payment_method or PaymentMethod.ONLINE.value
                    payment.approved_by = actor.user_id
                    payment.approved_at = now
                    payment.notes = _append_note(payment.notes, APPROVE_NOTE)
                    payment.updated_at = now
                    self.session.flush()

                    if payment.invoice_id is not None:
                        invoice = self.session.get(
                            Invoice, payment.invoice_id, with_for_update=True
                        )
                        if invoice is not None and self._linker.settle_if_covered(
                            invoice, payment
                        ):
                            paid.append(invoice.id)
            except (SettlementKernelError, SQLAlchemyError):
                logger.warning(
                    "pending_reconcile_failed",
                    extra={"payment_id": str(payment.id)},
                    exc_info=True,
                )
                skipped.append(payment.id)
                continue

            approved.append(payment.id)

        summary = ReconciliationSummary(
            examined=len(pending),
            approved=tuple(approved),
            cancelled=tuple(cancelled),
            skipped=tuple(skipped),
            invoices_paid=tuple(paid),
        )
        logger.info(
            "pending_reconcile_completed",
            extra={
                "tenant_id": str(tenant.id),
                "examined": summary.examined,
                "approved": len(summary.approved),
                "cancelled": len(summary.cancelled),
                "invoices_paid": len(summary.invoices_paid),
            },
        )
        return summary
