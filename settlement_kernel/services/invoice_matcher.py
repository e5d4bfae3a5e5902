"""
InvoiceMatcher -- finds the invoices a payment can settle.

Responsibility:
    Read-side helper for settlement and reconciliation:
    candidate invoices for a tenant (oldest due first), exact-amount
    matching, and resolution of an explicit id selection to payable invoices
    under a row lock.

Architecture position:
    Kernel > Services.  Used by PaymentStore (auto-reconciliation on create),
    SettlementOrchestrator and ReconciliationService.

Invariants enforced:
    - Amount equality is Decimal equality; floats never enter the match.
    - ``resolve_payable`` locks the rows it returns (``FOR UPDATE``) so a
      concurrent settlement of the same invoice waits for this transaction.
"""

from decimal import Decimal
from typing import Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from settlement_kernel.exceptions import InvoiceNotFoundError
from settlement_kernel.logging_config import get_logger
from settlement_kernel.models.invoice import OPEN_STATUSES, PAYABLE_STATUSES, Invoice

logger = get_logger("services.invoice_matcher")


class InvoiceMatcher:
    """Invoice lookups for settlement. Never writes."""

    def __init__(self, session: Session):
        self._session = session

    def get(self, invoice_id: UUID) -> Invoice:
        invoice = self._session.get(Invoice, invoice_id)
        if invoice is None:
            raise InvoiceNotFoundError(str(invoice_id))
        return invoice

    def find_settlement_candidates(self, tenant_id: UUID, company_id: UUID) -> list[Invoice]:
        """Issued, unpaid invoices of a tenant, oldest obligation first."""
        return list(
            self._session.execute(
                select(Invoice)
                .where(
                    Invoice.issued_to == tenant_id,
                    Invoice.company_id == company_id,
                    Invoice.status.in_(OPEN_STATUSES),
                )
                .order_by(Invoice.due_date.asc(), Invoice.invoice_number.asc())
            ).scalars()
        )

    @staticmethod
    def match_by_amount(
        candidates: Sequence[Invoice],
        amount: Decimal,
        currency: str | None = None,
    ) -> Invoice | None:
        """
        First candidate whose total equals ``amount`` exactly.

        ``candidates`` keep their order, so the tie-break is the caller's
        (due date ascending from ``find_settlement_candidates``).  No match
        is not an error.
        """
        for invoice in candidates:
            if currency is not None and invoice.currency != currency:
                continue
            if Decimal(invoice.total_amount) == Decimal(amount):
                return invoice
        return None

    def resolve_payable(self, invoice_ids: Sequence[UUID]) -> list[Invoice]:
        """
        Invoices among ``invoice_ids`` that can still be settled, locked
        for update and ordered by due date.

        Ids that do not exist or are already paid/void are left out.
        """
        if not invoice_ids:
            return []
        invoices = list(
            self._session.execute(
                select(Invoice)
                .where(
                    Invoice.id.in_(list(invoice_ids)),
                    Invoice.status.in_(PAYABLE_STATUSES),
                )
                .order_by(Invoice.due_date.asc(), Invoice.invoice_number.asc())
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalars()
        )
        logger.debug(
            "payable_invoices_resolved",
            extra={"requested": len(invoice_ids), "resolved": len(invoices)},
        )
        return invoices
