"""
SettlementOrchestrator -- settles a tenant's invoice selection atomically.

Responsibility:
    Given a tenant and a set of invoice ids (tenant-portal checkout or a
    gateway confirmation), produce exactly one APPROVED payment per invoice
    and mark each invoice PAID, all in one transaction, at most once.

Architecture position:
    Kernel > Services.  Entry point for the tenant-portal and webhook
    routes.  Owns the transaction boundary: commits on success, rolls back
    on failure.

Invariants enforced:
    - All-or-nothing: a failure on any invoice rolls back the whole batch.
    - Exactly once: each invoice is claimed with a compare-and-set from a
      payable status before any payment is written.  A replay, or the loser
      of a race, finds nothing payable and writes nothing.
    - Ownership: an invoice issued to another tenant fails the whole request
      with ForbiddenError before anything is written.
    - Receipt numbers are allocated in the same transaction as the payment.

Failure modes:
    - InvalidInvoiceSelectionError: empty or malformed invoice ids.
    - InvalidGatewayMetadataError: gateway payload rejected.
    - ForbiddenError: role is not tenant, or foreign invoices in the batch.
    - SettlementTransactionError: store failure; batch rolled back, safe to
      retry.
    - Zero payable invoices is a result (NO_PAYABLE_INVOICES), not an error.

Data flow:
    SettlementRequest -> resolve_payable (FOR UPDATE) -> per invoice:
    claim -> convert placeholder / insert payment -> drop stale pendings ->
    record reference -> commit -> NotificationIntent per receipt.
"""

from datetime import datetime
from typing import Any, Callable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from settlement_kernel.config import Settings
from settlement_kernel.domain.access_policy import (
    Action,
    Actor,
    ResourceScope,
    authorize,
)
from settlement_kernel.domain.clock import Clock, SystemClock
from settlement_kernel.domain.dtos import (
    NotificationIntent,
    SettlementReceipt,
    SettlementRequest,
    SettlementResult,
    SettlementStatus,
    payment_period_label,
)
from settlement_kernel.domain.gateway import GatewayMetadata, parse_gateway_metadata
from settlement_kernel.exceptions import (
    InvalidInvoiceSelectionError,
    SettlementKernelError,
    SettlementTransactionError,
    ValidationError,
)
from settlement_kernel.logging_config import LogContext, get_logger
from settlement_kernel.models.invoice import Invoice
from settlement_kernel.models.payment import (
    Payment,
    PaymentMethod,
    PaymentStatus,
    payment_type_for_invoice,
)
from settlement_kernel.services.invoice_linker import InvoiceLinker
from settlement_kernel.services.invoice_matcher import InvoiceMatcher
from settlement_kernel.services.notifier import LoggingNotifier, Notifier
from settlement_kernel.services.receipt_numbers import ReceiptNumberGenerator

logger = get_logger("services.settlement")

RECEIVED_FROM = "Tenant Portal"

Dispatch = Callable[..., Any]


def dispatch_now(fn: Callable[..., Any], *args: Any) -> None:
    fn(*args)


class SettlementOrchestrator:
    """
    Atomic multi-invoice settlement.

    Contract:
        ``settle`` either commits every payable invoice in the request or
        none of them.  Notifications go out only after commit, through
        ``dispatch``: inline by default, or a deferred runner such as
        FastAPI's ``BackgroundTasks.add_task``.

    Usage:
        orchestrator = SettlementOrchestrator(session, notifier=notifier)
        result = orchestrator.settle(request, actor)
        if result.status is SettlementStatus.NO_PAYABLE_INVOICES:
            ...
    """

    def __init__(
        self,
        session: Session,
        notifier: Notifier | None = None,
        matcher: InvoiceMatcher | None = None,
        receipts: ReceiptNumberGenerator | None = None,
        clock: Clock | None = None,
        linker: InvoiceLinker | None = None,
        settings: Settings | None = None,
        dispatch: Dispatch | None = None,
    ):
        self._session = session
        self._dispatch = dispatch or dispatch_now
        self._clock = clock or SystemClock()
        self._settings = settings or Settings()
        self._notifier = notifier or LoggingNotifier()
        self._matcher = matcher or InvoiceMatcher(session)
        self._receipts = receipts or ReceiptNumberGenerator(
            session,
            self._clock,
            prefix=self._settings.receipt_prefix,
            placeholder_prefix=self._settings.placeholder_prefix,
        )
        self._linker = linker or InvoiceLinker(session, self._clock)

    # =========================================================================
    # Validation (no side effects)
    # =========================================================================

    @staticmethod
    def _parse_invoice_ids(raw_ids: tuple[str, ...]) -> list[UUID]:
        parsed: list[UUID] = []
        invalid: list[str] = []
        for raw in raw_ids:
            try:
                parsed.append(UUID(str(raw)))
            except ValueError:
                invalid.append(str(raw))
        if invalid:
            raise InvalidInvoiceSelectionError(
                "Invalid invoice_ids: expected UUIDs, got " + ", ".join(invalid[:3]),
                invalid_ids=tuple(invalid),
            )
        # Preserve order, drop duplicates
        return list(dict.fromkeys(parsed))

    def _gateway_metadata(self, request: SettlementRequest) -> GatewayMetadata | None:
        if not (request.transaction_id or request.reference_number or request.gateway_response):
            return None
        return parse_gateway_metadata(
            request.gateway,
            transaction_id=request.transaction_id,
            reference_number=request.reference_number,
            gateway_response=request.gateway_response,
        )

    # =========================================================================
    # Settlement
    # =========================================================================

    def settle(self, request: SettlementRequest, actor: Actor) -> SettlementResult:
        """
        Settle ``request.invoice_ids`` for the tenant ``actor``.

        Preconditions:
            - ``actor`` is a tenant; every resolved invoice is issued to it.

        Postconditions:
            - On SETTLED: each returned receipt's invoice is PAID and has
              exactly one APPROVED payment created or converted by this call;
              no PENDING payment remains linked to it.
            - On NO_PAYABLE_INVOICES: nothing was written.
        """
        authorize(actor, Action.SETTLE_INVOICES)
        invoice_ids = self._parse_invoice_ids(request.invoice_ids)
        if request.payment_method not in {m.value for m in PaymentMethod}:
            raise ValidationError(
                f"Invalid payment_method {request.payment_method!r}",
                field="payment_method",
            )
        metadata = self._gateway_metadata(request)
        batch = tuple(str(i) for i in invoice_ids)

        with LogContext.bind(
            actor_id=actor.user_id,
            company_id=actor.company_id,
            transaction_id=request.payment_reference,
        ):
            logger.info(
                "settlement_started",
                extra={"invoice_count": len(invoice_ids), "gateway": request.gateway},
            )
            try:
                invoices = self._matcher.resolve_payable(invoice_ids)

                for invoice in invoices:
                    if invoice.issued_to != actor.user_id:
                        self._session.rollback()
                        authorize(
                            actor,
                            Action.SETTLE_INVOICES,
                            ResourceScope(
                                company_id=invoice.company_id,
                                tenant_id=invoice.issued_to,
                            ),
                        )

                if not invoices:
                    self._session.rollback()
                    logger.info("settlement_no_payable_invoices", extra={"invoice_ids": batch})
                    return SettlementResult(
                        status=SettlementStatus.NO_PAYABLE_INVOICES,
                        message="No payable invoices found",
                    )

                now = self._clock.now()
                period = payment_period_label(now)
                receipts: list[SettlementReceipt] = []
                for invoice in invoices:
                    receipt = self._settle_invoice(
                        invoice, request, actor, metadata, now, period
                    )
                    if receipt is not None:
                        receipts.append(receipt)

                self._session.commit()
            except SettlementKernelError:
                self._session.rollback()
                raise
            except SQLAlchemyError as exc:
                self._session.rollback()
                logger.error(
                    "settlement_failed",
                    extra={"invoice_ids": batch, "error": str(exc)},
                    exc_info=True,
                )
                raise SettlementTransactionError(batch, str(exc)) from exc

            result = SettlementResult(
                status=(
                    SettlementStatus.SETTLED
                    if receipts
                    else SettlementStatus.NO_PAYABLE_INVOICES
                ),
                receipts=tuple(receipts),
            )
            logger.info(
                "settlement_committed",
                extra={
                    "invoices_paid": result.invoices_paid,
                    "total_amount": str(result.total_amount),
                    "receipt_numbers": [r.receipt_number for r in receipts],
                },
            )

            if result.receipts:
                self._dispatch(self._notify, result.receipts)
        return result

    def _settle_invoice(
        self,
        invoice: Invoice,
        request: SettlementRequest,
        actor: Actor,
        metadata: GatewayMetadata | None,
        now: datetime,
        period: str,
    ) -> SettlementReceipt | None:
        invoice_id = invoice.id
        company_id = invoice.company_id
        invoice_number = invoice.invoice_number
        issuer_id = invoice.issued_by
        amount = invoice.total_amount
        currency = invoice.currency or self._settings.default_currency
        reference = request.reference_number or (
            metadata.reference_number if metadata is not None else None
        )

        fields = dict(
            company_id=company_id,
            tenant_id=invoice.issued_to,
            invoice_id=invoice_id,
            unit_id=invoice.unit_id,
            property_id=invoice.property_id,
            lease_id=invoice.lease_id,
            amount=amount,
            currency=currency,
            payment_method=request.payment_method,
            payment_type=payment_type_for_invoice(invoice.invoice_type).value,
            status=PaymentStatus.APPROVED.value,
            payment_date=now,
            payment_period=period,
            transaction_id=request.transaction_id or reference,
            reference_number=reference or request.transaction_id,
            approved_at=now,
            received_from=RECEIVED_FROM,
            attachments=[metadata.to_attachment()] if metadata is not None else [],
            updated_at=now,
        )

        if not self._linker.mark_paid(invoice, paid_at=now, payment_method=request.payment_method):
            return None

        receipt_number = self._receipts.next_receipt_number(company_id)
        fields["receipt_number"] = receipt_number

        placeholder = self._session.execute(
            select(Payment)
            .where(
                Payment.invoice_id == invoice_id,
                Payment.status == PaymentStatus.PENDING.value,
            )
            .order_by(Payment.created_at.desc(), Payment.receipt_number.desc())
            .limit(1)
            .with_for_update()
        ).scalar_one_or_none()

        if placeholder is not None:
            for name, value in fields.items():
                setattr(placeholder, name, value)
            payment = placeholder
        else:
            payment = Payment(created_by_id=actor.user_id, created_at=now, **fields)
            self._session.add(payment)
        self._session.flush()

        stale = self._session.execute(
            select(Payment).where(
                Payment.invoice_id == invoice_id,
                Payment.status == PaymentStatus.PENDING.value,
                Payment.id != payment.id,
            )
        ).scalars().all()
        for extra in stale:
            self._session.delete(extra)

        invoice.payment_method = request.payment_method
        invoice.payment_reference = request.payment_reference or reference or receipt_number
        self._session.flush()

        logger.info(
            "invoice_settled",
            extra={
                "invoice_id": str(invoice_id),
                "payment_id": str(payment.id),
                "receipt_number": receipt_number,
                "converted_placeholder": placeholder is not None,
                "stale_pending_removed": len(stale),
            },
        )
        return SettlementReceipt(
            payment_id=payment.id,
            invoice_id=invoice_id,
            invoice_number=invoice_number,
            receipt_number=receipt_number,
            amount=amount,
            currency=currency,
            issuer_id=issuer_id,
        )

    # =========================================================================
    # Post-commit
    # =========================================================================

    def _notify(self, receipts: tuple[SettlementReceipt, ...]) -> None:
        for receipt in receipts:
            if receipt.issuer_id is None:
                continue
            intent = NotificationIntent(
                recipient_id=receipt.issuer_id,
                title="Payment received",
                message=(
                    f"Tenant payment received for invoice {receipt.invoice_number}. "
                    f"Receipt: {receipt.receipt_number}"
                ),
                action_url=f"/landlord/invoices/{receipt.invoice_id}",
                metadata={
                    "payment_id": str(receipt.payment_id),
                    "invoice_id": str(receipt.invoice_id),
                    "receipt_number": receipt.receipt_number,
                    "amount": str(receipt.amount),
                    "currency": receipt.currency,
                },
            )
            try:
                self._notifier.deliver(intent)
            except Exception:
                logger.warning(
                    "settlement_notification_failed",
                    extra={
                        "invoice_id": str(receipt.invoice_id),
                        "recipient_id": str(receipt.issuer_id),
                    },
                    exc_info=True,
                )
