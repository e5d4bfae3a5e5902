"""
PaymentStore -- lifecycle of payment records.

Responsibility:
    Create, read, list, update, approve, transition and delete payments,
    and create the pending placeholder that reserves an invoice's payment at
    issuance time.  Every operation authorizes through the access policy
    before it touches the store; every status change is looked up in
    ``PAYMENT_WORKFLOW``.

Architecture position:
    Kernel > Services.  Receives its collaborators (receipt generator,
    invoice matcher, invoice linker) at construction time.

Invariants enforced:
    - Receipt numbers are unique per company: allocated from the locked
      counter, or rejected as DuplicateReceiptNumberError when supplied.
    - Only PENDING payments can be approved; approval of a payment linked to
      a PAID invoice is a conflict.
    - APPROVED and COMPLETED payments cannot be deleted.
    - Auto-reconciliation after create runs in a savepoint and never fails
      the create.

Failure modes:
    - ValidationError, NotFoundError, ForbiddenError, ConflictError as
      documented per method.  Nothing is committed here; the caller owns
      the transaction.
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Any
from uuid import UUID

from sqlalchemy import false, func, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
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
from settlement_kernel.domain.dtos import (
    PaymentCreate,
    PaymentFilters,
    PaymentPage,
    PaymentUpdate,
    payment_period_label,
)
from settlement_kernel.domain.workflows import DELETABLE_PAYMENT_STATES, PAYMENT_WORKFLOW
from settlement_kernel.exceptions import (
    DuplicateReceiptNumberError,
    InvalidPaymentTransitionError,
    InvoiceAlreadySettledError,
    PaymentImmutableError,
    PaymentNotFoundError,
    SettlementKernelError,
    TenantNotFoundError,
    ValidationError,
)
from settlement_kernel.logging_config import get_logger
from settlement_kernel.models.invoice import Invoice
from settlement_kernel.models.payment import (
    Payment,
    PaymentMethod,
    PaymentStatus,
    PaymentType,
    payment_type_for_invoice,
)
from settlement_kernel.models.tenant import Tenant
from settlement_kernel.services.base import BaseService, coerce_uuid
from settlement_kernel.services.invoice_linker import InvoiceLinker
from settlement_kernel.services.invoice_matcher import InvoiceMatcher
from settlement_kernel.services.receipt_numbers import ReceiptNumberGenerator

logger = get_logger("services.payment_store")

_METHODS = frozenset(m.value for m in PaymentMethod)
_TYPES = frozenset(t.value for t in PaymentType)
_STATUSES = frozenset(s.value for s in PaymentStatus)


def _check_choice(value: str | None, allowed: frozenset[str], field: str) -> None:
    if value is not None and value not in allowed:
        raise ValidationError(
            f"Invalid {field} {value!r}; expected one of {sorted(allowed)}",
            field=field,
        )


def _as_datetime(value: date | datetime) -> datetime:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


def _day_end(value: date | datetime) -> datetime:
    """Exclusive upper bound; a bare date includes the whole day."""
    if isinstance(value, datetime):
        return _as_datetime(value)
    return _as_datetime(value) + timedelta(days=1)


class PaymentStore(BaseService[Payment]):
    """
    Payment record store.

    Contract:
        Methods take an ``Actor`` and authorize before mutating.  They
        ``flush()`` and never commit.

    Non-goals:
        - Does NOT settle explicit invoice selections; that is
          SettlementOrchestrator's job.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        receipts: ReceiptNumberGenerator | None = None,
        matcher: InvoiceMatcher | None = None,
        linker: InvoiceLinker | None = None,
        settings: Settings | None = None,
        auto_reconcile: bool = True,
    ):
        super().__init__(session, clock)
        self._settings = settings or Settings()
        self._receipts = receipts or ReceiptNumberGenerator(
            session,
            self.clock,
            prefix=self._settings.receipt_prefix,
            placeholder_prefix=self._settings.placeholder_prefix,
        )
        self._matcher = matcher or InvoiceMatcher(session)
        self._linker = linker or InvoiceLinker(session, self.clock)
        self._auto_reconcile = auto_reconcile

    # =========================================================================
    # Reads
    # =========================================================================

    def _scope(self, payment: Payment) -> ResourceScope:
        tenant = self.session.get(Tenant, payment.tenant_id)
        return ResourceScope(
            company_id=payment.company_id,
            tenant_id=payment.tenant_id,
            landlord_id=tenant.landlord_id if tenant is not None else None,
        )

    def _load(self, payment_id: UUID | str, for_update: bool = False) -> Payment:
        pid = coerce_uuid(payment_id, "payment_id")
        payment = self.session.get(Payment, pid, with_for_update=for_update)
        if payment is None:
            raise PaymentNotFoundError(str(pid))
        return payment

    def _load_authorized(
        self,
        payment_id: UUID | str,
        actor: Actor,
        action: Action,
        for_update: bool = False,
    ) -> Payment:
        payment = self._load(payment_id, for_update=for_update)
        authorize(actor, action, self._scope(payment))
        return payment

    def get(self, payment_id: UUID | str, actor: Actor) -> Payment:
        """
        Raises:
            PaymentNotFoundError: No payment with that id.
            ForbiddenError: The payment is outside the actor's scope.
        """
        return self._load_authorized(payment_id, actor, Action.VIEW_PAYMENT)

    def list(
        self,
        filters: PaymentFilters | None,
        actor: Actor,
        page: int = 1,
        limit: int | None = None,
    ) -> PaymentPage:
        """Payments visible to ``actor`` matching ``filters``, newest first."""
        authorize(actor, Action.LIST_PAYMENTS)
        filters = filters or PaymentFilters()
        if page < 1:
            raise ValidationError("page must be >= 1", field="page")
        limit = limit or self._settings.default_page_size
        if limit < 1:
            raise ValidationError("limit must be >= 1", field="limit")
        limit = min(limit, self._settings.max_page_size)
        _check_choice(filters.status, _STATUSES, "status")
        _check_choice(filters.payment_method, _METHODS, "payment_method")
        _check_choice(filters.payment_type, _TYPES, "payment_type")

        conditions: list[Any] = []

        visibility = visibility_for(actor)
        if not visibility.unrestricted:
            if visibility.tenant_id is not None:
                conditions.append(Payment.tenant_id == visibility.tenant_id)
            else:
                scoped = []
                if visibility.company_id is not None:
                    scoped.append(Payment.company_id == visibility.company_id)
                if visibility.landlord_id is not None:
                    scoped.append(
                        Payment.tenant_id.in_(
                            select(Tenant.id).where(Tenant.landlord_id == visibility.landlord_id)
                        )
                    )
                conditions.append(or_(*scoped) if scoped else false())

        if filters.tenant_id is not None:
            conditions.append(Payment.tenant_id == filters.tenant_id)
        if filters.property_id is not None:
            conditions.append(Payment.property_id == filters.property_id)
        if filters.unit_id is not None:
            conditions.append(Payment.unit_id == filters.unit_id)
        if filters.invoice_id is not None:
            conditions.append(Payment.invoice_id == filters.invoice_id)
        if filters.payment_method is not None:
            conditions.append(Payment.payment_method == filters.payment_method)
        if filters.payment_type is not None:
            conditions.append(Payment.payment_type == filters.payment_type)
        if filters.status is not None:
            conditions.append(Payment.status == filters.status)
        if filters.date_from is not None:
            conditions.append(Payment.payment_date >= _as_datetime(filters.date_from))
        if filters.date_to is not None:
            conditions.append(Payment.payment_date < _day_end(filters.date_to))
        if filters.min_amount is not None:
            conditions.append(Payment.amount >= filters.min_amount)
        if filters.max_amount is not None:
            conditions.append(Payment.amount <= filters.max_amount)

        total = self.session.execute(
            select(func.count()).select_from(Payment).where(*conditions)
        ).scalar_one()

        items = self.session.execute(
            select(Payment)
            .where(*conditions)
            .order_by(Payment.created_at.desc(), Payment.receipt_number.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        ).scalars().all()

        return PaymentPage(items=tuple(items), total=total, page=page, limit=limit)

    # =========================================================================
    # Create
    # =========================================================================

    def _insert(self, payment: Payment) -> None:
        try:
            with self.session.begin_nested():
                self.session.add(payment)
                self.session.flush()
        except IntegrityError as exc:
            if "receipt" in str(exc.orig).lower():
                raise DuplicateReceiptNumberError(
                    str(payment.company_id), payment.receipt_number
                ) from exc
            raise

    def create(self, data: PaymentCreate, actor: Actor) -> Payment:
        """
        Record a manual payment in PENDING.

        Raises:
            ForbiddenError: Role may not create payments, or the tenant is
                outside the actor's scope.
            TenantNotFoundError: Unknown tenant.
            ValidationError: Bad enum value, an explicit invoice that does
                not belong to the tenant, or a supplied receipt number in the
                automatic series.
            InvoiceAlreadySettledError: Explicit invoice is already paid.
            DuplicateReceiptNumberError: Supplied receipt number is taken.
        """
        authorize(actor, Action.CREATE_PAYMENT)
        _check_choice(data.payment_method, _METHODS, "payment_method")
        _check_choice(data.payment_type, _TYPES, "payment_type")

        tenant = self.session.get(Tenant, data.tenant_id)
        if tenant is None:
            raise TenantNotFoundError(str(data.tenant_id))
        authorize(
            actor,
            Action.CREATE_PAYMENT,
            ResourceScope(
                company_id=tenant.company_id,
                tenant_id=tenant.id,
                landlord_id=tenant.landlord_id,
            ),
        )

        invoice: Invoice | None = None
        if data.invoice_id is not None:
            invoice = self._matcher.get(data.invoice_id)
            if invoice.issued_to != tenant.id or invoice.company_id != tenant.company_id:
                raise ValidationError(
                    "Invoice does not belong to this tenant",
                    field="invoice_id",
                )
            if invoice.is_paid:
                raise InvoiceAlreadySettledError(str(invoice.id))

        if data.receipt_number:
            if self._receipts.is_reserved(data.receipt_number):
                raise ValidationError(
                    f"Receipt number {data.receipt_number} is in the automatic series; "
                    "leave it empty to allocate one",
                    field="receipt_number",
                )
            if self._receipts.in_use(tenant.company_id, data.receipt_number):
                raise DuplicateReceiptNumberError(str(tenant.company_id), data.receipt_number)
            receipt_number = data.receipt_number
        else:
            receipt_number = self._receipts.next_receipt_number(tenant.company_id)

        now = self.clock.now()
        payment_date = _as_datetime(data.payment_date) if data.payment_date else now
        payment = Payment(
            company_id=tenant.company_id,
            tenant_id=tenant.id,
            invoice_id=invoice.id if invoice is not None else None,
            unit_id=data.unit_id,
            property_id=data.property_id,
            lease_id=data.lease_id,
            amount=data.amount,
            currency=data.currency or self._settings.default_currency,
            payment_method=data.payment_method,
            payment_type=data.payment_type,
            status=PaymentStatus.PENDING.value,
            payment_date=payment_date,
            payment_period=data.payment_period or payment_period_label(payment_date),
            receipt_number=receipt_number,
            transaction_id=data.transaction_id,
            reference_number=data.reference_number,
            received_from=data.received_from,
            notes=data.notes,
            attachments=[m.to_attachment() for m in data.gateway_metadata],
            created_by_id=actor.user_id,
            created_at=now,
            updated_at=now,
        )
        self._insert(payment)

        logger.info(
            "payment_created",
            extra={
                "payment_id": str(payment.id),
                "tenant_id": str(payment.tenant_id),
                "amount": str(payment.amount),
                "currency": payment.currency,
                "receipt_number": payment.receipt_number,
            },
        )

        if invoice is None and self._auto_reconcile:
            self._auto_link(payment)

        return payment

    def _auto_link(self, payment: Payment) -> Invoice | None:
        """Best-effort link to the oldest open invoice with the same amount."""
        try:
            with self.session.begin_nested():
                candidates = self._matcher.find_settlement_candidates(
                    payment.tenant_id, payment.company_id
                )
                invoice = self._matcher.match_by_amount(
                    candidates, payment.amount, payment.currency
                )
                if invoice is None:
                    logger.debug(
                        "auto_reconcile_no_match",
                        extra={"payment_id": str(payment.id), "candidates": len(candidates)},
                    )
                    return None
                self._linker.link(payment, invoice)
        except (SettlementKernelError, SQLAlchemyError):
            logger.warning(
                "auto_reconcile_failed",
                extra={"payment_id": str(payment.id)},
                exc_info=True,
            )
            return None

        logger.info(
            "payment_auto_linked",
            extra={
                "payment_id": str(payment.id),
                "invoice_id": str(invoice.id),
                "receipt_number": payment.receipt_number,
            },
        )
        return invoice

    def create_placeholder(self, invoice: Invoice, actor: Actor) -> Payment:
        """
        Reserve an issued invoice's payment as a PENDING placeholder
        (receipt ``PENDING-<invoice_number>``, dated on the due date).

        Returns the existing placeholder when the invoice already has one.
        """
        authorize(
            actor,
            Action.CREATE_PAYMENT,
            ResourceScope(company_id=invoice.company_id, tenant_id=invoice.issued_to),
        )
        receipt_number = self._receipts.placeholder_for(invoice.invoice_number)

        existing = self.session.execute(
            select(Payment).where(
                Payment.company_id == invoice.company_id,
                Payment.receipt_number == receipt_number,
            )
        ).scalar_one_or_none()
        if existing is not None:
            return existing

        now = self.clock.now()
        due = _as_datetime(invoice.due_date)
        payment = Payment(
            company_id=invoice.company_id,
            tenant_id=invoice.issued_to,
            invoice_id=invoice.id,
            unit_id=invoice.unit_id,
            property_id=invoice.property_id,
            lease_id=invoice.lease_id,
            amount=invoice.total_amount,
            currency=invoice.currency,
            payment_method=PaymentMethod.CASH.value,
            payment_type=payment_type_for_invoice(invoice.invoice_type).value,
            status=PaymentStatus.PENDING.value,
            payment_date=due,
            payment_period=payment_period_label(due),
            receipt_number=receipt_number,
            attachments=[],
            created_by_id=actor.user_id,
            created_at=now,
            updated_at=now,
        )
        self._insert(payment)
        logger.info(
            "placeholder_payment_created",
            extra={
                "payment_id": str(payment.id),
                "invoice_id": str(invoice.id),
                "receipt_number": receipt_number,
            },
        )
        return payment

    # =========================================================================
    # Update / status changes
    # =========================================================================

    def update(self, payment_id: UUID | str, data: PaymentUpdate, actor: Actor) -> Payment:
        """Merge the provided fields. Status is never changed here."""
        payment = self._load_authorized(payment_id, actor, Action.UPDATE_PAYMENT)
        changes = data.provided()
        _check_choice(changes.get("payment_method"), _METHODS, "payment_method")
        _check_choice(changes.get("payment_type"), _TYPES, "payment_type")
        if "payment_date" in changes:
            changes["payment_date"] = _as_datetime(changes["payment_date"])

        for name, value in changes.items():
            setattr(payment, name, value)
        payment.updated_at = self.clock.now()
        self.session.flush()

        logger.info(
            "payment_updated",
            extra={"payment_id": str(payment.id), "fields": sorted(changes)},
        )
        return payment

    def approve(self, payment_id: UUID | str, notes: str | None, actor: Actor) -> Payment:
        """
        PENDING -> APPROVED, stamping approver, time and notes.

        A placeholder receipt number is replaced with a real one.  When the
        payment is linked to an invoice, the invoice is marked PAID if the
        settled payments now cover it.

        Raises:
            InvalidPaymentTransitionError: Payment is not PENDING.
            InvoiceAlreadySettledError: Linked invoice is already PAID.
        """
        payment = self._load_authorized(
            payment_id, actor, Action.APPROVE_PAYMENT, for_update=True
        )
        if PAYMENT_WORKFLOW.find_transition(payment.status, "approve") is None:
            raise InvalidPaymentTransitionError(str(payment.id), payment.status, "approve")

        invoice: Invoice | None = None
        if payment.invoice_id is not None:
            invoice = self.session.get(Invoice, payment.invoice_id, with_for_update=True)
            if invoice is not None and invoice.is_paid:
                raise InvoiceAlreadySettledError(str(invoice.id))

        now = self.clock.now()
        if self._receipts.is_placeholder(payment.receipt_number):
            payment.receipt_number = self._receipts.next_receipt_number(payment.company_id)
        payment.status = PaymentStatus.APPROVED.value
        payment.approved_by = actor.user_id
        payment.approved_at = now
        payment.approval_notes = notes
        payment.updated_at = now
        self.session.flush()

        logger.info(
            "payment_approved",
            extra={
                "payment_id": str(payment.id),
                "approved_by": str(actor.user_id),
                "invoice_id": str(payment.invoice_id) if payment.invoice_id else None,
            },
        )

        if invoice is not None:
            self._linker.settle_if_covered(invoice, payment)
        return payment

    def transition(
        self,
        payment_id: UUID | str,
        action: str,
        actor: Actor,
        notes: str | None = None,
    ) -> Payment:
        """Apply a workflow action (``approve``, ``complete``, ``fail``, ``cancel``, ``refund``)."""
        if action == "approve":
            return self.approve(payment_id, notes, actor)

        payment = self._load_authorized(
            payment_id, actor, Action.TRANSITION_PAYMENT, for_update=True
        )
        transition = PAYMENT_WORKFLOW.find_transition(payment.status, action)
        if transition is None:
            raise InvalidPaymentTransitionError(str(payment.id), payment.status, action)

        from_state = payment.status
        payment.status = transition.to_state
        if notes:
            payment.notes = f"{payment.notes} - {notes}" if payment.notes else notes
        payment.updated_at = self.clock.now()
        self.session.flush()

        logger.info(
            "payment_transitioned",
            extra={
                "payment_id": str(payment.id),
                "action": action,
                "from_state": from_state,
                "to_state": transition.to_state,
            },
        )

        if transition.settles_invoice and payment.invoice_id is not None:
            invoice = self.session.get(Invoice, payment.invoice_id, with_for_update=True)
            if invoice is not None:
                self._linker.settle_if_covered(invoice, payment)
        return payment

    def delete(self, payment_id: UUID | str, actor: Actor) -> None:
        """
        Raises:
            PaymentImmutableError: Payment is not PENDING, FAILED or CANCELLED.
        """
        payment = self._load_authorized(
            payment_id, actor, Action.DELETE_PAYMENT, for_update=True
        )
        if payment.status not in DELETABLE_PAYMENT_STATES:
            raise PaymentImmutableError(str(payment.id), payment.status)

        self.session.delete(payment)
        self.session.flush()
        logger.info(
            "payment_deleted",
            extra={"payment_id": str(payment.id), "status": payment.status},
        )
