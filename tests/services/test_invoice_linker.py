"""
Payment-to-invoice linkage and the PAID compare-and-set.

An invoice moves to PAID at most once: the second writer updates zero
rows and reports a no-op.
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from settlement_kernel.exceptions import (
    InvoiceAlreadySettledError,
    PaymentAlreadyLinkedError,
    ValidationError,
)
from settlement_kernel.models.invoice import InvoiceStatus
from settlement_kernel.models.payment import PaymentMethod, PaymentStatus
from settlement_kernel.services.invoice_linker import InvoiceLinker


@pytest.fixture
def linker(session, deterministic_clock):
    return InvoiceLinker(session, deterministic_clock)


class TestLink:
    def test_pending_payment_links_without_paying(self, linker, tenant, make_invoice, make_payment):
        invoice = make_invoice(tenant)
        payment = make_payment(tenant)

        result = linker.link(payment, invoice)

        assert payment.invoice_id == invoice.id
        assert result.amount_paid == Decimal("0")
        assert result.is_fully_paid is False
        assert invoice.status == InvoiceStatus.SENT.value

    def test_approved_payment_covering_total_pays_invoice(
        self, linker, tenant, make_invoice, make_payment, deterministic_clock
    ):
        invoice = make_invoice(tenant, amount="25000.00")
        payment = make_payment(
            tenant,
            status=PaymentStatus.APPROVED,
            payment_method=PaymentMethod.MOBILE_MONEY,
            reference_number="T123",
        )

        result = linker.link(payment, invoice)

        assert result.is_fully_paid is True
        assert result.amount_paid == Decimal("25000")
        assert invoice.status == InvoiceStatus.PAID.value
        assert invoice.payment_method == "mobile_money"
        assert invoice.payment_reference == "T123"
        assert invoice.paid_date is not None

    def test_partial_payments_accumulate(self, linker, tenant, make_invoice, make_payment):
        invoice = make_invoice(tenant, amount="20000.00")
        first = make_payment(tenant, amount="12000.00", status=PaymentStatus.APPROVED)
        second = make_payment(tenant, amount="8000.00", status=PaymentStatus.COMPLETED)

        assert linker.link(first, invoice).is_fully_paid is False
        result = linker.link(second, invoice)

        assert result.is_fully_paid is True
        assert result.amount_paid == Decimal("20000")

    def test_failed_payments_do_not_count(self, linker, tenant, make_invoice, make_payment):
        invoice = make_invoice(tenant)
        failed = make_payment(tenant, status=PaymentStatus.FAILED)

        assert linker.link(failed, invoice).is_fully_paid is False
        assert linker.amount_paid(invoice) == Decimal("0")

    def test_other_tenant_rejected(self, linker, make_tenant, make_invoice, make_payment):
        invoice = make_invoice(make_tenant())
        payment = make_payment(make_tenant())

        with pytest.raises(ValidationError) as exc_info:
            linker.link(payment, invoice)
        assert exc_info.value.field == "invoice_id"

    def test_already_linked_elsewhere(self, linker, tenant, make_invoice, make_payment):
        first, second = make_invoice(tenant), make_invoice(tenant)
        payment = make_payment(tenant, invoice=first)

        with pytest.raises(PaymentAlreadyLinkedError):
            linker.link(payment, second)

    def test_paid_invoice_rejected(self, linker, tenant, make_invoice, make_payment):
        invoice = make_invoice(tenant, status=InvoiceStatus.PAID)
        payment = make_payment(tenant)

        with pytest.raises(InvoiceAlreadySettledError) as exc_info:
            linker.link(payment, invoice)
        assert exc_info.value.current_state == "paid"

    def test_link_is_logged(self, linker, tenant, make_invoice, make_payment, captured_logs):
        invoice = make_invoice(tenant)
        payment = make_payment(tenant)

        linker.link(payment, invoice)

        linked = [r for r in captured_logs() if r["message"] == "payment_linked_to_invoice"]
        assert linked[0]["invoice_id"] == str(invoice.id)
        assert linked[0]["payment_id"] == str(payment.id)


class TestMarkPaid:
    def test_second_mark_is_a_noop(self, linker, tenant, make_invoice):
        invoice = make_invoice(tenant)
        paid_at = datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)

        assert linker.mark_paid(invoice, paid_at, payment_reference="REF-1") is True
        assert linker.mark_paid(invoice, paid_at, payment_reference="REF-2") is False
        assert invoice.status == InvoiceStatus.PAID.value
        assert invoice.payment_reference == "REF-1"

    def test_void_invoice_is_not_payable(self, linker, tenant, make_invoice):
        invoice = make_invoice(tenant, status=InvoiceStatus.VOID)

        assert linker.mark_paid(invoice, datetime(2024, 1, 15, tzinfo=timezone.utc)) is False
        assert invoice.status == InvoiceStatus.VOID.value

    def test_settle_if_covered_without_payments(self, linker, tenant, make_invoice):
        invoice = make_invoice(tenant)

        assert linker.settle_if_covered(invoice) is False
