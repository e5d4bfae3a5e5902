"""Domain DTO validation."""

from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from settlement_kernel.domain.clock import DeterministicClock
from settlement_kernel.domain.dtos import (
    PaymentCreate,
    PaymentPage,
    PaymentUpdate,
    ReconciliationSummary,
    SettlementReceipt,
    SettlementRequest,
    SettlementResult,
    SettlementStatus,
    payment_period_label,
    to_decimal,
)
from settlement_kernel.exceptions import InvalidAmountError, InvalidInvoiceSelectionError


class TestAmounts:
    def test_float_goes_through_str(self):
        assert to_decimal(0.1) == Decimal("0.1")

    @pytest.mark.parametrize("amount", ["0", "-5", "abc", "NaN", None])
    def test_non_positive_or_malformed_rejected(self, amount):
        with pytest.raises(InvalidAmountError):
            PaymentCreate(tenant_id=uuid4(), amount=amount)

    def test_string_amount_coerced(self):
        data = PaymentCreate(tenant_id=uuid4(), amount="25000.50")
        assert data.amount == Decimal("25000.50")

    def test_update_amount_checked_only_when_given(self):
        assert PaymentUpdate().amount is None
        with pytest.raises(InvalidAmountError):
            PaymentUpdate(amount="-1")


class TestPaymentUpdate:
    def test_provided_skips_none(self):
        update = PaymentUpdate(notes="late", payment_method="cheque")
        assert update.provided() == {"notes": "late", "payment_method": "cheque"}

    def test_has_no_status_field(self):
        with pytest.raises(TypeError):
            PaymentUpdate(status="approved")


class TestSettlementRequest:
    def test_empty_selection_rejected(self):
        with pytest.raises(InvalidInvoiceSelectionError) as exc_info:
            SettlementRequest(invoice_ids=())
        assert exc_info.value.field == "invoice_ids"

    def test_ids_normalized_to_strings(self):
        uid = uuid4()
        request = SettlementRequest(invoice_ids=[uid])
        assert request.invoice_ids == (str(uid),)

    def test_payment_reference_prefers_reference_number(self):
        assert SettlementRequest(("x",), transaction_id="TX", reference_number="REF").payment_reference == "REF"
        assert SettlementRequest(("x",), transaction_id="TX").payment_reference == "TX"
        assert SettlementRequest(("x",)).payment_reference is None


class TestResults:
    def test_settlement_totals(self):
        receipts = tuple(
            SettlementReceipt(
                payment_id=uuid4(),
                invoice_id=uuid4(),
                invoice_number=f"INV-{i}",
                receipt_number=f"RCT-2401-000{i}",
                amount=Decimal(amount),
                currency="KES",
            )
            for i, amount in enumerate(["25000.00", "1500.50"], start=1)
        )
        result = SettlementResult(status=SettlementStatus.SETTLED, receipts=receipts)
        assert result.invoices_paid == 2
        assert result.total_amount == Decimal("26500.50")

    def test_no_payable_reports_zero(self):
        result = SettlementResult(status=SettlementStatus.NO_PAYABLE_INVOICES)
        assert result.invoices_paid == 0
        assert result.total_amount == Decimal("0")

    def test_page_count(self):
        assert PaymentPage(items=(), total=21, page=1, limit=10).pages == 3
        assert PaymentPage(items=(), total=0, page=1, limit=10).pages == 0

    def test_reconciliation_changed(self):
        summary = ReconciliationSummary(
            examined=4, linked=(uuid4(),), approved=(uuid4(), uuid4()), skipped=(uuid4(),)
        )
        assert summary.changed == 3


class TestPeriodLabel:
    def test_label_from_date_and_datetime(self):
        assert payment_period_label(date(2024, 1, 31)) == "January 2024"
        assert payment_period_label(datetime(2023, 12, 1, tzinfo=timezone.utc)) == "December 2023"


class TestDeterministicClock:
    def test_fixed_until_advanced(self):
        clock = DeterministicClock()
        first = clock.now()
        assert clock.now() == first
        assert (clock.tick() - first).total_seconds() == 1
        clock.advance(59)
        assert (clock.now() - first).total_seconds() == 60

    def test_set_time_resets_offset(self):
        clock = DeterministicClock()
        clock.advance(10)
        target = datetime(2025, 6, 1, tzinfo=timezone.utc)
        clock.set_time(target)
        assert clock.now() == target
