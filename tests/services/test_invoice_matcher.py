"""Invoice candidate lookup and amount matching."""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from settlement_kernel.exceptions import InvoiceNotFoundError
from settlement_kernel.models.invoice import InvoiceStatus
from settlement_kernel.services.invoice_matcher import InvoiceMatcher


class TestCandidates:
    def test_open_invoices_oldest_due_first(self, session, tenant, make_invoice):
        later = make_invoice(tenant, due_date=date(2024, 2, 5))
        earlier = make_invoice(tenant, due_date=date(2024, 1, 5), status=InvoiceStatus.OVERDUE)
        make_invoice(tenant, status=InvoiceStatus.PAID)
        make_invoice(tenant, status=InvoiceStatus.DRAFT)

        candidates = InvoiceMatcher(session).find_settlement_candidates(tenant.id, tenant.company_id)

        assert [i.id for i in candidates] == [earlier.id, later.id]

    def test_other_tenants_excluded(self, session, make_tenant, make_invoice):
        mine, theirs = make_tenant(), make_tenant()
        make_invoice(theirs)

        assert InvoiceMatcher(session).find_settlement_candidates(mine.id, mine.company_id) == []


class TestMatchByAmount:
    def test_first_exact_match_wins(self, session, tenant, make_invoice):
        first = make_invoice(tenant, amount="15000.00", due_date=date(2024, 1, 5))
        make_invoice(tenant, amount="15000.00", due_date=date(2024, 2, 5))
        candidates = InvoiceMatcher(session).find_settlement_candidates(tenant.id, tenant.company_id)

        assert InvoiceMatcher.match_by_amount(candidates, Decimal("15000")) is first

    def test_no_match_is_none(self, session, tenant, make_invoice):
        make_invoice(tenant, amount="15000.00")
        candidates = InvoiceMatcher(session).find_settlement_candidates(tenant.id, tenant.company_id)

        assert InvoiceMatcher.match_by_amount(candidates, Decimal("14999.99")) is None

    def test_currency_must_agree(self, session, tenant, make_invoice):
        make_invoice(tenant, amount="100.00", currency="USD")
        candidates = InvoiceMatcher(session).find_settlement_candidates(tenant.id, tenant.company_id)

        assert InvoiceMatcher.match_by_amount(candidates, Decimal("100"), currency="KES") is None
        assert InvoiceMatcher.match_by_amount(candidates, Decimal("100"), currency="USD") is not None


class TestResolvePayable:
    def test_skips_paid_void_and_unknown(self, session, tenant, make_invoice):
        sent = make_invoice(tenant)
        draft = make_invoice(tenant, status=InvoiceStatus.DRAFT, due_date=date(2024, 1, 1))
        paid = make_invoice(tenant, status=InvoiceStatus.PAID)
        void = make_invoice(tenant, status=InvoiceStatus.VOID)

        resolved = InvoiceMatcher(session).resolve_payable([sent.id, draft.id, paid.id, void.id, uuid4()])

        assert [i.id for i in resolved] == [draft.id, sent.id]

    def test_empty_selection(self, session):
        assert InvoiceMatcher(session).resolve_payable([]) == []


def test_get_missing_invoice(session):
    with pytest.raises(InvoiceNotFoundError):
        InvoiceMatcher(session).get(uuid4())
