"""
Shared fixtures.

Tests run against ``DATABASE_URL`` when it is set (PostgreSQL in CI) and
otherwise against a SQLite file in pytest's tmp dir.  Each test gets a
session wrapped in an outer transaction that is rolled back afterwards, so
commits made by fixtures and services never leak between tests.  Threaded
tests use ``session_factory`` instead, which really commits and wipes the
tables when done.
"""

import itertools
import json
import logging
import os
import threading
from datetime import date, datetime, timezone
from decimal import Decimal
from io import StringIO
from typing import Generator
from uuid import UUID, uuid4

import pytest
from sqlalchemy import text
from sqlalchemy.orm import Session

from settlement_kernel.db.base import Base
from settlement_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from settlement_kernel.domain.access_policy import Actor, Role
from settlement_kernel.domain.clock import DeterministicClock
from settlement_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from settlement_kernel.models.invoice import Invoice, InvoiceStatus, InvoiceType
from settlement_kernel.models.payment import Payment, PaymentMethod, PaymentStatus, PaymentType
from settlement_kernel.models.tenant import Tenant

FIXTURE_CREATOR_ID = uuid4()


def pytest_configure(config):
    config.addinivalue_line("markers", "postgres: needs a PostgreSQL DATABASE_URL")
    config.addinivalue_line("markers", "slow_locks: threads contend for row locks")


# -- logging ------------------------------------------------------------------


@pytest.fixture(autouse=True, scope="session")
def _json_logging():
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _no_leaked_context():
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Returns a callable giving every kernel record emitted so far, parsed.

        records = captured_logs()
        assert "settlement_committed" in [r["message"] for r in records]
    """
    buffer = StringIO()
    capture = logging.StreamHandler(buffer)
    capture.setFormatter(StructuredFormatter())
    kernel_logger = logging.getLogger("settlement_kernel")
    saved_level = kernel_logger.level
    kernel_logger.setLevel(logging.DEBUG)
    kernel_logger.addHandler(capture)

    yield lambda: [json.loads(line) for line in buffer.getvalue().splitlines() if line]

    kernel_logger.removeHandler(capture)
    kernel_logger.setLevel(saved_level)


# -- database -----------------------------------------------------------------


@pytest.fixture(scope="session")
def database_url(tmp_path_factory) -> str:
    return os.environ.get("DATABASE_URL") or (
        f"sqlite:///{tmp_path_factory.mktemp('db') / 'settlement_test.db'}"
    )


@pytest.fixture(scope="session")
def db_engine(database_url):
    engine = init_engine_from_url(database_url, pool_size=30, max_overflow=30, pool_timeout=30)
    yield engine
    reset_engine()


@pytest.fixture(scope="session")
def db_tables(db_engine):
    drop_tables()
    create_tables()
    yield
    drop_tables()


def _wipe(engine) -> None:
    names = [table.name for table in reversed(Base.metadata.sorted_tables)]
    with engine.begin() as conn:
        if engine.dialect.name == "postgresql":
            conn.execute(text(f"TRUNCATE {', '.join(names)} CASCADE"))
            return
        for name in names:
            conn.execute(text(f"DELETE FROM {name}"))


@pytest.fixture
def session(db_tables, db_engine) -> Generator[Session, None, None]:
    """
    Session bound to a connection whose outer transaction is rolled back at
    teardown; ``commit()`` inside the test only releases a savepoint.
    """
    with db_engine.connect() as conn:
        outer = conn.begin()
        sess = Session(bind=conn, join_transaction_mode="create_savepoint", expire_on_commit=False)
        try:
            yield sess
        finally:
            sess.close()
            outer.rollback()


@pytest.fixture
def session_factory(db_engine, db_tables):
    """
    Callable returning a fresh committing session per call (one per
    thread).  Teardown closes them all and deletes every row.
    """
    make = get_session_factory()
    opened: list[Session] = []
    guard = threading.Lock()

    def _open() -> Session:
        with guard:
            s = make()
            opened.append(s)
            return s

    yield _open

    with guard:
        for s in opened:
            s.rollback()
            s.close()
    _wipe(db_engine)


# -- clock and actors ---------------------------------------------------------


@pytest.fixture
def deterministic_clock() -> DeterministicClock:
    """Clock fixed at 2024-01-15 12:00 UTC."""
    return DeterministicClock(datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def test_actor_id() -> UUID:
    return FIXTURE_CREATOR_ID


@pytest.fixture
def company_id() -> UUID:
    return uuid4()


@pytest.fixture
def landlord_id() -> UUID:
    return uuid4()


@pytest.fixture
def make_actor(company_id):
    """Build an Actor; defaults to the fixture company."""

    def _make(role: Role, company: UUID | None = None, user_id: UUID | None = None) -> Actor:
        return Actor(
            user_id=user_id or uuid4(),
            role=role,
            company_id=company if company is not None else company_id,
        )

    return _make


@pytest.fixture
def admin(make_actor) -> Actor:
    """Agency admin of the fixture company."""
    return make_actor(Role.AGENCY_ADMIN)


def tenant_actor(tenant: Tenant) -> Actor:
    return Actor(user_id=tenant.id, role=Role.TENANT, company_id=tenant.company_id)


@pytest.fixture
def as_tenant():
    """Actor for a tenant row (a tenant's user id is its tenant id)."""
    return tenant_actor


# -- rows (committed, so orchestrator rollbacks keep them) --------------------


@pytest.fixture
def make_tenant(session, test_actor_id, company_id, landlord_id):
    names = itertools.count(1)

    def _make(
        company: UUID | None = None,
        landlord: UUID | None = None,
        first_name: str = "Amina",
        last_name: str | None = None,
    ) -> Tenant:
        n = next(names)
        tenant = Tenant(
            id=uuid4(),
            company_id=company or company_id,
            landlord_id=landlord if landlord is not None else landlord_id,
            first_name=first_name,
            last_name=last_name or f"Otieno{n}",
            email=f"tenant{n}@example.com",
            created_by_id=test_actor_id,
        )
        session.add(tenant)
        session.commit()
        return tenant

    return _make


@pytest.fixture
def tenant(make_tenant) -> Tenant:
    return make_tenant()


@pytest.fixture
def make_invoice(session, test_actor_id, landlord_id, deterministic_clock):
    numbers = itertools.count(1)

    def _make(
        tenant: Tenant,
        amount: str = "25000.00",
        status: InvoiceStatus = InvoiceStatus.SENT,
        due_date: date = date(2024, 1, 5),
        invoice_type: InvoiceType = InvoiceType.MONTHLY_RENT,
        invoice_number: str | None = None,
        issued_by: UUID | None = None,
        currency: str = "KES",
    ) -> Invoice:
        n = next(numbers)
        now = deterministic_clock.now()
        invoice = Invoice(
            company_id=tenant.company_id,
            invoice_number=invoice_number or f"INV-2401-{n:04d}",
            issued_to=tenant.id,
            issued_by=issued_by or landlord_id,
            invoice_type=invoice_type.value,
            total_amount=Decimal(amount),
            currency=currency,
            status=status.value,
            due_date=due_date,
            created_by_id=test_actor_id,
            created_at=now,
            updated_at=now,
        )
        session.add(invoice)
        session.commit()
        return invoice

    return _make


@pytest.fixture
def make_payment(session, test_actor_id, deterministic_clock):
    """Insert a payment row directly, bypassing the store's checks."""
    receipts = itertools.count(1)

    def _make(
        tenant: Tenant,
        amount: str = "25000.00",
        status: PaymentStatus = PaymentStatus.PENDING,
        invoice: Invoice | None = None,
        receipt_number: str | None = None,
        payment_method: PaymentMethod = PaymentMethod.CASH,
        reference_number: str | None = None,
        transaction_id: str | None = None,
        payment_date: datetime | None = None,
        notes: str | None = None,
    ) -> Payment:
        now = deterministic_clock.now()
        payment = Payment(
            company_id=tenant.company_id,
            tenant_id=tenant.id,
            invoice_id=invoice.id if invoice is not None else None,
            amount=Decimal(amount),
            currency="KES",
            payment_method=payment_method.value,
            payment_type=PaymentType.RENT.value,
            status=status.value,
            payment_date=payment_date or now,
            receipt_number=receipt_number or f"MAN-{next(receipts):04d}",
            reference_number=reference_number,
            transaction_id=transaction_id,
            notes=notes,
            attachments=[],
            created_by_id=test_actor_id,
            created_at=now,
            updated_at=now,
        )
        session.add(payment)
        session.commit()
        deterministic_clock.advance(1)
        return payment

    return _make
