"""JSON log records, LogContext and configure_logging."""

import json
import logging
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from settlement_kernel.exceptions import InvalidPaymentTransitionError
from settlement_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _fresh_logging():
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()
    configure_logging(level=logging.DEBUG)


class JsonSink:
    """Handler target that parses what the formatter wrote."""

    def __init__(self):
        self.buffer = StringIO()
        self.handler = logging.StreamHandler(self.buffer)
        self.handler.setFormatter(StructuredFormatter())

    @property
    def records(self) -> list[dict]:
        return [json.loads(line) for line in self.buffer.getvalue().splitlines() if line]

    @property
    def first(self) -> dict:
        return self.records[0]


@pytest.fixture
def sink() -> JsonSink:
    s = JsonSink()
    configure_logging(handler=s.handler)
    return s


class TestRecordShape:
    def test_core_fields(self, sink):
        get_logger("test").info("receipt_issued")

        entry = sink.first
        assert entry["message"] == "receipt_issued"
        assert entry["level"] == "INFO"
        assert entry["logger"] == "settlement_kernel.test"
        assert entry["ts"].endswith("+00:00")

    def test_extra_values_serialized(self, sink):
        payment_id = uuid4()
        get_logger("test").info(
            "payment_created",
            extra={"payment_id": payment_id, "amount": Decimal("25000.00"), "count": 2},
        )

        entry = sink.first
        assert entry["payment_id"] == str(payment_id)
        assert entry["amount"] == "25000.00"
        assert entry["count"] == 2

    def test_bound_context_stamped(self, sink):
        actor = uuid4()
        with LogContext.bind(actor_id=actor, transaction_id="T123"):
            get_logger("test").info("settlement_started")
        get_logger("test").info("after")

        inside, outside = sink.records
        assert inside["actor_id"] == str(actor)
        assert inside["transaction_id"] == "T123"
        assert "actor_id" not in outside

    def test_kernel_error_details(self, sink):
        try:
            raise InvalidPaymentTransitionError("p-1", "approved", "approve")
        except InvalidPaymentTransitionError:
            get_logger("test").error("transition_failed", exc_info=True)

        entry = sink.first
        assert entry["exc_type"] == "InvalidPaymentTransitionError"
        assert entry["exc_code"] == "INVALID_PAYMENT_TRANSITION"
        assert entry["exc_payment_id"] == "p-1"
        assert entry["exc_current_state"] == "approved"
        assert "Traceback" in entry["traceback"]

    def test_info_level_drops_debug(self, sink):
        log = get_logger("test")
        log.debug("hidden")
        log.warning("shown", extra={"k": "v"})

        assert [r["message"] for r in sink.records] == ["shown"]


class TestLogContext:
    def test_set_ignores_none(self):
        LogContext.set(correlation_id="req-1", company_id="c", actor_id=None)
        assert LogContext.get_all() == {"correlation_id": "req-1", "company_id": "c"}

    def test_unknown_field(self):
        with pytest.raises(TypeError):
            LogContext.set(tenant="x")

    def test_clear(self):
        LogContext.set(actor_id="a")
        LogContext.clear()
        assert not LogContext.get_all()

    def test_nested_bind_restores(self):
        LogContext.set(correlation_id="outer")
        with LogContext.bind(correlation_id="inner", actor_id="a"):
            assert LogContext.get_all() == {"correlation_id": "inner", "actor_id": "a"}
        assert LogContext.get_all() == {"correlation_id": "outer"}


class TestConfigure:
    def test_second_call_is_ignored(self):
        first, second = JsonSink(), JsonSink()
        configure_logging(handler=first.handler)
        configure_logging(handler=second.handler)
        assert logging.getLogger("settlement_kernel").handlers == [first.handler]

    def test_level_by_name(self):
        configure_logging(level="warning", handler=JsonSink().handler)
        assert logging.getLogger("settlement_kernel").level == logging.WARNING

    def test_namespace(self):
        assert get_logger("services.settlement").name == "settlement_kernel.services.settlement"
