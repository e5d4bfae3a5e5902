"""Services for the settlement kernel (write side)."""

from settlement_kernel.services.invoice_linker import InvoiceLinker, LinkResult
from settlement_kernel.services.invoice_matcher import InvoiceMatcher
from settlement_kernel.services.notifier import CallbackNotifier, LoggingNotifier, Notifier
from settlement_kernel.services.payment_store import PaymentStore
from settlement_kernel.services.receipt_numbers import ReceiptNumberGenerator
from settlement_kernel.services.reconciliation_service import ReconciliationService
from settlement_kernel.services.sequence_service import SequenceService
from settlement_kernel.services.settlement_orchestrator import SettlementOrchestrator

__all__ = [
    "CallbackNotifier",
    "InvoiceLinker",
    "InvoiceMatcher",
    "LinkResult",
    "LoggingNotifier",
    "Notifier",
    "PaymentStore",
    "ReceiptNumberGenerator",
    "ReconciliationService",
    "SequenceService",
    "SettlementOrchestrator",
]
