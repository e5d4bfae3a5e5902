"""
Pure domain layer.

Value objects, the payment workflow, the access policy and gateway metadata.
NO dependencies on the ORM or the database; time comes from an injected Clock.
"""

from settlement_kernel.domain.access_policy import (
    AccessDecision,
    Action,
    Actor,
    ResourceScope,
    Role,
    Visibility,
    authorize,
    evaluate,
    visibility_for,
)
from settlement_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from settlement_kernel.domain.dtos import (
    NotificationIntent,
    PaymentCreate,
    PaymentFilters,
    PaymentPage,
    PaymentUpdate,
    ReconciliationSummary,
    SettlementReceipt,
    SettlementRequest,
    SettlementResult,
    SettlementStatus,
)
from settlement_kernel.domain.gateway import (
    GatewayMetadata,
    ManualMetadata,
    MpesaMetadata,
    PaystackMetadata,
    load_gateway_metadata,
    parse_gateway_metadata,
)
from settlement_kernel.domain.workflows import PAYMENT_WORKFLOW, Transition, Workflow

__all__ = [
    # Clock
    "Clock",
    "SystemClock",
    "DeterministicClock",
    # Access policy
    "Role",
    "Action",
    "Actor",
    "ResourceScope",
    "AccessDecision",
    "Visibility",
    "evaluate",
    "authorize",
    "visibility_for",
    # DTOs
    "PaymentCreate",
    "PaymentUpdate",
    "PaymentFilters",
    "PaymentPage",
    "SettlementRequest",
    "SettlementStatus",
    "SettlementReceipt",
    "SettlementResult",
    "ReconciliationSummary",
    "NotificationIntent",
    # Gateway
    "GatewayMetadata",
    "PaystackMetadata",
    "MpesaMetadata",
    "ManualMetadata",
    "parse_gateway_metadata",
    "load_gateway_metadata",
    # Workflow
    "PAYMENT_WORKFLOW",
    "Workflow",
    "Transition",
]
