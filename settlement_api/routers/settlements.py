"""
Invoice settlement API.

POST /api/tenant-portal/payments: tenant checkout.  The authenticated tenant
settles the invoices it selected.

POST /api/webhooks/payments: gateway confirmation, already normalized
upstream.  The body must be signed with the shared webhook secret
(``X-Paystack-Signature``, HMAC-SHA512 of the raw body) and name the
company the tenant belongs to.  Settles on behalf of the paying tenant.
Replays are harmless: already-paid invoices are not payable, so a retry
reports ``no_payable_invoices``.
"""

from fastapi import APIRouter, Depends, status

from settlement_kernel.domain.access_policy import Actor, Role
from settlement_kernel.logging_config import get_logger
from settlement_kernel.services.settlement_orchestrator import SettlementOrchestrator
from settlement_api.dependencies import (
    get_actor,
    get_settlement_orchestrator,
    verify_gateway_signature,
)
from settlement_api.schemas import (
    GatewayConfirmationBody,
    SettlementRequestBody,
    SettlementResponse,
)

logger = get_logger("api.settlements")

router = APIRouter(tags=["settlements"])


@router.post(
    "/api/tenant-portal/payments",
    response_model=SettlementResponse,
    status_code=status.HTTP_200_OK,
    summary="Settle selected invoices",
)
def settle_invoices(
    body: SettlementRequestBody,
    actor: Actor = Depends(get_actor),
    orchestrator: SettlementOrchestrator = Depends(get_settlement_orchestrator),
):
    result = orchestrator.settle(body.to_dto(), actor)
    return SettlementResponse.from_result(result)


@router.post(
    "/api/webhooks/payments",
    response_model=SettlementResponse,
    status_code=status.HTTP_200_OK,
    summary="Gateway payment confirmation",
    dependencies=[Depends(verify_gateway_signature)],
)
def confirm_gateway_payment(
    body: GatewayConfirmationBody,
    orchestrator: SettlementOrchestrator = Depends(get_settlement_orchestrator),
):
    actor = Actor(user_id=body.tenant_id, role=Role.TENANT, company_id=body.company_id)
    logger.info(
        "gateway_confirmation_received",
        extra={
            "tenant_id": str(body.tenant_id),
            "company_id": str(body.company_id),
            "gateway": body.gateway,
            "reference_number": body.reference_number,
            "transaction_id": body.transaction_id,
            "invoice_count": len(body.invoice_ids),
        },
    )
    result = orchestrator.settle(body.to_dto(), actor)
    return SettlementResponse.from_result(result)
