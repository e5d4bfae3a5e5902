"""
Payment record API.

GET    /api/payments                    list (scoped, filtered, paginated)
GET    /api/payments/{id}               fetch one
POST   /api/payments                    manual entry (pending)
PUT    /api/payments/{id}               edit fields
DELETE /api/payments/{id}               pending / failed / cancelled only
POST   /api/payments/{id}/approve       pending -> approved
POST   /api/payments/{id}/transitions   complete / fail / cancel / refund
POST   /api/payments/reconcile          auto or pending reconciliation
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Query, Response, status

from settlement_kernel.domain.access_policy import Actor
from settlement_kernel.domain.dtos import PaymentFilters
from settlement_kernel.exceptions import ValidationError
from settlement_kernel.services.payment_store import PaymentStore
from settlement_kernel.services.reconciliation_service import ReconciliationService
from settlement_api.dependencies import (
    get_actor,
    get_payment_store,
    get_reconciliation_service,
)
from settlement_api.schemas import (
    ApproveRequest,
    PaymentCreateRequest,
    PaymentListQuery,
    PaymentPageResponse,
    PaymentResponse,
    PaymentUpdateRequest,
    ReconcileRequest,
    ReconciliationResponse,
    TransitionRequest,
)

router = APIRouter(prefix="/api/payments", tags=["payments"])


@router.get("", response_model=PaymentPageResponse)
def list_payments(
    query: Annotated[PaymentListQuery, Query()],
    actor: Actor = Depends(get_actor),
    store: PaymentStore = Depends(get_payment_store),
):
    filters = PaymentFilters(
        **query.model_dump(exclude={"page", "limit"}),
    )
    page = store.list(filters, actor, page=query.page, limit=query.limit)
    return PaymentPageResponse(
        items=[PaymentResponse.model_validate(p) for p in page.items],
        total=page.total,
        page=page.page,
        limit=page.limit,
        pages=page.pages,
    )


@router.post(
    "/reconcile",
    response_model=ReconciliationResponse,
    summary="Reconcile payments with invoices",
)
def reconcile_payments(
    body: ReconcileRequest,
    actor: Actor = Depends(get_actor),
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    if body.mode == "auto":
        summary = service.auto_reconcile(actor)
    else:
        if body.tenant_id is None:
            raise ValidationError("tenant_id is required for pending reconciliation", field="tenant_id")
        summary = service.reconcile_pending(
            body.tenant_id,
            actor,
            references=body.references,
            include_all=body.include_all,
        )
    return ReconciliationResponse.from_summary(summary)


@router.get("/{payment_id}", response_model=PaymentResponse)
def get_payment(
    payment_id: str,
    actor: Actor = Depends(get_actor),
    store: PaymentStore = Depends(get_payment_store),
):
    return PaymentResponse.model_validate(store.get(payment_id, actor))


@router.post("", response_model=PaymentResponse, status_code=status.HTTP_201_CREATED)
def create_payment(
    body: PaymentCreateRequest,
    actor: Actor = Depends(get_actor),
    store: PaymentStore = Depends(get_payment_store),
):
    payment = store.create(body.to_dto(), actor)
    return PaymentResponse.model_validate(payment)


@router.put("/{payment_id}", response_model=PaymentResponse)
def update_payment(
    payment_id: str,
    body: PaymentUpdateRequest,
    actor: Actor = Depends(get_actor),
    store: PaymentStore = Depends(get_payment_store),
):
    payment = store.update(payment_id, body.to_dto(), actor)
    return PaymentResponse.model_validate(payment)


@router.delete("/{payment_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_payment(
    payment_id: str,
    actor: Actor = Depends(get_actor),
    store: PaymentStore = Depends(get_payment_store),
):
    store.delete(payment_id, actor)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{payment_id}/approve", response_model=PaymentResponse)
def approve_payment(
    payment_id: str,
    body: ApproveRequest | None = None,
    actor: Actor = Depends(get_actor),
    store: PaymentStore = Depends(get_payment_store),
):
    notes = body.notes if body is not None else None
    return PaymentResponse.model_validate(store.approve(payment_id, notes, actor))


@router.post("/{payment_id}/transitions", response_model=PaymentResponse)
def transition_payment(
    payment_id: str,
    body: TransitionRequest,
    actor: Actor = Depends(get_actor),
    store: PaymentStore = Depends(get_payment_store),
):
    payment = store.transition(payment_id, body.action, actor, notes=body.notes)
    return PaymentResponse.model_validate(payment)
