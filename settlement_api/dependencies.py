"""
FastAPI dependencies: settings, sessions, the calling actor and services.

The application object carries its collaborators on ``app.state``
(settings, clock, notifier), so tests swap them without monkeypatching.
"""

import hashlib
import hmac
from typing import Generator, Optional
from uuid import UUID

from fastapi import BackgroundTasks, Depends, Header, HTTPException, Request, status
from sqlalchemy.orm import Session

from settlement_kernel.config import Settings
from settlement_kernel.db.engine import get_session_factory
from settlement_kernel.domain.access_policy import Actor, Role
from settlement_kernel.domain.clock import Clock
from settlement_kernel.exceptions import ValidationError
from settlement_kernel.logging_config import get_logger
from settlement_kernel.services.notifier import Notifier
from settlement_kernel.services.payment_store import PaymentStore
from settlement_kernel.services.reconciliation_service import ReconciliationService
from settlement_kernel.services.settlement_orchestrator import SettlementOrchestrator

logger = get_logger("api.dependencies")

SIGNATURE_HEADER = "X-Paystack-Signature"


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_clock(request: Request) -> Clock:
    return request.app.state.clock


def get_notifier(request: Request) -> Notifier:
    return request.app.state.notifier


def get_session() -> Generator[Session, None, None]:
    """
    Request-scoped session.  Commits when the route returns, rolls back when
    it raises.

    Usage:
        @router.get("/items")
        def list_items(session: Session = Depends(get_session)):
            ...
    """
    session = get_session_factory()()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def _parse_uuid(value: str, header: str) -> UUID:
    try:
        return UUID(value)
    except ValueError:
        raise ValidationError(f"{header} must be a UUID", field=header) from None


def get_actor(
    x_user_id: Optional[str] = Header(default=None),
    x_user_role: Optional[str] = Header(default=None),
    x_company_id: Optional[str] = Header(default=None),
) -> Actor:
    """The caller as asserted by upstream auth."""
    if not x_user_id or not x_user_role:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id or X-User-Role",
        )
    return Actor(
        user_id=_parse_uuid(x_user_id, "X-User-Id"),
        role=Role.parse(x_user_role),
        company_id=_parse_uuid(x_company_id, "X-Company-Id") if x_company_id else None,
    )


def get_payment_store(
    session: Session = Depends(get_session),
    settings: Settings = Depends(get_settings),
    clock: Clock = Depends(get_clock),
) -> PaymentStore:
    return PaymentStore(session, clock=clock, settings=settings)


def get_reconciliation_service(
    session: Session = Depends(get_session),
    settings: Settings = Depends(get_settings),
    clock: Clock = Depends(get_clock),
) -> ReconciliationService:
    return ReconciliationService(session, clock=clock, settings=settings)


def get_settlement_orchestrator(
    background_tasks: BackgroundTasks,
    session: Session = Depends(get_session),
    settings: Settings = Depends(get_settings),
    clock: Clock = Depends(get_clock),
    notifier: Notifier = Depends(get_notifier),
) -> SettlementOrchestrator:
    """Notifications run after the response is sent."""
    return SettlementOrchestrator(
        session,
        notifier=notifier,
        clock=clock,
        settings=settings,
        dispatch=background_tasks.add_task,
    )


async def verify_gateway_signature(
    request: Request,
    settings: Settings = Depends(get_settings),
    x_paystack_signature: Optional[str] = Header(default=None),
) -> None:
    """
    Refuse a webhook call unless it is signed with the shared secret.

    The signature is the hex HMAC-SHA512 of the raw request body keyed
    with ``Settings.webhook_secret``.  Without a configured secret the
    webhook accepts nothing.
    """
    if not settings.webhook_secret:
        logger.error("webhook_secret_not_configured", extra={"path": request.url.path})
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Webhook is not configured",
        )
    body = await request.body()
    expected = hmac.new(settings.webhook_secret.encode("utf-8"), body, hashlib.sha512).hexdigest()
    if not x_paystack_signature or not hmac.compare_digest(
        expected.encode("ascii"), x_paystack_signature.strip().lower().encode("utf-8")
    ):
        logger.warning(
            "webhook_signature_rejected",
            extra={"path": request.url.path, "signed": bool(x_paystack_signature)},
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Missing or invalid {SIGNATURE_HEADER}",
        )
