"""
settlement_kernel.domain.access_policy -- Role and scope authorization.

Responsibility:
    Decide whether an actor may perform an action on a resource scope.
    ``evaluate`` is a pure function of (actor, action, scope) and is
    unit-testable without a store.  ``authorize`` wraps it for the services:
    it logs denials for audit and raises ``ForbiddenError``.

Architecture position:
    Kernel > Domain.  Consumed by the payment record store, the settlement
    orchestrator and the reconciliation service before any mutation.

Invariants:
    - Roles and actions are closed enumerations; unknown role strings are
      rejected at the boundary (``Role.parse``).
    - super_admin sees every company.  Tenants see only their own records.
      Every other role is confined to its company, and a landlord also
      reaches the tenants it manages directly.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from uuid import UUID

from settlement_kernel.exceptions import ForbiddenError, ValidationError
from settlement_kernel.logging_config import get_logger

logger = get_logger("domain.access_policy")


class Role(str, Enum):
    SUPER_ADMIN = "super_admin"
    AGENCY_ADMIN = "agency_admin"
    LANDLORD = "landlord"
    AGENT = "agent"
    CARETAKER = "caretaker"
    TENANT = "tenant"

    @classmethod
    def parse(cls, value: str) -> "Role":
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise ValidationError(f"Unknown role: {value!r}", field="role") from None


class Action(str, Enum):
    LIST_PAYMENTS = "payment.list"
    VIEW_PAYMENT = "payment.view"
    CREATE_PAYMENT = "payment.create"
    UPDATE_PAYMENT = "payment.update"
    APPROVE_PAYMENT = "payment.approve"
    TRANSITION_PAYMENT = "payment.transition"
    DELETE_PAYMENT = "payment.delete"
    SETTLE_INVOICES = "invoice.settle"
    RECONCILE_PAYMENTS = "payment.reconcile"


_ALL_ROLES = frozenset(Role)
_STAFF = frozenset({
    Role.SUPER_ADMIN, Role.AGENCY_ADMIN, Role.LANDLORD, Role.AGENT, Role.CARETAKER,
})
_ELEVATED = frozenset({Role.SUPER_ADMIN, Role.AGENCY_ADMIN, Role.LANDLORD, Role.AGENT})
_OWNERS = frozenset({Role.SUPER_ADMIN, Role.AGENCY_ADMIN, Role.LANDLORD})

ACTION_ROLES: dict[Action, frozenset[Role]] = {
    Action.LIST_PAYMENTS: _ALL_ROLES,
    Action.VIEW_PAYMENT: _ALL_ROLES,
    Action.CREATE_PAYMENT: _STAFF,
    Action.UPDATE_PAYMENT: _ELEVATED,
    Action.APPROVE_PAYMENT: _ELEVATED,
    Action.TRANSITION_PAYMENT: _ELEVATED,
    Action.DELETE_PAYMENT: _OWNERS,
    Action.SETTLE_INVOICES: frozenset({Role.TENANT}),
    Action.RECONCILE_PAYMENTS: _ELEVATED,
}


@dataclass(frozen=True)
class Actor:
    """The authenticated caller, as supplied by upstream auth."""

    user_id: UUID
    role: Role
    company_id: UUID | None = None

    @property
    def is_tenant(self) -> bool:
        return self.role is Role.TENANT


@dataclass(frozen=True)
class ResourceScope:
    """Ownership facts of the resource an action targets."""

    company_id: UUID | None = None
    tenant_id: UUID | None = None
    landlord_id: UUID | None = None


@dataclass(frozen=True)
class AccessDecision:
    allowed: bool
    reason: str = ""

    @classmethod
    def allow(cls) -> "AccessDecision":
        return cls(True)

    @classmethod
    def deny(cls, reason: str) -> "AccessDecision":
        return cls(False, reason)


@dataclass(frozen=True)
class Visibility:
    """List-filter scope derived from an actor.

    ``unrestricted`` means no company filter.  Otherwise a record is visible
    when it matches ``company_id`` or belongs to a tenant managed by
    ``landlord_id``; ``tenant_id`` further narrows to a single tenant.
    """

    unrestricted: bool = False
    company_id: UUID | None = None
    tenant_id: UUID | None = None
    landlord_id: UUID | None = None


def _in_scope(actor: Actor, scope: ResourceScope) -> AccessDecision:
    if actor.role is Role.SUPER_ADMIN:
        return AccessDecision.allow()

    if actor.is_tenant:
        if scope.tenant_id is None or scope.tenant_id != actor.user_id:
            return AccessDecision.deny("resource belongs to another tenant")
        if scope.company_id is not None and scope.company_id != actor.company_id:
            return AccessDecision.deny("resource belongs to another company")
        return AccessDecision.allow()

    if actor.company_id is not None and scope.company_id == actor.company_id:
        return AccessDecision.allow()

    if (
        actor.role is Role.LANDLORD
        and scope.landlord_id is not None
        and scope.landlord_id == actor.user_id
    ):
        return AccessDecision.allow()

    return AccessDecision.deny("resource outside actor company scope")


def evaluate(
    actor: Actor,
    action: Action,
    scope: ResourceScope | None = None,
) -> AccessDecision:
    """
    Decide whether ``actor`` may perform ``action`` on ``scope``.

    With ``scope=None`` only the role gate is checked (used before the
    target is loaded, e.g. list or create).
    """
    if actor.role not in ACTION_ROLES[action]:
        return AccessDecision.deny(f"role '{actor.role.value}' may not {action.value}")
    if scope is None:
        return AccessDecision.allow()
    return _in_scope(actor, scope)


def authorize(
    actor: Actor,
    action: Action,
    scope: ResourceScope | None = None,
) -> None:
    """Raise ``ForbiddenError`` unless ``evaluate`` allows the action."""
    decision = evaluate(actor, action, scope)
    if decision.allowed:
        return
    logger.warning(
        "access_denied",
        extra={
            "action": action.value,
            "role": actor.role.value,
            "user_id": str(actor.user_id),
            "actor_company_id": str(actor.company_id) if actor.company_id else None,
            "scope_company_id": str(scope.company_id) if scope and scope.company_id else None,
            "scope_tenant_id": str(scope.tenant_id) if scope and scope.tenant_id else None,
            "reason": decision.reason,
        },
    )
    raise ForbiddenError(action.value, decision.reason)


def visibility_for(actor: Actor) -> Visibility:
    if actor.role is Role.SUPER_ADMIN:
        return Visibility(unrestricted=True)
    if actor.is_tenant:
        return Visibility(company_id=actor.company_id, tenant_id=actor.user_id)
    if actor.role is Role.LANDLORD:
        return Visibility(company_id=actor.company_id, landlord_id=actor.user_id)
    return Visibility(company_id=actor.company_id)
