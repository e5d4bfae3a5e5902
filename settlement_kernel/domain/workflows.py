"""
Payment workflow (``settlement_kernel.domain.workflows``).

Responsibility
--------------
Pure value objects for the payment state machine plus the declared
``PAYMENT_WORKFLOW``.  The payment record store looks up every status change
here; an action with no declared transition from the current state is a
conflict.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports from
``db/``, ``models/`` or ``services/``.

Invariants enforced
-------------------
* Transitions reference only states in ``Workflow.states``.
* ``initial_state`` is a member of ``states``.
* Terminal states have no outgoing transitions other than ``refund`` from
  ``completed``.
"""

from __future__ import annotations

from dataclasses import dataclass

from settlement_kernel.logging_config import get_logger

logger = get_logger("domain.workflows")


@dataclass(frozen=True)
class Guard:
    """A condition that must hold before a transition fires. Descriptive only."""
    name: str
    description: str


@dataclass(frozen=True)
class Transition:
    """A valid state transition."""
    from_state: str
    to_state: str
    action: str
    guard: Guard | None = None
    settles_invoice: bool = False


@dataclass(frozen=True)
class Workflow:
    """A state machine definition for a record lifecycle."""
    name: str
    description: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[Transition, ...]
    terminal_states: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.initial_state not in self.states:
            raise ValueError(
                f"Workflow {self.name}: initial state {self.initial_state!r} not in states"
            )
        for t in self.transitions:
            if t.from_state not in self.states or t.to_state not in self.states:
                raise ValueError(
                    f"Workflow {self.name}: transition {t.action} references unknown state"
                )

    def find_transition(self, current_state: str, action: str) -> Transition | None:
        """Return the transition for ``action`` out of ``current_state``, if declared."""
        for t in self.transitions:
            if t.from_state == current_state and t.action == action:
                return t
        return None

    def actions_from(self, current_state: str) -> tuple[str, ...]:
        return tuple(t.action for t in self.transitions if t.from_state == current_state)


# -----------------------------------------------------------------------------
# Guards
# -----------------------------------------------------------------------------

INVOICE_NOT_SETTLED = Guard(
    name="invoice_not_settled",
    description="Linked invoice, if any, is not already paid",
)


# -----------------------------------------------------------------------------
# Payment Workflow
# -----------------------------------------------------------------------------

PAYMENT_WORKFLOW = Workflow(
    name="payment",
    description="Tenant payment lifecycle",
    initial_state="pending",
    states=(
        "pending",
        "approved",
        "completed",
        "failed",
        "cancelled",
        "refunded",
    ),
    transitions=(
        Transition("pending", "approved", action="approve", guard=INVOICE_NOT_SETTLED, settles_invoice=True),
        Transition("approved", "completed", action="complete", settles_invoice=True),
        Transition("pending", "failed", action="fail"),
        Transition("approved", "failed", action="fail"),
        Transition("pending", "cancelled", action="cancel"),
        Transition("approved", "cancelled", action="cancel"),
        Transition("approved", "refunded", action="refund"),
        Transition("completed", "refunded", action="refund"),
    ),
    terminal_states=("completed", "failed", "cancelled", "refunded"),
)

# Statuses that count towards covering an invoice total.
SETTLED_PAYMENT_STATES: frozenset[str] = frozenset({"approved", "completed"})

# Statuses from which a payment may still be deleted.
DELETABLE_PAYMENT_STATES: frozenset[str] = frozenset({"pending", "failed", "cancelled"})

logger.debug(
    "payment_workflow_registered",
    extra={
        "workflow_name": PAYMENT_WORKFLOW.name,
        "state_count": len(PAYMENT_WORKFLOW.states),
        "transition_count": len(PAYMENT_WORKFLOW.transitions),
        "initial_state": PAYMENT_WORKFLOW.initial_state,
    },
)
