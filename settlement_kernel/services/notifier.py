"""
Notifier -- hand-off point to the external notification collaborator.

Responsibility:
    The settlement orchestrator delivers one ``NotificationIntent`` per
    settled invoice after commit.  Delivery is fire-and-forget from the
    kernel's point of view: the orchestrator logs and swallows failures.

Architecture position:
    Kernel > Services.  Implementations are injected at construction time.
"""

from typing import Callable, Protocol, runtime_checkable

from settlement_kernel.domain.dtos import NotificationIntent
from settlement_kernel.logging_config import get_logger

logger = get_logger("services.notifier")


@runtime_checkable
class Notifier(Protocol):
    """Deliver a message to a recipient."""

    def deliver(self, intent: NotificationIntent) -> None:
        ...


class LoggingNotifier:
    """Default notifier: records the intent in the structured log."""

    def deliver(self, intent: NotificationIntent) -> None:
        logger.info(
            "notification_dispatched",
            extra={
                "recipient_id": str(intent.recipient_id),
                "notification_type": intent.type,
                "title": intent.title,
                "action_url": intent.action_url,
                "notification_metadata": intent.metadata,
            },
        )


class CallbackNotifier:
    """Adapts a plain callable (queue publisher, HTTP client, test spy)."""

    def __init__(self, callback: Callable[[NotificationIntent], None]):
        self._callback = callback

    def deliver(self, intent: NotificationIntent) -> None:
        self._callback(intent)
