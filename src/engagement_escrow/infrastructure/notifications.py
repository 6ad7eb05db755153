"""Notification dispatch.

Delivery (email, SMS, push) is owned by another system. The default notifier
only records the event in the structured log, which that system tails.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from engagement_escrow.logging_config import get_logger

if TYPE_CHECKING:
    from engagement_escrow.domain.enums import NotificationKind
    from engagement_escrow.domain.processor_protocol import Notifier

logger = get_logger(__name__)


class LoggingNotifier:
    """Notifier that writes one log line per notification."""

    async def notify(self, kind: NotificationKind, **payload: object) -> None:
        logger.info(
            "notification.dispatched",
            kind=kind.value,
            **{key: str(value) for key, value in payload.items()},
        )


async def dispatch(notifier: Notifier, kind: NotificationKind, **payload: object) -> None:
    """Send a notification and swallow delivery failures.

    Notifications follow a committed decision; a failure here is logged and
    must never undo the transition that triggered it.
    """
    try:
        await notifier.notify(kind, **payload)
    except Exception as exc:
        logger.warning("notification.failed", kind=kind.value, error=str(exc))
