"""
Notification dispatch for workplan.

The engine only decides who is told what; delivery belongs to a
NotificationSink. Sinks are awaited synchronously before an operation
returns. Failures are logged and recorded on the Notifier, never retried.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Protocol, Union
from uuid import UUID, uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from workplan.database import NotificationORM
from workplan.logging_config import get_logger

logger = get_logger(__name__)

ENTITY_TASK = "ProjectTask"
ENTITY_LEAF_ITEM = "LeafItem"


class NotificationSink(Protocol):
    """Delivery boundary for notifications."""

    async def notify(
        self,
        recipient_id: str,
        subject: str,
        body: str,
        related_entity_type: str,
        related_entity_id: str,
    ) -> None:
        ...


class LoggingNotificationSink:
    """Sink that only writes notifications to the application log."""

    async def notify(
        self,
        recipient_id: str,
        subject: str,
        body: str,
        related_entity_type: str,
        related_entity_id: str,
    ) -> None:
        logger.info(
            f"Notification: recipient={recipient_id}, subject='{subject}', "
            f"entity={related_entity_type}:{related_entity_id}, body='{body}'"
        )


class DatabaseNotificationSink:
    """
    Sink that stores in-app notifications in the notifications table.

    Each row is written inside a SAVEPOINT on the operation's session, so a
    failed insert is rolled back alone and the operation still commits.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def notify(
        self,
        recipient_id: str,
        subject: str,
        body: str,
        related_entity_type: str,
        related_entity_id: str,
    ) -> None:
        async with self.session.begin_nested():
            self.session.add(
                NotificationORM(
                    id=str(uuid4()),
                    recipient_id=recipient_id,
                    subject=subject,
                    body=body,
                    related_entity_type=related_entity_type,
                    related_entity_id=str(related_entity_id),
                    is_read=False,
                    created_at=datetime.utcnow(),
                )
            )
            await self.session.flush()


@dataclass
class FailedNotification:
    """A notification the sink could not deliver."""
    recipient_id: str
    subject: str
    related_entity_type: str
    related_entity_id: str
    error: str


class Notifier:
    """
    Sends notifications through a sink and keeps track of failures.

    Callers can inspect ``failures`` after an operation to see which
    deliveries did not go through.
    """

    def __init__(self, sink: Optional[NotificationSink] = None) -> None:
        self.sink = sink or LoggingNotificationSink()
        self.failures: List[FailedNotification] = []

    async def notify(
        self,
        recipient_id: Optional[str],
        subject: str,
        body: str,
        related_entity_type: str,
        related_entity_id: Union[UUID, str],
    ) -> bool:
        """
        Deliver one notification.

        Returns:
            True if delivered, False if skipped (blank recipient) or failed
        """
        if not recipient_id or not recipient_id.strip():
            return False

        try:
            await self.sink.notify(
                recipient_id,
                subject,
                body,
                related_entity_type,
                str(related_entity_id),
            )
            logger.debug(f"Notified {recipient_id}: {subject}")
            return True
        except Exception as e:
            logger.error(
                f"Failed to deliver notification '{subject}' to {recipient_id}: {e}",
                exc_info=True
            )
            self.failures.append(
                FailedNotification(
                    recipient_id=recipient_id,
                    subject=subject,
                    related_entity_type=related_entity_type,
                    related_entity_id=str(related_entity_id),
                    error=str(e),
                )
            )
            return False

    async def notify_reassignment(
        self,
        new_member_id: Optional[str],
        previous_member_id: Optional[str],
        title: str,
        task_id: Union[UUID, str],
        noun: str = "task",
        context: str = "",
    ) -> None:
        """Tell the new assignee they were assigned and the previous one they were unassigned."""
        if new_member_id == previous_member_id:
            return
        await self.notify(
            new_member_id,
            f"Assigned to {noun.capitalize()}",
            f"You have been assigned to {noun}: '{title}'{context}.",
            ENTITY_TASK,
            task_id,
        )
        await self.notify(
            previous_member_id,
            f"Unassigned from {noun.capitalize()}",
            f"You have been unassigned from {noun}: '{title}'{context}.",
            ENTITY_TASK,
            task_id,
        )


def notifier_for(sink_name: str, session: Optional[AsyncSession] = None) -> Notifier:
    """
    Build a Notifier for the sink named in configuration.

    Args:
        sink_name: 'database' or 'log'
        session: Session the database sink writes through

    Returns:
        Notifier using the database sink when a session is available,
        the logging sink otherwise
    """
    if sink_name == "database" and session is not None:
        return Notifier(DatabaseNotificationSink(session))
    return Notifier(LoggingNotificationSink())
