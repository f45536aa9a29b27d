"""
Notification dispatch for triggered aurora alerts.

The worker does not render or deliver notifications. It hands a structured
``NotificationContext`` to a ``NotificationDispatcher``; the production
implementation publishes a ``NotificationEvent`` onto an SQS queue consumed by
the email service.

A dispatcher signals failure by raising ``DispatchError``. The evaluation
cycle then leaves the alert's notification state untouched so the same
condition can fire again on the next cycle.
"""

from __future__ import annotations

import logging
import uuid
from abc import ABC, abstractmethod
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError

from worker.aurora.models import NotificationContext, NotificationEvent

logger = logging.getLogger(__name__)


class DispatchError(Exception):
    """Raised when a notification could not be handed off for delivery."""

    pass


class NotificationDispatcher(ABC):
    """Abstract notification hand-off."""

    @abstractmethod
    def dispatch(
        self, alert_id: int, recipient: str, context: NotificationContext
    ) -> None:
        """Send a notification for ``alert_id`` to ``recipient``.

        Raises
        ------
        DispatchError
            If the notification was not accepted.
        """
        ...


def _build_event(
    alert_id: int, recipient: str, context: NotificationContext
) -> NotificationEvent:
    return NotificationEvent(
        id=f"notif_{uuid.uuid4()}",
        alert_id=alert_id,
        recipient=recipient,
        context=context,
    )


def _is_fifo_queue(queue_url: str) -> bool:
    """Check if a queue URL indicates a FIFO queue."""
    return queue_url.endswith(".fifo")


class SqsNotificationDispatcher(NotificationDispatcher):
    """Publishes notifications to an SQS queue.

    Parameters
    ----------
    sqs_client : boto3 SQS client
        Pre-configured boto3 SQS client.
    queue_url : str
        URL of the notification queue. FIFO queues get the alert id as
        ``MessageGroupId`` so notifications for one alert stay ordered.
    """

    def __init__(self, sqs_client: Any, queue_url: str) -> None:
        self._sqs_client = sqs_client
        self._queue_url = queue_url
        self._is_fifo = _is_fifo_queue(queue_url)

    def dispatch(
        self, alert_id: int, recipient: str, context: NotificationContext
    ) -> None:
        event = _build_event(alert_id, recipient, context)

        send_kwargs: dict = {
            "QueueUrl": self._queue_url,
            "MessageBody": event.model_dump_json(),
        }
        if self._is_fifo:
            send_kwargs["MessageGroupId"] = str(alert_id)
            send_kwargs["MessageDeduplicationId"] = event.id

        try:
            self._sqs_client.send_message(**send_kwargs)
        except (BotoCoreError, ClientError) as exc:
            logger.error(
                "Failed to publish notification %s for alert=%d: %s",
                event.id,
                alert_id,
                str(exc),
            )
            raise DispatchError(
                f"Failed to publish notification for alert {alert_id}: {exc}"
            ) from exc

        logger.info(
            "Published notification %s to SQS for alert=%d (value=%d, "
            "threshold=%d, location=%s)",
            event.id,
            alert_id,
            context.value,
            context.threshold,
            context.location_label,
        )


class LoggingNotificationDispatcher(NotificationDispatcher):
    """Logs notifications instead of sending them.

    Used in local development when no notification queue is configured.
    """

    def dispatch(
        self, alert_id: int, recipient: str, context: NotificationContext
    ) -> None:
        event = _build_event(alert_id, recipient, context)
        logger.info("Notification (not sent): %s", event.model_dump_json())
