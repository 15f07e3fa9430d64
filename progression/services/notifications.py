"""
Unlock notification delivery

The engine only emits UnlockNotifications; how they reach the user (push,
in-app, email) belongs to the collaborator behind the notifier. Delivery is
at-least-once: a notification stays queued in the store until send()
returns without raising.
"""

import logging
from abc import ABC, abstractmethod
from typing import List, Optional

import httpx

from progression.config import NOTIFICATION_TIMEOUT_SECONDS, NOTIFICATION_WEBHOOK_URL
from progression.exceptions import NotificationError
from progression.models import UnlockNotification
from progression.resilience.retry import retry_with_backoff

logger = logging.getLogger(__name__)


class Notifier(ABC):
    """Outbound unlock notification channel"""

    @abstractmethod
    async def send(self, notification: UnlockNotification) -> None:
        """
        Deliver one notification

        Raises:
            NotificationError: delivery failed; it will be retried later
        """


class LoggingNotifier(Notifier):
    """Writes notifications to the log (default when no webhook is configured)"""

    async def send(self, notification: UnlockNotification) -> None:
        subject = notification.achievement_id or f"{notification.milestone}-day streak"
        logger.info(
            f"[NOTIFY] user={notification.user_id} {subject}: "
            f"{notification.reward.title} ({notification.reward.type.value} {notification.reward.value})"
        )


class InMemoryNotifier(Notifier):
    """Collects notifications in a list"""

    def __init__(self):
        self.sent: List[UnlockNotification] = []

    async def send(self, notification: UnlockNotification) -> None:
        self.sent.append(notification)


class WebhookNotifier(Notifier):
    """POSTs notifications as JSON to NOTIFICATION_WEBHOOK_URL"""

    def __init__(
        self,
        url: str = NOTIFICATION_WEBHOOK_URL,
        timeout: float = NOTIFICATION_TIMEOUT_SECONDS,
        client: Optional[httpx.AsyncClient] = None
    ):
        self.url = url
        self.timeout = timeout
        self._client = client

    async def _post(self, notification: UnlockNotification) -> None:
        body = notification.model_dump(mode="json")
        if self._client is not None:
            response = await self._client.post(self.url, json=body)
            response.raise_for_status()
            return

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(self.url, json=body)
            response.raise_for_status()

    async def send(self, notification: UnlockNotification) -> None:
        try:
            await retry_with_backoff(self._post, notification, timeout=None)
            logger.info(f"Delivered notification {notification.ledger_key} for user {notification.user_id}")
        except httpx.HTTPError as e:
            raise NotificationError(
                message=f"Notification delivery failed: {e}",
                user_id=notification.user_id,
                operation="send_notification",
                context={"ledger_key": notification.ledger_key, "url": self.url},
                cause=e
            )


def create_notifier(webhook_url: str = NOTIFICATION_WEBHOOK_URL) -> Notifier:
    if webhook_url:
        logger.info(f"Using webhook notifier: {webhook_url}")
        return WebhookNotifier(url=webhook_url)
    logger.info("No NOTIFICATION_WEBHOOK_URL configured - notifications will be logged")
    return LoggingNotifier()
