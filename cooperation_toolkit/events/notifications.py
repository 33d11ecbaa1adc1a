"""
Notification sinks.

Notifications are fire-and-forget: a sink that cannot deliver logs the
failure and returns False.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import httpx
import structlog

from ..config import get_settings
from ..primitives import isoformat_utc, utc_now

logger = structlog.get_logger()


class NotificationSink(ABC):
    """Abstract destination for user notifications."""

    @abstractmethod
    async def notify(
        self,
        user_id: str,
        team_id: Optional[str],
        event_type: str,
        title: str,
        message: str,
        action_url: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """Deliver one notification. Returns True if delivered."""

    async def close(self) -> None:
        return None


class LoggingNotificationSink(NotificationSink):
    """Writes notifications to the log. The default sink."""

    async def notify(
        self,
        user_id: str,
        team_id: Optional[str],
        event_type: str,
        title: str,
        message: str,
        action_url: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> bool:
        logger.info(
            "notification",
            user_id=user_id,
            team_id=team_id,
            event_type=event_type,
            title=title,
            message=message,
            action_url=action_url,
        )
        return True


class WebhookNotificationSink(NotificationSink):
    """Posts each notification as JSON to a webhook."""

    def __init__(
        self,
        url: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url
        self.client = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def close(self) -> None:
        await self.client.aclose()

    async def notify(
        self,
        user_id: str,
        team_id: Optional[str],
        event_type: str,
        title: str,
        message: str,
        action_url: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> bool:
        body = {
            "user_id": user_id,
            "team_id": team_id,
            "event_type": event_type,
            "title": title,
            "message": message,
            "action_url": action_url,
            "metadata": metadata or {},
            "sent_at": isoformat_utc(utc_now()),
        }
        try:
            response = await self.client.post(self.url, json=body)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(
                "notification_delivery_failed",
                user_id=user_id,
                event_type=event_type,
                error=str(e),
            )
            return False
        return True


def get_notification_sink() -> NotificationSink:
    settings = get_settings()
    if settings.notification_webhook_url:
        return WebhookNotificationSink(
            settings.notification_webhook_url,
            timeout=settings.notification_timeout_seconds,
        )
    return LoggingNotificationSink()
