"""
Durable outbox events and notification sinks.

The dispatcher and handlers live in ``events.dispatcher`` and
``events.handlers``; they depend on the services that emit events and are
not imported here.
"""

from .notifications import (
    LoggingNotificationSink,
    NotificationSink,
    WebhookNotificationSink,
    get_notification_sink,
)
from .outbox import OutboxService, emit_event
from .types import EventTypes

__all__ = [
    "EventTypes",
    "LoggingNotificationSink",
    "NotificationSink",
    "OutboxService",
    "WebhookNotificationSink",
    "emit_event",
    "get_notification_sink",
]
