"""Notification sub-package — best-effort engine event delivery."""

from mindflow.notifications.handlers import (
    CallbackHandler,
    EventHandler,
    EventPublisher,
    PublishResult,
    create_publisher,
)

__all__ = ["CallbackHandler", "EventHandler", "EventPublisher", "PublishResult", "create_publisher"]
