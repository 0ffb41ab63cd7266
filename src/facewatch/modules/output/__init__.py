"""Output modules."""

from .webhook_notifier import WebhookNotifier, WebhookSendError

__all__ = ["WebhookNotifier", "WebhookSendError"]
