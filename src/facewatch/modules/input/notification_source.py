"""
Camera notification source backed by the event bus.

Whatever bridges the camera's push notifications into facewatch (the control
API, a home-automation relay, a vendor SDK adapter) publishes
`CameraNotification` payloads on a topic; this source exposes them through a
single ``subscribe(handler)`` call.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Protocol

from ...core.bus import EventBus, Subscription
from ...core.contracts import BasePayload, CameraNotification

logger = logging.getLogger(__name__)

NotificationHandler = Callable[[CameraNotification], Awaitable[None]]


class NotificationSource(Protocol):
    """Protocol for notification producers."""

    def subscribe(self, handler: NotificationHandler) -> Subscription: ...


class BusNotificationSource:
    """Deliver `CameraNotification` payloads published on ``topic``."""

    def __init__(self, bus: EventBus, *, topic: str = "camera.notification") -> None:
        self._bus = bus
        self._topic = topic

    @property
    def topic(self) -> str:
        return self._topic

    def subscribe(self, handler: NotificationHandler) -> Subscription:
        async def _dispatch(topic: str, payload: BasePayload) -> None:
            if not isinstance(payload, CameraNotification):
                logger.debug("Ignoring non-notification payload on %s", topic)
                return
            await handler(payload)

        return self._bus.subscribe(self._topic, _dispatch)


__all__ = ["BusNotificationSource", "NotificationHandler", "NotificationSource"]
