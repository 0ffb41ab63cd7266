"""
Route camera notifications to capture sessions and immediate webhooks.

``motion`` starts a capture session and, independently, reports the
notification; ``ding`` is only reported; other categories are ignored.
Capture requests from the control API start a session without any
notification webhook.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from ...core.bus import Subscription
from ...core.contracts import (
    BaseModule,
    BasePayload,
    CameraNotification,
    CaptureRequest,
    HealthStatus,
    ModuleConfig,
)
from ..input.notification_source import BusNotificationSource, NotificationSource
from .capture_session import CaptureSession, WebhookSender

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], CaptureSession]

MOTION = "motion"
DING = "ding"


class NotificationRouter(BaseModule):
    """Dispatch notifications from the camera to the capture pipeline."""

    name = "modules.process.notification_router"

    def __init__(
        self,
        *,
        session_factory: SessionFactory,
        notifier: WebhookSender,
        source: NotificationSource | None = None,
    ) -> None:
        super().__init__()
        self._session_factory = session_factory
        self._notifier = notifier
        self._source = source
        self._camera_id: str | None = None
        self._notification_topic = "camera.notification"
        self._capture_topic = "capture.request"
        self._report_topic: str | None = "capture.report"
        self._single_session = False
        self._subscriptions: list[Subscription] = []
        self._sessions: dict[CaptureSession, asyncio.Task[None]] = {}
        self._webhook_tasks: set[asyncio.Task[None]] = set()
        self._sessions_started = 0

    async def configure(self, config: ModuleConfig) -> None:
        await super().configure(config)
        options = config.options
        self._camera_id = options.get("camera_id", self._camera_id)
        self._notification_topic = options.get("notification_topic", self._notification_topic)
        self._capture_topic = options.get("capture_topic", self._capture_topic)
        self._report_topic = options.get("report_topic", self._report_topic)
        self._single_session = bool(options.get("single_session", self._single_session))

    async def start(self) -> None:
        if self._source is None:
            self._source = BusNotificationSource(self.bus, topic=self._notification_topic)
        self._subscriptions.append(self._source.subscribe(self.route))
        if self._capture_topic:
            self._subscriptions.append(
                self.bus.subscribe(self._capture_topic, self._handle_capture_request)
            )
        logger.info(
            "NotificationRouter listening on %s (capture requests on %s)",
            self._notification_topic,
            self._capture_topic,
        )

    async def stop(self) -> None:
        for subscription in self._subscriptions:
            self.bus.unsubscribe(subscription)
        self._subscriptions.clear()
        for session, task in list(self._sessions.items()):
            session.cancel()
            task.cancel()
        await self.wait_idle()

    async def health(self) -> HealthStatus:
        return HealthStatus(
            status="healthy" if self._configured else "degraded",
            details={
                "active_sessions": len(self._sessions),
                "sessions_started": self._sessions_started,
            },
        )

    @property
    def active_sessions(self) -> int:
        return len(self._sessions)

    async def route(self, notification: CameraNotification) -> None:
        category = notification.category.strip().lower()
        logger.info("[Camera] Notification: %s", category)
        if (
            self._camera_id
            and notification.camera_id
            and notification.camera_id != self._camera_id
        ):
            logger.debug("Ignoring notification for camera %s", notification.camera_id)
            return
        if category == MOTION:
            self.request_capture()
            self._fire_webhook({"type": "notification", "event": MOTION})
        elif category == DING:
            self._fire_webhook({"type": "notification", "event": DING})
        else:
            logger.debug("No action for notification category %s", category)

    def request_capture(self) -> CaptureSession | None:
        """Start a capture session in the background."""
        if self._single_session and self._sessions:
            logger.info("Capture session already running; not starting another.")
            return None
        session = self._session_factory()
        task = asyncio.create_task(
            self._run_session(session), name=f"facewatch-session-{session.session_id}"
        )
        self._sessions[session] = task
        self._sessions_started += 1
        task.add_done_callback(lambda _task, _session=session: self._sessions.pop(_session, None))
        return session

    async def wait_idle(self) -> None:
        """Wait for every running session and pending webhook to finish."""
        while self._sessions or self._webhook_tasks:
            pending = [*self._sessions.values(), *self._webhook_tasks]
            await asyncio.gather(*pending, return_exceptions=True)

    async def _handle_capture_request(self, topic: str, payload: BasePayload) -> None:
        if not isinstance(payload, CaptureRequest):
            logger.debug("Ignoring non capture request payload on %s", topic)
            return
        logger.info("Capture requested by %s", payload.source)
        self.request_capture()

    async def _run_session(self, session: CaptureSession) -> None:
        try:
            report = await session.run()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("[Capture %s] session failed", session.session_id)
            return
        logger.info(
            "[Capture %s] finished: %s after %d attempts",
            session.session_id,
            report.outcome,
            report.attempts,
        )
        if self._report_topic and self._bus is not None:
            await self.bus.publish(self._report_topic, report)

    def _fire_webhook(self, payload: dict[str, Any]) -> None:
        task = asyncio.create_task(self._send_webhook(payload))
        self._webhook_tasks.add(task)
        task.add_done_callback(self._webhook_tasks.discard)

    async def _send_webhook(self, payload: dict[str, Any]) -> None:
        try:
            await self._notifier.send(payload)
        except Exception as exc:
            logger.error("Webhook %s/%s failed: %s", payload.get("type"), payload.get("event"), exc)


__all__ = ["DING", "MOTION", "NotificationRouter", "SessionFactory"]
