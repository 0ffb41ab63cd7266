"""
FastAPI-powered health check and trigger endpoints.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable

import uvicorn
from fastapi import FastAPI, Response
from pydantic import BaseModel, Field

from ...core.contracts import (
    BaseModule,
    CameraNotification,
    CaptureRequest,
    HealthStatus,
    ModuleConfig,
)

logger = logging.getLogger(__name__)

HealthProvider = Callable[[], Awaitable[dict[str, HealthStatus]]]


class NotificationRequest(BaseModel):
    """Camera push notification forwarded over HTTP."""

    category: str = Field(description="Notification category such as motion or ding.")
    camera_id: str | None = Field(default=None)


class ControlApi(BaseModule):
    """Expose HTTP endpoints that publish notifications and capture requests to the bus."""

    name = "modules.dashboard.control_api"

    def __init__(
        self,
        *,
        config_factory: Callable[..., uvicorn.Config] | None = None,
        server_factory: Callable[[uvicorn.Config], uvicorn.Server] | None = None,
        clock: Callable[[], float] | None = None,
        health_provider: HealthProvider | None = None,
    ) -> None:
        super().__init__()
        self._host = "0.0.0.0"
        self._port = 3000
        self._serve_api = True
        self._use_external_motion_trigger = False
        self._notification_topic = "camera.notification"
        self._capture_topic = "capture.request"
        self._app: FastAPI | None = None
        self._server: uvicorn.Server | None = None
        self._server_task: asyncio.Task[None] | None = None
        self._config_factory = config_factory or uvicorn.Config
        self._server_factory = server_factory or uvicorn.Server
        self._clock = clock or time.monotonic
        self._started_at = self._clock()
        self._health_provider = health_provider

    async def configure(self, config: ModuleConfig) -> None:
        await super().configure(config)
        options = config.options
        self._host = options.get("host", self._host)
        self._port = int(options.get("port", self._port))
        self._serve_api = bool(options.get("serve_api", self._serve_api))
        self._use_external_motion_trigger = bool(
            options.get("use_external_motion_trigger", self._use_external_motion_trigger)
        )
        self._notification_topic = options.get("notification_topic", self._notification_topic)
        self._capture_topic = options.get("capture_topic", self._capture_topic)

    async def start(self) -> None:
        self._started_at = self._clock()
        self._app = self._build_app()
        if not self._serve_api:
            logger.info("ControlApi running in embedded-only mode (no HTTP server).")
            return
        config = self._config_factory(
            app=self._app,
            host=self._host,
            port=self._port,
            loop="asyncio",
            lifespan="on",
            log_level="info",
        )
        self._server = self._server_factory(config)
        self._server_task = asyncio.create_task(self._server.serve())
        logger.info("[HTTP] listen on %s:%s", self._host, self._port)

    async def stop(self) -> None:
        if self._server_task:
            self._server.should_exit = True  # type: ignore[union-attr]
            await asyncio.wait([self._server_task], timeout=1)
            self._server_task = None
        self._server = None

    @property
    def app(self) -> FastAPI:
        if self._app is None:
            raise RuntimeError("ControlApi has not been started yet.")
        return self._app

    def _build_app(self) -> FastAPI:
        app = FastAPI(title="facewatch", version="0.1.0")

        @app.get("/health")
        async def health() -> dict[str, object]:
            body: dict[str, object] = {
                "status": "ok",
                "uptime": round(self._clock() - self._started_at, 3),
                "timestamp": int(time.time() * 1000),
            }
            if self._health_provider is not None:
                reports = await self._health_provider()
                body["modules"] = {name: report.status for name, report in reports.items()}
            return body

        @app.post("/motion", status_code=202)
        async def motion(response: Response) -> dict[str, str]:
            if not self._use_external_motion_trigger:
                response.status_code = 403
                return {
                    "message": "use_external_motion_trigger is not enabled.",
                    "status": "failed",
                }
            await self.bus.publish(self._capture_topic, CaptureRequest(source="control_api"))
            return {"status": "accepted"}

        @app.post("/notifications", status_code=202)
        async def notifications(request: NotificationRequest) -> dict[str, str]:
            await self.bus.publish(
                self._notification_topic,
                CameraNotification(category=request.category, camera_id=request.camera_id),
            )
            return {"status": "accepted"}

        return app


__all__ = ["ControlApi", "HealthProvider", "NotificationRequest"]
