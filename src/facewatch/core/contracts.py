"""
Contracts and payload schemas shared by facewatch modules.

Payloads travel over the event bus between the notification bridge, the
capture pipeline, and the control API. Module lifecycle hooks live here too
so the orchestrator can drive every component the same way.
"""

from __future__ import annotations

import abc
import datetime as dt
from typing import TYPE_CHECKING, Any, Literal, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field


class BasePayload(BaseModel):
    """Base class for all bus payloads."""

    model_config = ConfigDict(extra="allow", frozen=True)

    schema_version: str = Field(
        default="1.0.0", description="Semantic version of the payload schema."
    )


class CameraNotification(BasePayload):
    """Push notification delivered by the camera (motion, ding, ...)."""

    category: str = Field(description="Notification category such as motion or ding.")
    camera_id: str | None = Field(default=None)
    received_utc: dt.datetime = Field(
        default_factory=lambda: dt.datetime.now(tz=dt.UTC),
        description="Time the notification reached facewatch.",
    )


class CaptureRequest(BasePayload):
    """Request to start a capture session without a notification webhook."""

    source: str = Field(default="unknown")


class CaptureError(RuntimeError):
    """Base class for failures inside a capture session."""


class RecognitionResult(BaseModel):
    """Positive face-search match, serialized with camelCase keys for webhooks."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    face_id: str | None = Field(default=None, alias="faceId")
    image_id: str | None = Field(default=None, alias="imageId")
    external_image_id: str | None = Field(default=None, alias="externalImageId")

    def to_webhook(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class CaptureReport(BasePayload):
    """Summary published when a capture session terminates."""

    session_id: str
    outcome: Literal["recognized", "exhausted", "timeout", "cancelled", "error"]
    attempts: int = Field(default=0, ge=0)
    retry_count: int = Field(default=0, ge=0)
    frames_received: int = Field(default=0, ge=0)
    result: RecognitionResult | None = Field(default=None)


class HealthStatus(BaseModel):
    """Structured health report for modules."""

    model_config = ConfigDict(extra="allow", frozen=True)

    status: str = Field(description="Health classification such as healthy/degraded/error.")
    details: dict[str, Any] = Field(default_factory=dict)


class ModuleConfig(BaseModel):
    """Baseline configuration contract applied to all modules."""

    model_config = ConfigDict(extra="allow")

    enabled: bool = Field(default=True)
    options: dict[str, Any] = Field(
        default_factory=dict, description="Arbitrary module configuration."
    )


@runtime_checkable
class EventHandler(Protocol):
    """Callable type for bus subscribers."""

    async def __call__(self, topic: str, payload: BasePayload) -> None: ...


if TYPE_CHECKING:
    from .bus import EventBus


class BaseModule(abc.ABC):
    """
    Abstract base class for long-running facewatch components.

    Modules receive an event bus instance and are responsible for
    subscribing to topics during `start`.
    """

    name: str

    def __init__(self) -> None:
        self._configured = False
        self._config = ModuleConfig()
        self._bus: EventBus | None = None

    @property
    def bus(self) -> EventBus:
        if self._bus is None:
            raise RuntimeError(f"{self.__class__.__name__} has not been attached to an EventBus.")
        return self._bus

    def set_bus(self, bus: EventBus) -> None:
        """Attach the shared event bus instance to the module."""
        self._bus = bus

    async def configure(self, config: ModuleConfig) -> None:
        """Apply the provided configuration prior to module start."""
        self._config = config
        self._configured = True

    @abc.abstractmethod
    async def start(self) -> None:
        """Begin processing by registering bus subscriptions or scheduling tasks."""

    async def stop(self) -> None:
        """Release resources; the default implementation has nothing to release."""
        return None

    async def health(self) -> HealthStatus:
        """Return a basic health status; modules can override for richer diagnostics."""
        status = "healthy" if self._configured else "degraded"
        return HealthStatus(status=status, details={"configured": self._configured})
