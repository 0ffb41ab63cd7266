"""
Core infrastructure shared by facewatch modules.

Exposes the asynchronous event bus, payload contracts, configuration
service, and the orchestrator that drives module lifecycles.
"""

from .bus import EventBus, Subscription
from .config import CaptureSettings, ConfigError, ConfigService, ConfigSnapshot
from .contracts import (
    BaseModule,
    BasePayload,
    CameraNotification,
    CaptureError,
    CaptureReport,
    CaptureRequest,
    HealthStatus,
    ModuleConfig,
    RecognitionResult,
)
from .orchestrator import Orchestrator

__all__ = [
    "BaseModule",
    "BasePayload",
    "CameraNotification",
    "CaptureError",
    "CaptureReport",
    "CaptureRequest",
    "CaptureSettings",
    "ConfigError",
    "ConfigService",
    "ConfigSnapshot",
    "EventBus",
    "HealthStatus",
    "ModuleConfig",
    "Orchestrator",
    "RecognitionResult",
    "Subscription",
]
