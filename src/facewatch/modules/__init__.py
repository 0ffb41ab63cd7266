"""
facewatch components grouped by responsibility.
"""

from .dashboard.control_api import ControlApi
from .event.debug_snapshots import DebugSnapshotWriter
from .event.image_composer import VerticalImageComposer
from .input.camera_stream import FfmpegCameraStream
from .input.notification_source import BusNotificationSource
from .output.webhook_notifier import WebhookNotifier
from .process.capture_session import CaptureSession
from .process.face_detector import HttpFaceDetector
from .process.face_search import RekognitionFaceSearcher
from .process.notification_router import NotificationRouter
from .process.recognition_attempt import RecognitionAttempt

__all__ = [
    "BusNotificationSource",
    "CaptureSession",
    "ControlApi",
    "DebugSnapshotWriter",
    "FfmpegCameraStream",
    "HttpFaceDetector",
    "NotificationRouter",
    "RecognitionAttempt",
    "RekognitionFaceSearcher",
    "VerticalImageComposer",
    "WebhookNotifier",
]
