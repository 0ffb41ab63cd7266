"""Processing modules that turn streamed frames into recognition results."""

from .capture_session import CaptureSession, SessionState
from .face_accumulator import AccumulatorFullError, FaceAccumulator
from .frame_filter import FrameFilter, is_jpeg
from .notification_router import NotificationRouter
from .recognition_attempt import RecognitionAttempt

__all__ = [
    "AccumulatorFullError",
    "CaptureSession",
    "FaceAccumulator",
    "FrameFilter",
    "NotificationRouter",
    "RecognitionAttempt",
    "SessionState",
    "is_jpeg",
]
