"""Input modules: camera video streams and notification sources."""

from .camera_stream import FfmpegCameraStream, StreamConfig, StreamOpenError
from .notification_source import BusNotificationSource

__all__ = ["BusNotificationSource", "FfmpegCameraStream", "StreamConfig", "StreamOpenError"]
