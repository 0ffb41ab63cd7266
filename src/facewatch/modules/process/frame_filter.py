"""
Cheap pre-detection checks applied to every streamed frame.
"""

from __future__ import annotations

from .face_accumulator import FaceAccumulator

JPEG_SOI = b"\xff\xd8\xff"


def is_jpeg(data: bytes) -> bool:
    """Return True when the buffer starts with the JPEG start-of-image marker."""
    return data[:3] == JPEG_SOI


class FrameFilter:
    """Reject frames that should never reach the face detector."""

    def __init__(self, accumulator: FaceAccumulator) -> None:
        self._accumulator = accumulator

    def accept(self, frame: bytes) -> bool:
        if self._accumulator.is_full():
            return False
        return is_jpeg(frame)


__all__ = ["JPEG_SOI", "FrameFilter", "is_jpeg"]
