"""
Bounded buffer of face crops collected during a capture session.
"""

from __future__ import annotations

import logging

from ...core.contracts import CaptureError

logger = logging.getLogger(__name__)


class AccumulatorFullError(CaptureError):
    """Raised when a crop is appended to an accumulator that already holds N crops."""


class FaceAccumulator:
    """
    FIFO buffer holding at most ``target`` detection crops.

    After a failed recognition the owner resets the buffer entirely: later
    frames are trusted over earlier ones, so no crop survives a retry.
    """

    def __init__(self, target: int) -> None:
        if target < 1:
            raise ValueError("target must be at least 1")
        self._target = target
        self._crops: list[bytes] = []

    @property
    def target(self) -> int:
        return self._target

    def __len__(self) -> int:
        return len(self._crops)

    def append(self, crop: bytes) -> None:
        if self.is_full():
            raise AccumulatorFullError(
                f"Accumulator already holds {self._target} crops; drain it first."
            )
        self._crops.append(crop)
        logger.debug("Accumulated %d/%d face crops", len(self._crops), self._target)

    def is_full(self) -> bool:
        return len(self._crops) >= self._target

    def drain_all(self) -> list[bytes]:
        crops, self._crops = self._crops, []
        return crops

    def reset(self) -> None:
        self._crops.clear()


__all__ = ["AccumulatorFullError", "FaceAccumulator"]
