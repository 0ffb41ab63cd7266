"""
Stack accepted face crops into a single JPEG for one face-search query.
"""

from __future__ import annotations

import asyncio
import io
import logging
from collections.abc import Sequence
from typing import Protocol

import imageio.v3 as iio
import numpy as np

logger = logging.getLogger(__name__)


class ImageComposer(Protocol):
    """Protocol implemented by composite builders."""

    async def compose(self, images: Sequence[bytes]) -> bytes: ...


class VerticalImageComposer:
    """
    Concatenate images top to bottom.

    The canvas is as wide as the widest input; narrower images are left
    aligned on a black background. Empty input yields ``b""`` and a single
    image is returned untouched without re-encoding.
    """

    def __init__(self, *, quality: int = 90) -> None:
        self._quality = quality

    async def compose(self, images: Sequence[bytes]) -> bytes:
        if not images:
            return b""
        if len(images) == 1:
            return images[0]
        return await asyncio.to_thread(self._stack, list(images))

    def _stack(self, images: list[bytes]) -> bytes:
        decoded = [self._decode(data) for data in images]
        width = max(image.shape[1] for image in decoded)
        height = sum(image.shape[0] for image in decoded)
        canvas = np.zeros((height, width, 3), dtype=np.uint8)
        offset = 0
        for image in decoded:
            rows, cols = image.shape[:2]
            canvas[offset : offset + rows, :cols] = image
            offset += rows
        logger.debug("Composed %d images into %dx%d canvas", len(decoded), width, height)
        with io.BytesIO() as buffer:
            iio.imwrite(buffer, canvas, extension=".jpg", quality=self._quality)
            return buffer.getvalue()

    @staticmethod
    def _decode(data: bytes) -> np.ndarray:
        with io.BytesIO(data) as buffer:
            image = iio.imread(buffer, extension=".jpg")
        if image.ndim == 2:
            image = np.repeat(image[..., np.newaxis], 3, axis=2)
        elif image.shape[2] == 4:
            image = image[..., :3]
        return image.astype(np.uint8, copy=False)


__all__ = ["ImageComposer", "VerticalImageComposer"]
