"""
One compose-and-recognize cycle over a full batch of face crops.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass

from ...core.contracts import RecognitionResult
from ..event.image_composer import ImageComposer
from .face_search import FaceSearcher

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RecognitionSuccess:
    result: RecognitionResult

    retryable = False


@dataclass(frozen=True)
class RecognitionNoMatch:
    reason: str = "no matching face"

    retryable = True


@dataclass(frozen=True)
class RecognitionFailure:
    error: Exception

    retryable = True


RecognitionOutcome = RecognitionSuccess | RecognitionNoMatch | RecognitionFailure


class RecognitionAttempt:
    """
    Compose crops into one image and submit it to the face searcher.

    The attempt only reports what happened; retry and termination decisions
    belong to the capture session.
    """

    def __init__(
        self,
        composer: ImageComposer,
        searcher: FaceSearcher,
        *,
        on_composite: Callable[[bytes], Awaitable[None]] | None = None,
    ) -> None:
        self._composer = composer
        self._searcher = searcher
        self._on_composite = on_composite

    async def run(self, crops: Sequence[bytes]) -> RecognitionOutcome:
        logger.info("Composing %d face crops", len(crops))
        try:
            composite = await self._composer.compose(crops)
            if self._on_composite is not None:
                await self._on_composite(composite)
            result = await self._searcher.recognize(composite)
        except Exception as exc:
            logger.warning("[Recognition] Failed: %s", exc)
            return RecognitionFailure(exc)
        if result is None:
            logger.info("[Recognition] no match")
            return RecognitionNoMatch()
        logger.info("[Recognition] recognized: %s", result.to_webhook())
        return RecognitionSuccess(result)


__all__ = [
    "RecognitionAttempt",
    "RecognitionFailure",
    "RecognitionNoMatch",
    "RecognitionOutcome",
    "RecognitionSuccess",
]
