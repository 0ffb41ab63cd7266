"""
Face search against an AWS Rekognition collection.

A composite image is submitted to ``SearchFacesByImage`` and the best match
(``MaxFaces=1``) is translated into a `RecognitionResult`. "No face" and "not
enrolled" answers return ``None``; transport errors and matches below the
configured similarity raise.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any, Protocol

from boto3.session import Session
from botocore.exceptions import BotoCoreError, ClientError

from ...core.config import RecognizerSettings
from ...core.contracts import RecognitionResult

logger = logging.getLogger(__name__)


class FaceSearchError(RuntimeError):
    """Raised when the face search call fails."""


class FaceSearchRejected(FaceSearchError):
    """Raised when the best match falls below the configured similarity."""


class FaceSearcher(Protocol):
    """Protocol implemented by face-search backends."""

    async def recognize(self, image: bytes) -> RecognitionResult | None: ...


class RekognitionFaceSearcher:
    """Face searcher implemented with boto3's Rekognition client."""

    def __init__(
        self,
        settings: RecognizerSettings,
        *,
        client_factory: Callable[[], Any] | None = None,
    ) -> None:
        if not settings.collection_id:
            raise ValueError("RekognitionFaceSearcher requires recognizer.collection_id.")
        self._settings = settings
        self._client_factory = client_factory or self._default_client_factory
        self._client: Any | None = None

    def _default_client_factory(self) -> Any:
        session = Session(
            aws_access_key_id=self._settings.aws_access_key_id,
            aws_secret_access_key=self._settings.aws_secret_access_key,
            aws_session_token=self._settings.aws_session_token,
            region_name=self._settings.region_name,
        )
        return session.client("rekognition")

    def _build_request(self, image: bytes) -> dict[str, Any]:
        request: dict[str, Any] = {
            "CollectionId": self._settings.collection_id,
            "Image": {"Bytes": image},
            "MaxFaces": 1,
        }
        if self._settings.face_match_threshold is not None:
            request["FaceMatchThreshold"] = self._settings.face_match_threshold
        return request

    async def recognize(self, image: bytes) -> RecognitionResult | None:
        if not image:
            raise FaceSearchError("Cannot search an empty image.")
        if self._client is None:
            self._client = self._client_factory()
        logger.info("[Rekognition] searching collection %s", self._settings.collection_id)
        try:
            response = await asyncio.to_thread(
                self._client.search_faces_by_image, **self._build_request(image)
            )
        except (BotoCoreError, ClientError) as exc:
            raise FaceSearchError(str(exc)) from exc

        if not response.get("SearchedFaceConfidence"):
            logger.info("[Rekognition] no face found in composite")
            return None
        matches = response.get("FaceMatches") or []
        match = matches[0] if matches else {}
        face = match.get("Face") or {}
        if not face.get("FaceId"):
            logger.info("[Rekognition] face is not enrolled")
            return None

        similarity = match.get("Similarity")
        logger.info(
            "[Rekognition] Similarity: %s / Confidence: %s", similarity, face.get("Confidence")
        )
        minimum = self._settings.min_similarity
        if minimum is not None and (similarity is None or similarity < minimum):
            raise FaceSearchRejected(f"Similarity {similarity} is below the minimum {minimum}.")
        return RecognitionResult(
            face_id=face.get("FaceId"),
            image_id=face.get("ImageId"),
            external_image_id=face.get("ExternalImageId"),
        )


__all__ = [
    "FaceSearchError",
    "FaceSearchRejected",
    "FaceSearcher",
    "RekognitionFaceSearcher",
]
