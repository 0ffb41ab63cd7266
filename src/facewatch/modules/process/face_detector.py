"""
Client for the external face-detector HTTP API.

The detector receives a full video frame and answers with a JPEG crop of the
detected face. Any non-2xx answer means "no usable face in this frame".
"""

from __future__ import annotations

import logging
from typing import Protocol

import httpx

from ...core.config import DetectorSettings

logger = logging.getLogger(__name__)


class FaceDetector(Protocol):
    """Protocol implemented by per-frame face detectors."""

    async def detect(self, frame: bytes) -> bytes | None: ...


class HttpFaceDetector:
    """Face detector backed by a ``POST {api_url}/detect`` multipart endpoint."""

    def __init__(
        self,
        settings: DetectorSettings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not settings.api_url:
            raise ValueError("HttpFaceDetector requires detector.api_url to be configured.")
        self._settings = settings
        self._endpoint = f"{settings.api_url}/detect"
        self._transport = transport

    def _form_fields(self) -> dict[str, str]:
        settings = self._settings
        fields = {"minSize": str(settings.min_size)}
        optional = {
            "startX": settings.start_x,
            "startY": settings.start_y,
            "endX": settings.end_x,
            "endY": settings.end_y,
            "confidence": settings.confidence,
        }
        for key, value in optional.items():
            if value is not None:
                fields[key] = str(value)
        return fields

    async def detect(self, frame: bytes) -> bytes | None:
        files = {"file": ("image.jpg", frame, "image/jpeg")}
        async with httpx.AsyncClient(
            timeout=self._settings.timeout, transport=self._transport
        ) as client:
            response = await client.post(self._endpoint, data=self._form_fields(), files=files)
        if response.is_error:
            logger.debug(
                "[Face Detector] no face (%s): %s", response.status_code, _error_message(response)
            )
            return None
        return response.content


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text
    if isinstance(body, dict) and "error" in body:
        return str(body["error"])
    return response.text


__all__ = ["FaceDetector", "HttpFaceDetector"]
