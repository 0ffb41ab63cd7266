"""
Optional debug dumps of the images a capture session looks at.

Every inspected frame is saved as ``<ts>_ok.jpg`` or ``<ts>_ng.jpg`` depending
on whether the detector found a face, and every composite as
``<ts>_comp.jpg``, inside one directory per session.
"""

from __future__ import annotations

import asyncio
import datetime as dt
import logging
from collections.abc import Callable
from pathlib import Path

logger = logging.getLogger(__name__)


class DebugSnapshotWriter:
    """Write session images below ``root/<session timestamp>/`` when enabled."""

    def __init__(
        self,
        root: Path,
        *,
        enabled: bool = True,
        clock: Callable[[], dt.datetime] | None = None,
    ) -> None:
        self._root = Path(root)
        self._enabled = enabled
        self._clock = clock or dt.datetime.now
        self._session_dir: Path | None = None

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def session_dir(self) -> Path | None:
        return self._session_dir

    async def begin(self) -> None:
        if not self._enabled:
            return
        session_dir = self._root / self._clock().strftime("%Y-%m-%d-%H-%M-%S")
        try:
            await asyncio.to_thread(session_dir.mkdir, parents=True, exist_ok=True)
        except OSError as exc:
            logger.error("Cannot create debug snapshot directory %s: %s", session_dir, exc)
            self._enabled = False
            return
        self._session_dir = session_dir

    async def write_frame(self, frame: bytes, *, face_found: bool) -> None:
        await self._write(frame, "ok" if face_found else "ng")

    async def write_composite(self, image: bytes) -> None:
        await self._write(image, "comp")

    async def _write(self, data: bytes, suffix: str) -> None:
        if not self._enabled or self._session_dir is None:
            return
        timestamp = self._clock().strftime("%Y-%m-%d-%H-%M-%S-%f")[:-3]
        path = self._session_dir / f"{timestamp}_{suffix}.jpg"
        try:
            await asyncio.to_thread(path.write_bytes, data)
        except OSError as exc:
            logger.warning("Failed to write debug snapshot %s: %s", path, exc)


__all__ = ["DebugSnapshotWriter"]
