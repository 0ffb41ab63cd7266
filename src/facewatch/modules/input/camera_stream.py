"""
Camera video stream that hands JPEG frames to a callback.

The default source runs ffmpeg against the camera's stream URL with the
session's output arguments (fps filter, MJPEG to stdout) and splits the pipe
into individual JPEG images. Opening the stream waits until ffmpeg produces
output; an ffmpeg process that exits first is reported as `StreamOpenError`
together with the tail of its stderr. Tests inject in-memory sources
implementing the same `CameraStreamSource` protocol.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from ...core.config import CameraSettings
from ...core.contracts import CaptureError

logger = logging.getLogger(__name__)

FrameCallback = Callable[[bytes], None]
StreamEndCallback = Callable[[int | None], None]

_SOI = b"\xff\xd8"
_EOI = b"\xff\xd9"


class StreamOpenError(CaptureError):
    """Raised when the camera stream cannot be opened."""


@dataclass(frozen=True)
class StreamConfig:
    """Requested stream shape: approximate fps plus opaque transcode arguments."""

    fps: float
    output_args: tuple[str, ...] = ()


class StreamHandle(Protocol):
    """Running stream; ``stop`` ends frame delivery."""

    def stop(self) -> None: ...


class CameraStreamSource(Protocol):
    """Protocol implemented by camera video sources.

    ``on_end`` is invoked with the exit code when the stream ends without
    ``stop`` having been called.
    """

    async def stream_video(
        self,
        config: StreamConfig,
        on_frame: FrameCallback,
        on_end: StreamEndCallback | None = None,
    ) -> StreamHandle: ...


class MjpegSplitter:
    """Incrementally cut an MJPEG byte stream into complete JPEG images."""

    def __init__(self, *, max_buffer: int = 8 * 1024 * 1024) -> None:
        self._buffer = bytearray()
        self._max_buffer = max_buffer

    @property
    def buffered(self) -> int:
        return len(self._buffer)

    def feed(self, chunk: bytes) -> list[bytes]:
        self._buffer.extend(chunk)
        frames: list[bytes] = []
        while True:
            start = self._buffer.find(_SOI)
            if start < 0:
                # a trailing 0xFF may begin the next marker
                if self._buffer[-1:] == b"\xff":
                    del self._buffer[:-1]
                else:
                    self._buffer.clear()
                break
            end = self._buffer.find(_EOI, start + 2)
            if end < 0:
                del self._buffer[:start]
                if len(self._buffer) > self._max_buffer:
                    logger.warning("Discarding %d bytes of unterminated JPEG data", len(self._buffer))
                    self._buffer.clear()
                break
            frames.append(bytes(self._buffer[start : end + 2]))
            del self._buffer[: end + 2]
        return frames


class FfmpegStreamHandle:
    """Handle around a running ffmpeg process and its pipe reader tasks."""

    def __init__(
        self,
        process: asyncio.subprocess.Process,
        on_frame: FrameCallback,
        *,
        chunk_size: int,
        on_end: StreamEndCallback | None = None,
        stop_timeout: float = 2.0,
        stderr_lines: int = 20,
    ) -> None:
        self._process = process
        self._on_frame = on_frame
        self._on_end = on_end
        self._chunk_size = chunk_size
        self._stop_timeout = stop_timeout
        self._splitter = MjpegSplitter()
        self._stderr_tail: deque[str] = deque(maxlen=stderr_lines)
        self._first_chunk = asyncio.Event()
        self._started = False
        self._stopping = False
        self._reaper: asyncio.Task[None] | None = None
        self._stderr_reader = asyncio.create_task(
            self._read_stderr(), name=f"facewatch-ffmpeg-stderr-{process.pid}"
        )
        self._reader = asyncio.create_task(
            self._read_loop(), name=f"facewatch-ffmpeg-reader-{process.pid}"
        )

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def returncode(self) -> int | None:
        return self._process.returncode

    @property
    def stderr_tail(self) -> str:
        return "\n".join(self._stderr_tail)

    async def wait_started(self, timeout: float) -> None:
        """Wait for the first stdout chunk; raise if ffmpeg exits before producing one."""
        first_chunk = asyncio.create_task(self._first_chunk.wait())
        exited = asyncio.create_task(self._process.wait())
        try:
            await asyncio.wait(
                {first_chunk, exited}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            first_chunk.cancel()
            exited.cancel()

        if self._process.returncode is not None:
            self._stopping = True
            await asyncio.wait({self._reader, self._stderr_reader}, timeout=1.0)
            self._reader.cancel()
            raise StreamOpenError(
                f"ffmpeg exited with code {self._process.returncode} while opening the stream: "
                f"{self.stderr_tail or 'no error output'}"
            )
        if not self._first_chunk.is_set():
            logger.warning(
                "No output from ffmpeg (pid %s) after %.1fs; continuing to wait",
                self._process.pid,
                timeout,
            )
        self._started = True

    def stop(self) -> None:
        if self._stopping and self._reaper is not None:
            return
        self._stopping = True
        self._reader.cancel()
        if self._process.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                self._process.terminate()
        self._reaper = asyncio.create_task(
            self._reap(), name=f"facewatch-ffmpeg-reaper-{self._process.pid}"
        )

    async def wait_closed(self) -> None:
        """Wait until a stopped ffmpeg process has been reaped."""
        if self._reaper is not None:
            await self._reaper

    async def _reap(self) -> None:
        try:
            await asyncio.wait_for(self._process.wait(), timeout=self._stop_timeout)
        except asyncio.TimeoutError:
            logger.warning("ffmpeg (pid %s) ignored SIGTERM; killing it", self._process.pid)
            with contextlib.suppress(ProcessLookupError):
                self._process.kill()
            await self._process.wait()
        await asyncio.gather(self._stderr_reader, return_exceptions=True)
        logger.info(
            "ffmpeg stream stopped (pid %s, code %s)", self._process.pid, self._process.returncode
        )

    async def _read_loop(self) -> None:
        stdout = self._process.stdout
        assert stdout is not None
        while True:
            chunk = await stdout.read(self._chunk_size)
            if not chunk:
                break
            self._first_chunk.set()
            for frame in self._splitter.feed(chunk):
                self._on_frame(frame)
        returncode = await self._process.wait()
        if self._stopping or not self._started:
            return
        logger.warning(
            "ffmpeg stream ended unexpectedly (pid %s, code %s): %s",
            self._process.pid,
            returncode,
            self.stderr_tail or "no error output",
        )
        if self._on_end is not None:
            self._on_end(returncode)

    async def _read_stderr(self) -> None:
        stderr = self._process.stderr
        if stderr is None:
            return
        async for raw in stderr:
            line = raw.decode("utf-8", errors="replace").strip()
            if line:
                self._stderr_tail.append(line)
                logger.warning("[ffmpeg %s] %s", self._process.pid, line)


class FfmpegCameraStream:
    """Camera source that transcodes the configured stream URL with ffmpeg."""

    def __init__(self, settings: CameraSettings) -> None:
        self._settings = settings

    def build_command(self, config: StreamConfig) -> list[str]:
        if not self._settings.stream_url:
            raise StreamOpenError("camera.stream_url is not configured.")
        return [
            self._settings.ffmpeg_path,
            "-loglevel",
            "error",
            *self._settings.input_args,
            "-i",
            self._settings.stream_url,
            *config.output_args,
        ]

    async def stream_video(
        self,
        config: StreamConfig,
        on_frame: FrameCallback,
        on_end: StreamEndCallback | None = None,
    ) -> FfmpegStreamHandle:
        command = self.build_command(config)
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise StreamOpenError(f"Failed to launch {command[0]}: {exc}") from exc

        handle = FfmpegStreamHandle(
            process,
            on_frame,
            on_end=on_end,
            chunk_size=self._settings.read_chunk_size,
            stop_timeout=self._settings.stop_timeout,
        )
        try:
            await handle.wait_started(self._settings.startup_timeout)
        except BaseException:
            handle.stop()
            raise
        logger.info(
            "[Camera %s] streaming at %s fps (pid %s)",
            self._settings.camera_id,
            config.fps,
            process.pid,
        )
        return handle


__all__ = [
    "CameraStreamSource",
    "FfmpegCameraStream",
    "FfmpegStreamHandle",
    "FrameCallback",
    "MjpegSplitter",
    "StreamConfig",
    "StreamEndCallback",
    "StreamHandle",
    "StreamOpenError",
]
