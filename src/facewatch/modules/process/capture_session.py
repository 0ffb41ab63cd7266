"""
Motion-triggered face capture session.

A session opens the camera stream, feeds JPEG frames through the face
detector until ``face_count`` crops are collected, then runs a recognition
attempt on the batch. A match ends the session and is reported through the
webhook; a miss discards the batch and keeps streaming until ``max_retries``
attempts have failed. A wall-clock timeout ends the session silently, and a
stream that ends on its own ends it with an ``error`` outcome.

Frame callbacks only enqueue. A single consumer task owns the accumulator,
so frames are evaluated in arrival order and a frame arriving during an
attempt waits in the queue instead of touching the batch.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import uuid
from typing import Any, Protocol

from ...core.config import CaptureSettings
from ...core.contracts import CaptureReport, RecognitionResult
from ..event.debug_snapshots import DebugSnapshotWriter
from ..input.camera_stream import CameraStreamSource, StreamConfig, StreamHandle
from .face_accumulator import FaceAccumulator
from .face_detector import FaceDetector
from .frame_filter import FrameFilter
from .recognition_attempt import (
    RecognitionAttempt,
    RecognitionFailure,
    RecognitionSuccess,
)

logger = logging.getLogger(__name__)


class WebhookSender(Protocol):
    async def send(self, payload: dict[str, Any]) -> None: ...


class SessionState(enum.Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    EVALUATING = "evaluating"
    TERMINATED = "terminated"


class CaptureSession:
    """State machine for one stream-open to stream-stop capture."""

    def __init__(
        self,
        camera: CameraStreamSource,
        *,
        settings: CaptureSettings,
        detector: FaceDetector,
        attempt: RecognitionAttempt,
        notifier: WebhookSender,
        debug: DebugSnapshotWriter | None = None,
        session_id: str | None = None,
    ) -> None:
        self._camera = camera
        self._settings = settings
        self._detector = detector
        self._attempt = attempt
        self._notifier = notifier
        self._debug = debug
        self.session_id = session_id or uuid.uuid4().hex[:8]
        self._accumulator = FaceAccumulator(settings.face_count)
        self._filter = FrameFilter(self._accumulator)
        self._state = SessionState.IDLE
        self._stream: StreamHandle | None = None
        self._timeout_handle: asyncio.TimerHandle | None = None
        self._frames: asyncio.Queue[bytes] = asyncio.Queue(maxsize=settings.frame_queue_size)
        self._consumer: asyncio.Task[None] | None = None
        self._terminated = asyncio.Event()
        self._retry_count = 0
        self._attempts = 0
        self._frames_received = 0
        self._outcome: str | None = None
        self._result: RecognitionResult | None = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def retry_count(self) -> int:
        return self._retry_count

    @property
    def attempts(self) -> int:
        return self._attempts

    @property
    def accumulated(self) -> int:
        return len(self._accumulator)

    @property
    def outcome(self) -> str | None:
        return self._outcome

    async def start(self) -> None:
        """Open the stream and arm the timeout. Stream errors propagate."""
        if self._state is not SessionState.IDLE:
            raise RuntimeError(f"Capture session {self.session_id} was already started.")
        if self._debug is not None:
            await self._debug.begin()
        config = StreamConfig(
            fps=self._settings.fps, output_args=tuple(self._settings.output_args())
        )
        self._stream = await self._camera.stream_video(
            config, self._on_frame, self._on_stream_end
        )
        self._state = SessionState.STREAMING
        loop = asyncio.get_running_loop()
        self._timeout_handle = loop.call_later(self._settings.timeout_seconds, self._on_timeout)
        self._consumer = asyncio.create_task(
            self._consume(), name=f"facewatch-capture-{self.session_id}"
        )
        self._consumer.add_done_callback(self._on_consumer_done)
        logger.info(
            "[Capture %s] stream started (timeout %.1fs, %d faces, %d attempts)",
            self.session_id,
            self._settings.timeout_seconds,
            self._settings.face_count,
            self._settings.max_retries,
        )

    async def run(self) -> CaptureReport:
        """Start the session and wait until it terminates."""
        try:
            await self.start()
            await self._terminated.wait()
            consumer = self._consumer
            if consumer is not None:
                await asyncio.wait({consumer})
                if not consumer.cancelled() and consumer.exception() is not None:
                    raise consumer.exception()  # type: ignore[misc]
        except asyncio.CancelledError:
            self.cancel()
            raise
        return self.report()

    def cancel(self) -> None:
        """Stop the session from outside, e.g. on service shutdown."""
        if self._state in (SessionState.IDLE, SessionState.TERMINATED):
            return
        self._terminate("cancelled")

    def report(self) -> CaptureReport:
        return CaptureReport(
            session_id=self.session_id,
            outcome=self._outcome or "cancelled",
            attempts=self._attempts,
            retry_count=self._retry_count,
            frames_received=self._frames_received,
            result=self._result,
        )

    def _on_frame(self, frame: bytes) -> None:
        if self._timeout_handle is None:
            return
        self._frames_received += 1
        if self._frames_received <= self._settings.skip_initial_frames:
            logger.debug("[Capture %s] skipping warm-up frame", self.session_id)
            return
        try:
            self._frames.put_nowait(frame)
        except asyncio.QueueFull:
            logger.warning("[Capture %s] frame queue full; dropping frame", self.session_id)

    async def _consume(self) -> None:
        while self._state is not SessionState.TERMINATED:
            frame = await self._frames.get()
            if self._timeout_handle is None:
                break
            await self._handle_frame(frame)

    async def _handle_frame(self, frame: bytes) -> None:
        if not self._filter.accept(frame):
            logger.debug("[Capture %s] frame rejected before detection", self.session_id)
            return
        logger.info("[Capture %s] receive buffer length: %d", self.session_id, len(frame))
        try:
            crop = await self._detector.detect(frame)
        except Exception as exc:
            logger.error("[Face Detector] request failed: %s", exc)
            crop = None
        if self._debug is not None:
            await self._debug.write_frame(frame, face_found=crop is not None)
        if crop is None:
            return
        self._accumulator.append(crop)
        logger.info(
            "[Face Detector] face detected (%d/%d)",
            len(self._accumulator),
            self._accumulator.target,
        )
        if self._accumulator.is_full():
            await self._evaluate()

    async def _evaluate(self) -> None:
        self._state = SessionState.EVALUATING
        crops = self._accumulator.drain_all()
        self._attempts += 1
        outcome = await self._attempt.run(crops)

        if isinstance(outcome, RecognitionSuccess):
            self._result = outcome.result
            self._terminate("recognized")
            await self._notifier.send({"type": "recognition", "result": outcome.result.to_webhook()})
            return

        self._retry_count += 1
        if isinstance(outcome, RecognitionFailure):
            logger.warning(
                "[Capture %s] recognition attempt %d failed: %s",
                self.session_id,
                self._attempts,
                outcome.error,
            )
        else:
            logger.info(
                "[Capture %s] recognition attempt %d found no match",
                self.session_id,
                self._attempts,
            )
        if self._retry_count >= self._settings.max_retries:
            logger.info("[Capture %s] retry budget exhausted", self.session_id)
            self._terminate("exhausted")
            return
        self._accumulator.reset()
        self._state = SessionState.STREAMING

    def _on_stream_end(self, returncode: int | None) -> None:
        if self._timeout_handle is None:
            return
        logger.error(
            "[Capture %s] stream ended unexpectedly (exit code %s)", self.session_id, returncode
        )
        self._terminate("error")

    def _on_timeout(self) -> None:
        self._timeout_handle = None
        logger.info("[Capture %s] timed out; stopping stream", self.session_id)
        self._terminate("timeout")

    def _on_consumer_done(self, task: asyncio.Task[None]) -> None:
        if task.cancelled() or task.exception() is None:
            return
        if self._state is SessionState.TERMINATED:
            logger.warning(
                "[Capture %s] failed after termination: %s", self.session_id, task.exception()
            )
        else:
            logger.error(
                "[Capture %s] frame consumer crashed", self.session_id, exc_info=task.exception()
            )
            self._terminate("error")

    def _terminate(self, outcome: str) -> None:
        if self._state is SessionState.TERMINATED:
            return
        self._state = SessionState.TERMINATED
        self._outcome = outcome
        if self._timeout_handle is not None:
            self._timeout_handle.cancel()
            self._timeout_handle = None
        if self._stream is not None:
            logger.info("[Capture %s] stop stream (%s)", self.session_id, outcome)
            self._stream.stop()
        consumer = self._consumer
        if consumer is not None and consumer is not asyncio.current_task():
            consumer.cancel()
        self._terminated.set()


__all__ = ["CaptureSession", "SessionState", "WebhookSender"]
