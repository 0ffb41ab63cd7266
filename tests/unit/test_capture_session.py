import asyncio
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import pytest

from facewatch.core.config import CaptureSettings
from facewatch.core.contracts import RecognitionResult
from facewatch.modules.event.debug_snapshots import DebugSnapshotWriter
from facewatch.modules.input.camera_stream import (
    FrameCallback,
    StreamConfig,
    StreamEndCallback,
    StreamOpenError,
)
from facewatch.modules.output.webhook_notifier import WebhookSendError
from facewatch.modules.process.capture_session import CaptureSession, SessionState
from facewatch.modules.process.face_search import FaceSearchError, FaceSearchRejected
from facewatch.modules.process.recognition_attempt import RecognitionAttempt

JPEG = b"\xff\xd8\xff\xe0"
ALICE = RecognitionResult(face_id="face-1", image_id="image-1", external_image_id="alice")


def face(label: str) -> bytes:
    return JPEG + b"face-" + label.encode()


class FakeStreamHandle:
    def __init__(self) -> None:
        self.stopped = 0

    def stop(self) -> None:
        self.stopped += 1


class FakeCamera:
    """Deliver a fixed list of frames right after the stream opens.

    With ``exit_code`` set the stream ends on its own after the frames.
    """

    def __init__(
        self,
        frames: Sequence[bytes] = (),
        error: Exception | None = None,
        exit_code: int | None = None,
    ) -> None:
        self.frames = list(frames)
        self.error = error
        self.exit_code = exit_code
        self.handle = FakeStreamHandle()
        self.configs: list[StreamConfig] = []
        self.on_frame: FrameCallback | None = None

    async def stream_video(
        self,
        config: StreamConfig,
        on_frame: FrameCallback,
        on_end: StreamEndCallback | None = None,
    ) -> FakeStreamHandle:
        if self.error is not None:
            raise self.error
        self.configs.append(config)
        self.on_frame = on_frame
        loop = asyncio.get_running_loop()
        for frame in self.frames:
            loop.call_soon(on_frame, frame)
        if self.exit_code is not None and on_end is not None:
            loop.call_soon(on_end, self.exit_code)
        return self.handle


class StubDetector:
    """Crop is the frame without its JPEG header; ``boom`` frames raise."""

    def __init__(self) -> None:
        self.frames: list[bytes] = []

    async def detect(self, frame: bytes) -> bytes | None:
        self.frames.append(frame)
        if b"boom" in frame:
            raise RuntimeError("detector offline")
        if b"face-" not in frame:
            return None
        return frame[len(JPEG) :]


class JoiningComposer:
    def __init__(self) -> None:
        self.calls = 0

    async def compose(self, images: Sequence[bytes]) -> bytes:
        self.calls += 1
        return b"|".join(images)


class ScriptedSearcher:
    """Pop scripted results; exception entries are raised instead of returned."""

    def __init__(
        self,
        results: Sequence[RecognitionResult | Exception | None] = (),
        error: Exception | None = None,
    ) -> None:
        self.results = list(results)
        self.error = error
        self.images: list[bytes] = []
        self.block: asyncio.Event | None = None

    async def recognize(self, image: bytes) -> RecognitionResult | None:
        self.images.append(image)
        if self.block is not None:
            await self.block.wait()
        if self.error is not None:
            raise self.error
        result = self.results.pop(0) if self.results else None
        if isinstance(result, Exception):
            raise result
        return result


class RecordingNotifier:
    def __init__(self, error: Exception | None = None) -> None:
        self.payloads: list[dict[str, Any]] = []
        self.error = error

    async def send(self, payload: dict[str, Any]) -> None:
        self.payloads.append(payload)
        if self.error is not None:
            raise self.error


def build_session(
    camera: FakeCamera,
    searcher: ScriptedSearcher,
    *,
    notifier: RecordingNotifier | None = None,
    detector: StubDetector | None = None,
    debug: DebugSnapshotWriter | None = None,
    composer: JoiningComposer | None = None,
    **capture: Any,
) -> tuple[CaptureSession, StubDetector, RecordingNotifier]:
    detector = detector or StubDetector()
    notifier = notifier or RecordingNotifier()
    settings = CaptureSettings(**{"timeout_ms": 2000, **capture})
    session = CaptureSession(
        camera,
        settings=settings,
        detector=detector,
        attempt=RecognitionAttempt(composer or JoiningComposer(), searcher),
        notifier=notifier,
        debug=debug,
    )
    return session, detector, notifier


@pytest.mark.asyncio
async def test_single_face_match_reports_webhook_and_stops() -> None:
    camera = FakeCamera([face("a")])
    searcher = ScriptedSearcher([ALICE])
    session, _, notifier = build_session(camera, searcher, face_count=1, max_retries=2)

    report = await asyncio.wait_for(session.run(), timeout=1.0)

    assert report.outcome == "recognized"
    assert report.attempts == 1
    assert report.result == ALICE
    assert notifier.payloads == [
        {
            "type": "recognition",
            "result": {"faceId": "face-1", "imageId": "image-1", "externalImageId": "alice"},
        }
    ]
    assert camera.handle.stopped == 1
    assert session.state is SessionState.TERMINATED
    assert camera.configs[0].output_args[-1] == "pipe:1"


@pytest.mark.asyncio
async def test_failed_batch_is_discarded_before_retry() -> None:
    camera = FakeCamera([face("a"), face("b"), face("c"), face("d")])
    searcher = ScriptedSearcher([None, ALICE])
    session, _, notifier = build_session(camera, searcher, face_count=2, max_retries=3)

    report = await asyncio.wait_for(session.run(), timeout=1.0)

    assert report.outcome == "recognized"
    assert report.attempts == 2
    assert report.retry_count == 1
    assert searcher.images == [b"face-a|face-b", b"face-c|face-d"]
    assert len(notifier.payloads) == 1


@pytest.mark.asyncio
async def test_retry_budget_exhausted_without_webhook() -> None:
    frames = [face(str(index)) for index in range(6)]
    camera = FakeCamera(frames)
    searcher = ScriptedSearcher()
    session, detector, notifier = build_session(camera, searcher, face_count=2, max_retries=2)

    report = await asyncio.wait_for(session.run(), timeout=1.0)

    assert report.outcome == "exhausted"
    assert report.attempts == 2
    assert report.retry_count == 2
    assert len(detector.frames) == 4
    assert notifier.payloads == []
    assert camera.handle.stopped == 1


@pytest.mark.asyncio
async def test_timeout_without_faces_stops_stream_silently() -> None:
    camera = FakeCamera()
    session, _, notifier = build_session(camera, ScriptedSearcher(), timeout_ms=50)

    report = await asyncio.wait_for(session.run(), timeout=1.0)

    assert report.outcome == "timeout"
    assert report.attempts == 0
    assert notifier.payloads == []
    assert camera.handle.stopped == 1


@pytest.mark.asyncio
async def test_timeout_during_recognition_discards_late_result() -> None:
    camera = FakeCamera([face("a")])
    searcher = ScriptedSearcher([ALICE])
    searcher.block = asyncio.Event()
    session, _, notifier = build_session(camera, searcher, face_count=1, timeout_ms=50)

    report = await asyncio.wait_for(session.run(), timeout=1.0)
    searcher.block.set()
    await asyncio.sleep(0)

    assert report.outcome == "timeout"
    assert report.result is None
    assert notifier.payloads == []
    assert camera.handle.stopped == 1


@pytest.mark.asyncio
async def test_non_jpeg_frames_never_reach_detector() -> None:
    camera = FakeCamera([b"\x89PNG-face-a", b"", face("b")])
    session, detector, _ = build_session(
        camera, ScriptedSearcher([ALICE]), face_count=1, timeout_ms=200
    )

    report = await asyncio.wait_for(session.run(), timeout=1.0)

    assert detector.frames == [face("b")]
    assert report.outcome == "recognized"
    assert report.frames_received == 3


@pytest.mark.asyncio
async def test_detector_errors_skip_the_frame() -> None:
    camera = FakeCamera([JPEG + b"boom", JPEG + b"empty", face("a"), face("b")])
    searcher = ScriptedSearcher([ALICE])
    session, detector, _ = build_session(camera, searcher, face_count=2)

    report = await asyncio.wait_for(session.run(), timeout=1.0)

    assert report.outcome == "recognized"
    assert len(detector.frames) == 4
    assert searcher.images == [b"face-a|face-b"]


@pytest.mark.asyncio
async def test_warm_up_frames_are_skipped() -> None:
    camera = FakeCamera([face("corrupt"), face("a")])
    searcher = ScriptedSearcher([ALICE])
    session, detector, _ = build_session(
        camera, searcher, face_count=1, skip_initial_frames=1
    )

    await asyncio.wait_for(session.run(), timeout=1.0)

    assert detector.frames == [face("a")]


@pytest.mark.asyncio
async def test_webhook_failure_propagates_after_stream_stop() -> None:
    camera = FakeCamera([face("a")])
    notifier = RecordingNotifier(error=WebhookSendError("unreachable"))
    session, _, _ = build_session(
        camera, ScriptedSearcher([ALICE]), notifier=notifier, face_count=1
    )

    with pytest.raises(WebhookSendError):
        await asyncio.wait_for(session.run(), timeout=1.0)

    assert session.outcome == "recognized"
    assert camera.handle.stopped == 1


@pytest.mark.asyncio
async def test_cancel_stops_running_session() -> None:
    camera = FakeCamera()
    session, _, _ = build_session(camera, ScriptedSearcher())
    task = asyncio.create_task(session.run())
    for _ in range(5):
        await asyncio.sleep(0)
    assert session.state is SessionState.STREAMING

    session.cancel()
    report = await asyncio.wait_for(task, timeout=1.0)

    assert report.outcome == "cancelled"
    assert camera.handle.stopped == 1


@pytest.mark.asyncio
async def test_stream_open_failure_propagates() -> None:
    camera = FakeCamera(error=StreamOpenError("camera offline"))
    session, _, notifier = build_session(camera, ScriptedSearcher())

    with pytest.raises(StreamOpenError):
        await session.run()

    assert session.state is SessionState.IDLE
    assert notifier.payloads == []


@pytest.mark.asyncio
async def test_debug_snapshots_record_inspected_frames(tmp_path: Path) -> None:
    camera = FakeCamera([JPEG + b"empty", face("a")])
    debug = DebugSnapshotWriter(tmp_path)
    session, _, _ = build_session(
        camera, ScriptedSearcher([ALICE]), face_count=1, debug=debug
    )

    await asyncio.wait_for(session.run(), timeout=1.0)

    assert debug.session_dir is not None
    suffixes = sorted(path.name.split("_")[-1] for path in debug.session_dir.iterdir())
    assert suffixes == ["ng.jpg", "ok.jpg"]


@pytest.mark.asyncio
async def test_single_face_fail_then_succeed_within_budget() -> None:
    camera = FakeCamera([face("a"), face("b")])
    searcher = ScriptedSearcher([None, ALICE])
    composer = JoiningComposer()
    session, detector, notifier = build_session(
        camera, searcher, composer=composer, face_count=1, max_retries=2
    )

    report = await asyncio.wait_for(session.run(), timeout=1.0)

    assert report.outcome == "recognized"
    assert len(detector.frames) == 2
    assert composer.calls == 2
    assert len(searcher.images) == 2
    assert len(notifier.payloads) == 1
    assert camera.handle.stopped == 1


@pytest.mark.asyncio
async def test_stop_happens_once_after_termination() -> None:
    camera = FakeCamera([face("a")])
    session, _, _ = build_session(camera, ScriptedSearcher([ALICE]), face_count=1)

    await asyncio.wait_for(session.run(), timeout=1.0)
    session.cancel()
    camera.on_frame(face("late"))  # type: ignore[misc]

    assert session.outcome == "recognized"
    assert camera.handle.stopped == 1


@pytest.mark.asyncio
async def test_search_error_counts_as_failed_attempt_then_recovers() -> None:
    camera = FakeCamera([face("a"), face("b")])
    searcher = ScriptedSearcher([FaceSearchError("throttled"), ALICE])
    composer = JoiningComposer()
    session, detector, notifier = build_session(
        camera, searcher, composer=composer, face_count=1, max_retries=2
    )

    report = await asyncio.wait_for(session.run(), timeout=1.0)

    assert report.outcome == "recognized"
    assert report.retry_count == 1
    assert len(detector.frames) == 2
    assert composer.calls == 2
    assert len(searcher.images) == 2
    assert len(notifier.payloads) == 1
    assert camera.handle.stopped == 1


@pytest.mark.asyncio
async def test_rejected_searches_exhaust_retry_budget() -> None:
    camera = FakeCamera([face(str(index)) for index in range(4)])
    searcher = ScriptedSearcher(error=FaceSearchRejected("similarity 41.0 below 80.0"))
    session, _, notifier = build_session(camera, searcher, face_count=1, max_retries=2)

    report = await asyncio.wait_for(session.run(), timeout=1.0)

    assert report.outcome == "exhausted"
    assert report.attempts == 2
    assert len(searcher.images) == 2
    assert notifier.payloads == []
    assert camera.handle.stopped == 1


@pytest.mark.asyncio
async def test_stream_ending_on_its_own_terminates_with_error() -> None:
    camera = FakeCamera([JPEG + b"empty"], exit_code=1)
    session, _, notifier = build_session(camera, ScriptedSearcher(), timeout_ms=5000)

    report = await asyncio.wait_for(session.run(), timeout=1.0)

    assert report.outcome == "error"
    assert report.attempts == 0
    assert notifier.payloads == []
    assert camera.handle.stopped == 1
    assert session.state is SessionState.TERMINATED


@pytest.mark.asyncio
async def test_failure_after_termination_is_logged_as_warning(
    caplog: pytest.LogCaptureFixture,
) -> None:
    camera = FakeCamera([face("a")])
    notifier = RecordingNotifier(error=WebhookSendError("unreachable"))
    session, _, _ = build_session(
        camera, ScriptedSearcher([ALICE]), notifier=notifier, face_count=1
    )

    with caplog.at_level("WARNING", logger="facewatch.modules.process.capture_session"):
        await session.start()
        consumer = session._consumer
        assert consumer is not None
        await asyncio.wait({consumer}, timeout=1.0)
        await asyncio.sleep(0)

    assert session.outcome == "recognized"
    assert camera.handle.stopped == 1
    records = [record for record in caplog.records if "failed after termination" in record.getMessage()]
    assert len(records) == 1
    assert records[0].levelname == "WARNING"
    assert "unreachable" in records[0].getMessage()
