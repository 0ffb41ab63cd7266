"""
CLI entrypoint that boots the facewatch service.

It loads the Dynaconf configuration, wires the camera stream, face detector,
Rekognition searcher, and webhook notifier into the notification router,
starts the control API, and runs until SIGINT/SIGTERM.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import logging.handlers
import signal
from collections.abc import Sequence
from pathlib import Path

from .core.config import ConfigError, ConfigService, ConfigSnapshot
from .core.orchestrator import Orchestrator
from .modules.dashboard.control_api import ControlApi
from .modules.event.debug_snapshots import DebugSnapshotWriter
from .modules.event.image_composer import VerticalImageComposer
from .modules.input.camera_stream import CameraStreamSource, FfmpegCameraStream
from .modules.output.webhook_notifier import WebhookNotifier
from .modules.process.capture_session import CaptureSession
from .modules.process.face_detector import FaceDetector, HttpFaceDetector
from .modules.process.face_search import FaceSearcher, RekognitionFaceSearcher
from .modules.process.notification_router import NotificationRouter, SessionFactory
from .modules.process.recognition_attempt import RecognitionAttempt

LOGGER = logging.getLogger(__name__)
LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
LOG_FILENAME = "facewatch.log"


def _ensure_rotating_file_handler(
    log_file: Path,
    *,
    max_mb: int = 10,
    backup_count: int = 3,
) -> None:
    """Attach a rotating file handler pointed at ``log_file`` if missing."""

    try:
        log_file.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        LOGGER.warning("Unable to create log directory %s: %s", log_file.parent, exc)
        return

    root_logger = logging.getLogger()
    for handler in root_logger.handlers:
        if isinstance(handler, logging.handlers.RotatingFileHandler):
            existing = getattr(handler, "baseFilename", None)
            if existing and Path(existing) == log_file.resolve():
                return

    handler = logging.handlers.RotatingFileHandler(
        log_file,
        maxBytes=max_mb * 1024 * 1024,
        backupCount=backup_count,
        encoding="utf-8",
    )
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root_logger.addHandler(handler)


def configure_logging(level: str) -> None:
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(level=numeric_level, format=LOG_FORMAT)
    logging.getLogger().setLevel(numeric_level)


def _require(value: object, key: str) -> None:
    if not value:
        raise ConfigError(f"Missing required setting '{key}'.")


def build_session_factory(
    snapshot: ConfigSnapshot,
    *,
    camera: CameraStreamSource,
    detector: FaceDetector,
    searcher: FaceSearcher,
    notifier: WebhookNotifier,
) -> SessionFactory:
    """Return a factory producing a fresh capture session per motion event."""

    composer = VerticalImageComposer()

    def factory() -> CaptureSession:
        debug: DebugSnapshotWriter | None = None
        if snapshot.debug.snapshots:
            debug = DebugSnapshotWriter(snapshot.debug.directory)
        attempt = RecognitionAttempt(
            composer,
            searcher,
            on_composite=debug.write_composite if debug is not None else None,
        )
        return CaptureSession(
            camera,
            settings=snapshot.capture,
            detector=detector,
            attempt=attempt,
            notifier=notifier,
            debug=debug,
        )

    return factory


def build_router(snapshot: ConfigSnapshot) -> NotificationRouter:
    """Instantiate the production collaborators from validated settings."""

    _require(snapshot.camera.stream_url, "camera.stream_url")
    _require(snapshot.detector.api_url, "detector.api_url")
    _require(snapshot.recognizer.collection_id, "recognizer.collection_id")
    _require(snapshot.webhook.url, "webhook.url")

    notifier = WebhookNotifier(snapshot.webhook)
    factory = build_session_factory(
        snapshot,
        camera=FfmpegCameraStream(snapshot.camera),
        detector=HttpFaceDetector(snapshot.detector),
        searcher=RekognitionFaceSearcher(snapshot.recognizer),
        notifier=notifier,
    )
    return NotificationRouter(session_factory=factory, notifier=notifier)


async def run_service(config_service: ConfigService) -> None:
    """Start the router and control API, then wait for a shutdown signal."""

    snapshot = config_service.snapshot
    orchestrator = Orchestrator()
    router = build_router(snapshot)
    await orchestrator.add_module(
        router, config_service.module_config_for(NotificationRouter.name)
    )
    control_config = config_service.module_config_for(ControlApi.name)
    if control_config.enabled:
        await orchestrator.add_module(
            ControlApi(health_provider=orchestrator.health), control_config
        )
    else:
        LOGGER.info("Control API disabled; health endpoint will not be served.")

    stop_event = asyncio.Event()
    _install_signal_handlers(stop_event)

    await orchestrator.start()
    LOGGER.info("facewatch running for camera %s. Press Ctrl+C to stop.", snapshot.camera.camera_id)
    try:
        await stop_event.wait()
    finally:
        await orchestrator.stop()


def _install_signal_handlers(stop_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()

    def _request_shutdown(sig_name: str) -> None:
        if not stop_event.is_set():
            LOGGER.info("Received %s, shutting down.", sig_name)
            stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _request_shutdown, sig.name)
        except NotImplementedError:  # Windows Proactor loop
            signal.signal(  # type: ignore[arg-type]
                sig,
                lambda signum, _frame, sig_name=sig.name: loop.call_soon_threadsafe(
                    _request_shutdown, sig_name or str(signum)
                ),
            )


def parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Bridge camera motion notifications to face recognition webhooks."
    )
    parser.add_argument(
        "--config-dir",
        type=Path,
        default=None,
        help="Directory that contains config.yaml/secrets.yaml (default: repo config/).",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Python logging level (default: logging.level from config, else INFO).",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    configure_logging(args.log_level or "INFO")
    try:
        config_service = ConfigService(config_dir=args.config_dir)
        log_settings = config_service.snapshot.logging
        if args.log_level is None:
            configure_logging(log_settings.level)
        if log_settings.directory is not None:
            _ensure_rotating_file_handler(
                log_settings.directory / LOG_FILENAME,
                max_mb=log_settings.max_mb,
                backup_count=log_settings.backup_count,
            )
        asyncio.run(run_service(config_service))
    except KeyboardInterrupt:
        LOGGER.info("Interrupted by user.")
        return 0
    except ConfigError as exc:
        LOGGER.error("Configuration failed: %s", exc)
        return 2
    except Exception:  # pragma: no cover - surfaced to operator
        LOGGER.exception("facewatch crashed.")
        return 1
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())


__all__ = ["build_router", "build_session_factory", "main", "run_service"]
