"""
Dynaconf-powered configuration loader with Pydantic validation.

The configuration service loads the layered YAML files in ``config/``
(``config.yaml`` plus an optional ``secrets.yaml``), applies ``FACEWATCH_``
environment overrides, validates the result, and hands typed settings to the
capture pipeline and module-friendly `ModuleConfig` instances to the
orchestrator.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from dynaconf import Dynaconf
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .contracts import BaseModule, ModuleConfig


def _lower_keys(value: Any) -> Any:
    if isinstance(value, dict):
        return {str(key).lower(): _lower_keys(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_lower_keys(item) for item in value]
    return value


def _section(raw: dict[str, Any], key: str) -> dict[str, Any]:
    """Case-insensitive dictionary lookup helper."""
    value = raw.get(key) or raw.get(key.upper()) or raw.get(key.lower())
    if isinstance(value, dict):
        return _lower_keys(value)
    return {}


CONFIG_FILENAMES = ("config.yaml", "secrets.yaml")
_REPO_ROOT = Path(__file__).resolve().parents[3]
DEFAULT_CONFIG_DIR = _REPO_ROOT / "config"


class ConfigError(RuntimeError):
    """Raised when configuration files are missing or invalid."""


class CaptureSettings(BaseModel):
    """Parameters of a single motion-triggered capture session."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    face_count: int = Field(default=3, ge=1, description="Crops composed per recognition.")
    max_retries: int = Field(default=2, ge=1, description="Recognition attempts per session.")
    fps: float = Field(default=3.0, gt=0.0)
    timeout_ms: int = Field(default=15000, gt=0)
    skip_initial_frames: int = Field(
        default=0,
        ge=0,
        description="Frames discarded right after the stream opens (often corrupted).",
    )
    frame_queue_size: int = Field(default=32, ge=1)

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000.0

    def output_args(self) -> list[str]:
        """ffmpeg output arguments streaming MJPEG frames to stdout."""
        fps = int(self.fps) if float(self.fps).is_integer() else self.fps
        return ["-vf", f"fps={fps}", "-an", "-f", "image2pipe", "-vcodec", "mjpeg", "pipe:1"]


class CameraSettings(BaseModel):
    """Video source of the doorbell/security camera."""

    model_config = ConfigDict(extra="ignore")

    camera_id: str = Field(default="default")
    stream_url: str | None = Field(default=None)
    ffmpeg_path: str = Field(default="ffmpeg")
    input_args: list[str] = Field(default_factory=lambda: ["-rtsp_transport", "tcp"])
    read_chunk_size: int = Field(default=64 * 1024, gt=0)
    startup_timeout: float = Field(
        default=5.0, gt=0.0, description="Seconds to wait for the first stream output."
    )
    stop_timeout: float = Field(default=2.0, gt=0.0)


class DetectorSettings(BaseModel):
    """Options forwarded to the face-detector HTTP API."""

    model_config = ConfigDict(extra="ignore")

    api_url: str | None = Field(default=None)
    min_size: int = Field(
        default=80, ge=1, description="Rekognition rejects faces smaller than 80px."
    )
    start_x: int | None = Field(default=None)
    start_y: int | None = Field(default=None)
    end_x: int | None = Field(default=None)
    end_y: int | None = Field(default=None)
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    timeout: float = Field(default=10.0, gt=0.0)

    @field_validator("api_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str | None) -> str | None:
        return value.rstrip("/") if value else value


class RecognizerSettings(BaseModel):
    """AWS Rekognition face search parameters."""

    model_config = ConfigDict(extra="ignore")

    collection_id: str | None = Field(default=None)
    face_match_threshold: float | None = Field(default=None, ge=0.0, le=100.0)
    min_similarity: float | None = Field(
        default=None,
        ge=0.0,
        le=100.0,
        description="Matches below this similarity are rejected as low confidence.",
    )
    region_name: str | None = Field(default=None)
    aws_access_key_id: str | None = Field(default=None)
    aws_secret_access_key: str | None = Field(default=None)
    aws_session_token: str | None = Field(default=None)


class WebhookSettings(BaseModel):
    """Outbound webhook receiving notifications and recognition results."""

    model_config = ConfigDict(extra="ignore")

    url: str | None = Field(default=None)
    method: str = Field(default="POST")
    headers: dict[str, str] = Field(default_factory=dict)
    timeout: float = Field(default=15.0, gt=0.0)
    verify_ssl: bool = Field(default=True)
    require_https: bool = Field(default=False)

    @field_validator("method")
    @classmethod
    def _upper_method(cls, value: str) -> str:
        return value.upper()


class ControlApiSettings(BaseModel):
    """Health check and external trigger HTTP surface."""

    model_config = ConfigDict(extra="ignore")

    host: str = Field(default="0.0.0.0")
    port: int = Field(default=3000, ge=1, le=65535)
    serve_api: bool = Field(default=True)
    use_external_motion_trigger: bool = Field(default=False)


class DebugSettings(BaseModel):
    """Optional dumps of inspected frames and composites."""

    model_config = ConfigDict(extra="ignore")

    snapshots: bool = Field(default=False)
    directory: Path = Field(default=Path("snapshot"))

    @field_validator("directory", mode="before")
    @classmethod
    def _coerce_path(cls, value: Any) -> Path:
        return value if isinstance(value, Path) else Path(value)


class LoggingSettings(BaseModel):
    """Log level and rotating file destination."""

    model_config = ConfigDict(extra="ignore")

    level: str = Field(default="INFO")
    directory: Path | None = Field(default=Path("logs"))
    max_mb: int = Field(default=10, ge=1)
    backup_count: int = Field(default=3, ge=0)


class ConfigSnapshot(BaseModel):
    """Validated, strongly typed view of the merged configuration."""

    model_config = ConfigDict(extra="ignore")

    capture: CaptureSettings = Field(default_factory=CaptureSettings)
    camera: CameraSettings = Field(default_factory=CameraSettings)
    detector: DetectorSettings = Field(default_factory=DetectorSettings)
    recognizer: RecognizerSettings = Field(default_factory=RecognizerSettings)
    webhook: WebhookSettings = Field(default_factory=WebhookSettings)
    control_api: ControlApiSettings = Field(default_factory=ControlApiSettings)
    debug: DebugSettings = Field(default_factory=DebugSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    def module_config(self, module_name: str) -> ModuleConfig:
        """Produce a ModuleConfig tailored for the requested module."""

        if module_name == "modules.process.notification_router":
            return ModuleConfig(
                options={
                    "camera_id": self.camera.camera_id,
                    "notification_topic": "camera.notification",
                    "capture_topic": "capture.request",
                    "report_topic": "capture.report",
                }
            )
        if module_name == "modules.dashboard.control_api":
            return ModuleConfig(
                enabled=self.control_api.serve_api,
                options={
                    "host": self.control_api.host,
                    "port": self.control_api.port,
                    "serve_api": self.control_api.serve_api,
                    "use_external_motion_trigger": self.control_api.use_external_motion_trigger,
                    "notification_topic": "camera.notification",
                    "capture_topic": "capture.request",
                },
            )
        raise KeyError(f"No module configuration defined for {module_name}")


class ConfigService:
    """
    Runtime facade for loading, validating, and distributing configuration.
    """

    def __init__(
        self,
        *,
        config_dir: str | Path | None = None,
        settings: Dynaconf | None = None,
    ) -> None:
        self._config_dir = Path(config_dir) if config_dir else DEFAULT_CONFIG_DIR
        settings_files = [self._config_dir / name for name in CONFIG_FILENAMES]
        existing_files = [str(path) for path in settings_files if path.exists()]
        if settings is None and not existing_files:
            raise ConfigError(
                f"No configuration files found in {self._config_dir}. "
                "Expected at least config.yaml."
            )

        self._settings = settings or Dynaconf(
            envvar_prefix="FACEWATCH",
            settings_files=existing_files,
            load_dotenv=True,
            environments=False,
        )
        self._snapshot = self._build_snapshot()

    @property
    def snapshot(self) -> ConfigSnapshot:
        """Latest validated configuration snapshot."""
        return self._snapshot

    def module_config_for(self, module: str | type[BaseModule] | BaseModule) -> ModuleConfig:
        """Wrapper around ConfigSnapshot.module_config accepting names, classes, or instances."""
        if isinstance(module, str):
            module_name = module
        else:
            module_name = module.name
        return self._snapshot.module_config(module_name)

    def _build_snapshot(self) -> ConfigSnapshot:
        source = self._settings.as_dict()
        data = {key: _section(source, key) for key in ConfigSnapshot.model_fields}
        try:
            return ConfigSnapshot.model_validate(data)
        except ValidationError as exc:
            raise ConfigError(f"Configuration validation failed: {exc}") from exc


__all__ = [
    "CameraSettings",
    "CaptureSettings",
    "ConfigError",
    "ConfigService",
    "ConfigSnapshot",
    "ControlApiSettings",
    "DebugSettings",
    "DetectorSettings",
    "LoggingSettings",
    "RecognizerSettings",
    "WebhookSettings",
]
