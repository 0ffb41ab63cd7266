from __future__ import annotations

import textwrap
from pathlib import Path

import pytest

from facewatch.core.config import ConfigService


def _write_yaml(path: Path, content: str) -> None:
    path.write_text(textwrap.dedent(content).strip() + "\n", encoding="utf-8")


@pytest.fixture
def sample_config_dir(tmp_path: Path) -> Path:
    """
    Provide a temporary configuration directory for tests.
    """

    config_dir = tmp_path / "config"
    config_dir.mkdir()
    snapshot_dir = tmp_path / "snapshots"
    config_yaml = f"""
    capture:
      face_count: 2
      max_retries: 3
      fps: 4
      timeout_ms: 2500
      skip_initial_frames: 1

    camera:
      camera_id: "lab"
      stream_url: "rtsp://example.test/stream"

    detector:
      api_url: "http://detector.test/"
      min_size: 96
      confidence: 0.6

    recognizer:
      collection_id: "lab-collection"
      face_match_threshold: 85
      region_name: "eu-west-1"

    webhook:
      url: "https://hooks.example.com/facewatch"
      method: "post"
      headers:
        X-Token: "abc"

    control_api:
      host: "127.0.0.1"
      port: 9000
      serve_api: false
      use_external_motion_trigger: true

    debug:
      snapshots: true
      directory: "{snapshot_dir.as_posix()}"

    logging:
      level: "DEBUG"
      directory: null
    """
    secrets_yaml = """
    recognizer:
      aws_access_key_id: "AKIATEST"
      aws_secret_access_key: "secret"
    """
    _write_yaml(config_dir / "config.yaml", config_yaml)
    _write_yaml(config_dir / "secrets.yaml", secrets_yaml)
    return config_dir


@pytest.fixture
def sample_config_service(sample_config_dir: Path) -> ConfigService:
    """Return a ConfigService wired to the temporary configuration."""

    return ConfigService(config_dir=sample_config_dir)
