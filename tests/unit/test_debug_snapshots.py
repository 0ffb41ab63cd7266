import datetime as dt
from pathlib import Path

import pytest

from facewatch.modules.event.debug_snapshots import DebugSnapshotWriter


class SteppingClock:
    def __init__(self) -> None:
        self._now = dt.datetime(2024, 5, 1, 12, 0, 0)

    def __call__(self) -> dt.datetime:
        self._now += dt.timedelta(milliseconds=5)
        return self._now


@pytest.mark.asyncio
async def test_writer_dumps_frames_and_composites(tmp_path: Path) -> None:
    writer = DebugSnapshotWriter(tmp_path, clock=SteppingClock())
    await writer.begin()
    await writer.write_frame(b"frame-ok", face_found=True)
    await writer.write_frame(b"frame-ng", face_found=False)
    await writer.write_composite(b"composite")

    assert writer.session_dir == tmp_path / "2024-05-01-12-00-00"
    names = sorted(path.name for path in writer.session_dir.iterdir())
    assert [name.split("_")[-1] for name in names] == ["ok.jpg", "ng.jpg", "comp.jpg"]
    contents = {path.name.split("_")[-1]: path.read_bytes() for path in writer.session_dir.iterdir()}
    assert contents["comp.jpg"] == b"composite"


@pytest.mark.asyncio
async def test_disabled_writer_creates_nothing(tmp_path: Path) -> None:
    writer = DebugSnapshotWriter(tmp_path / "snaps", enabled=False)
    await writer.begin()
    await writer.write_composite(b"composite")
    assert not (tmp_path / "snaps").exists()


@pytest.mark.asyncio
async def test_writer_disables_itself_when_directory_fails(tmp_path: Path) -> None:
    blocker = tmp_path / "file"
    blocker.write_text("not a directory")
    writer = DebugSnapshotWriter(blocker)
    await writer.begin()
    await writer.write_frame(b"frame", face_found=True)
    assert not writer.enabled
    assert writer.session_dir is None
