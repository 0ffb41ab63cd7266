"""Image artifacts produced during a capture session."""

from .debug_snapshots import DebugSnapshotWriter
from .image_composer import VerticalImageComposer

__all__ = ["DebugSnapshotWriter", "VerticalImageComposer"]
