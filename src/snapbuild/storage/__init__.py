"""Storage abstractions for snapbuild."""

from .archive import ArchiveError, build_archive, package_directory
from .snapshots import MaterializationError, SnapshotMaterializer, SnapshotStore

__all__ = [
    "ArchiveError",
    "MaterializationError",
    "SnapshotMaterializer",
    "SnapshotStore",
    "build_archive",
    "package_directory",
]
