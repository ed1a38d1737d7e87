"""Zip packaging of build output directories."""

from __future__ import annotations

import logging
import os
import tempfile
import zipfile
from pathlib import Path

logger = logging.getLogger(__name__)

ARCHIVE_MODE = 0o755


class ArchiveError(RuntimeError):
    """Raised when an output directory cannot be packaged or read back."""


def package_directory(root: Path, destination: Path) -> list[str]:
    """Write ``root`` into a zip archive at ``destination``.

    Files are deflated at their path relative to ``root``. Directories with
    nothing beneath them get an explicit ``name/`` entry so empty subtrees
    survive extraction. Every entry carries unix mode 0755.

    Symlinks are followed, so a ``result`` link into a store path is archived
    as the tree it points at. Links that loop back to an enclosing directory,
    dangling links and special files are skipped and logged. Returns the entry
    names in the order written.
    """

    root = Path(root)
    if not root.is_dir():
        raise ArchiveError(f"Output directory {root} does not exist")

    names: list[str] = []
    skipped: list[str] = []
    try:
        with zipfile.ZipFile(destination, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            for current, dirnames, filenames in os.walk(root, followlinks=True):
                current_path = Path(current)
                relative_dir = current_path.relative_to(root)
                enclosing = {
                    os.path.realpath(root.joinpath(*relative_dir.parts[:depth]))
                    for depth in range(len(relative_dir.parts) + 1)
                }
                kept_dirs = []
                for name in sorted(dirnames):
                    if os.path.realpath(current_path / name) in enclosing:
                        skipped.append((relative_dir / name).as_posix())
                    else:
                        kept_dirs.append(name)
                dirnames[:] = kept_dirs

                regular = []
                for name in sorted(filenames):
                    if (current_path / name).is_file():
                        regular.append(name)
                    else:
                        skipped.append((relative_dir / name).as_posix())
                for name in regular:
                    arcname = (relative_dir / name).as_posix()
                    info = zipfile.ZipInfo.from_file(
                        current_path / name, arcname, strict_timestamps=False
                    )
                    info.compress_type = zipfile.ZIP_DEFLATED
                    info.external_attr = (0o100000 | ARCHIVE_MODE) << 16
                    with open(current_path / name, "rb") as handle:
                        archive.writestr(info, handle.read())
                    names.append(arcname)
                if current_path != root and not dirnames and not regular:
                    arcname = relative_dir.as_posix() + "/"
                    info = zipfile.ZipInfo(arcname)
                    info.external_attr = ((0o040000 | ARCHIVE_MODE) << 16) | 0x10
                    archive.writestr(info, b"")
                    names.append(arcname)
    except OSError as exc:
        raise ArchiveError(f"Failed to write archive for {root}: {exc}") from exc
    if skipped:
        logger.warning(
            "Skipped entries while packaging",
            extra={"root": str(root), "skipped": skipped},
        )
    if not names:
        logger.warning("Packaged an empty archive", extra={"root": str(root)})
    return names


def build_archive(target: str, root: Path, *, tmp_dir: Path | None = None) -> bytes:
    """Package ``root`` into a temp file named after ``target`` and return its bytes.

    Every call gets its own temp file, so concurrent requests for one target
    never write into each other's archive.
    """

    fd, raw_path = tempfile.mkstemp(prefix=f"{target}-", suffix=".zip", dir=tmp_dir)
    os.close(fd)
    path = Path(raw_path)
    try:
        package_directory(root, path)
        try:
            return path.read_bytes()
        except OSError as exc:
            raise ArchiveError(f"Failed to read archive {path}: {exc}") from exc
    finally:
        path.unlink(missing_ok=True)


__all__ = ["ARCHIVE_MODE", "ArchiveError", "build_archive", "package_directory"]
