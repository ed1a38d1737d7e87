"""Per-target input/output directories and snapshot materialization."""

from __future__ import annotations

import asyncio
import logging
import shutil
from pathlib import Path, PurePosixPath
from typing import Iterable

from ..upstream.models import DirEntry, FileEntry, Snapshot

logger = logging.getLogger(__name__)


class MaterializationError(RuntimeError):
    """Raised when a target's input directory cannot be replaced."""


class SnapshotStore:
    """On-disk ``<root>/<target>/in`` and ``<root>/<target>/out`` directory pairs.

    Each target also owns a lock; whoever rewrites ``in/`` or builds from it
    must hold that target's lock.
    """

    def __init__(self, root: Path, targets: Iterable[str]) -> None:
        self.root = Path(root)
        self._locks: dict[str, asyncio.Lock] = {target: asyncio.Lock() for target in targets}

    @property
    def targets(self) -> list[str]:
        return list(self._locks)

    def input_path(self, target: str) -> Path:
        return self.root / self._checked(target) / "in"

    def output_path(self, target: str) -> Path:
        return self.root / self._checked(target) / "out"

    def lock(self, target: str) -> asyncio.Lock:
        return self._locks[self._checked(target)]

    def prepare(self) -> None:
        """Create the directory pair for every target."""

        for target in self._locks:
            self.input_path(target).mkdir(parents=True, exist_ok=True)
            self.output_path(target).mkdir(parents=True, exist_ok=True)

    def reset_output(self, target: str) -> Path:
        output = self.output_path(target)
        if output.exists():
            shutil.rmtree(output)
        output.mkdir(parents=True)
        return output

    def _checked(self, target: str) -> str:
        if target not in self._locks:
            raise KeyError(f"Unknown target '{target}'")
        return target


class SnapshotMaterializer:
    """Replace a target's input directory with a freshly fetched tree."""

    def __init__(self, store: SnapshotStore) -> None:
        self._store = store

    async def materialize(self, target: str, snapshot: Snapshot) -> Path:
        """Write ``snapshot`` under the target's input root and return that root.

        Waits for any build of the same target to finish first.
        """

        async with self._store.lock(target):
            root = self._store.input_path(target)
            await asyncio.to_thread(write_tree, root, snapshot)
        logger.info(
            "Materialized snapshot",
            extra={
                "target": target,
                "ref": snapshot.ref,
                "files": len(snapshot.files),
                "directories": len(snapshot.directories),
            },
        )
        return root


def write_tree(root: Path, snapshot: Snapshot) -> None:
    """Clear ``root`` and write every entry of ``snapshot`` beneath it."""

    try:
        if root.exists():
            shutil.rmtree(root)
        root.mkdir(parents=True)
    except OSError as exc:
        raise MaterializationError(f"Cannot clear input directory {root}: {exc}") from exc

    for entry in snapshot.entries:
        destination = _resolve_entry(root, entry.path)
        try:
            if isinstance(entry, DirEntry):
                destination.mkdir(parents=True, exist_ok=True)
            elif isinstance(entry, FileEntry):
                destination.parent.mkdir(parents=True, exist_ok=True)
                destination.write_bytes(entry.content)
                if entry.executable:
                    destination.chmod(0o755)
        except OSError as exc:
            raise MaterializationError(f"Cannot write {entry.path} under {root}: {exc}") from exc


def _resolve_entry(root: Path, relative: str) -> Path:
    path = PurePosixPath(relative)
    if path.is_absolute() or ".." in path.parts or not path.parts:
        raise MaterializationError(f"Refusing to write entry outside input root: {relative!r}")
    return root.joinpath(*path.parts)


__all__ = ["MaterializationError", "SnapshotMaterializer", "SnapshotStore", "write_tree"]
