"""Data models for upstream history and tree snapshots."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Union


@dataclass(slots=True, frozen=True)
class CommitInfo:
    sha: str
    committed_at: datetime | None
    message: str = ""


@dataclass(slots=True, frozen=True)
class FileEntry:
    path: str
    content: bytes
    executable: bool = False


@dataclass(slots=True, frozen=True)
class DirEntry:
    path: str


TreeEntry = Union[FileEntry, DirEntry]


@dataclass(slots=True, frozen=True)
class Snapshot:
    """A full copy of the upstream tree at ``ref``."""

    ref: str
    entries: tuple[TreeEntry, ...] = field(default_factory=tuple)

    @property
    def files(self) -> list[FileEntry]:
        return [entry for entry in self.entries if isinstance(entry, FileEntry)]

    @property
    def directories(self) -> list[DirEntry]:
        return [entry for entry in self.entries if isinstance(entry, DirEntry)]


__all__ = ["CommitInfo", "DirEntry", "FileEntry", "Snapshot", "TreeEntry"]
