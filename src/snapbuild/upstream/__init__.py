"""Upstream repository access."""

from .client import GitHubClient, UpstreamError, UpstreamSource
from .models import CommitInfo, DirEntry, FileEntry, Snapshot, TreeEntry

__all__ = [
    "CommitInfo",
    "DirEntry",
    "FileEntry",
    "GitHubClient",
    "Snapshot",
    "TreeEntry",
    "UpstreamError",
    "UpstreamSource",
]
