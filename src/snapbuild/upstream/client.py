"""GitHub client for commit history and tree snapshots."""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
from datetime import datetime, timezone
from typing import Any, Protocol
from urllib.parse import quote

import httpx

from .models import CommitInfo, DirEntry, FileEntry, Snapshot, TreeEntry

logger = logging.getLogger(__name__)

_GITHUB_TIMEOUT = httpx.Timeout(connect=10.0, read=30.0, write=10.0, pool=30.0)
_PER_PAGE = 100
_EXECUTABLE_MODE = "100755"


class UpstreamError(RuntimeError):
    """Raised when the upstream host cannot answer a history or tree query."""

    def __init__(self, code: str, message: str | None = None, *, status_code: int | None = None) -> None:
        super().__init__(message or code)
        self.code = code
        self.status_code = status_code


class UpstreamSource(Protocol):
    async def list_commits_since(
        self, since: datetime, *, limit: int | None = None
    ) -> list[CommitInfo]: ...

    async def fetch_snapshot(self, ref: str | None = None) -> Snapshot: ...


class GitHubClient:
    """Query one repository's commit history and tree contents via the REST API."""

    def __init__(
        self,
        owner: str,
        repo: str,
        *,
        ref: str = "main",
        token: str | None = None,
        base_url: str = "https://api.github.com",
        client: httpx.AsyncClient | None = None,
        max_concurrent_blobs: int = 8,
    ) -> None:
        self.owner = owner
        self.repo = repo
        self.ref = ref
        headers = {
            "Accept": "application/vnd.github+json",
            "User-Agent": "snapbuild",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._headers = headers
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=base_url, timeout=_GITHUB_TIMEOUT, follow_redirects=True
        )
        self._blob_slots = asyncio.Semaphore(max(1, max_concurrent_blobs))

    @property
    def repo_path(self) -> str:
        return f"/repos/{quote(self.owner, safe='')}/{quote(self.repo, safe='')}"

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def list_commits_since(
        self, since: datetime, *, limit: int | None = None
    ) -> list[CommitInfo]:
        """Return commits on the tracked ref with timestamp >= ``since``, newest first.

        Pagination stops early once ``limit`` commits have been collected.
        """

        params: dict[str, Any] | None = {
            "since": _isoformat(since),
            "sha": self.ref,
            "per_page": _PER_PAGE,
        }
        url: str = f"{self.repo_path}/commits"
        commits: list[CommitInfo] = []

        while url:
            response = await self._get(url, params=params)
            payload = _json(response)
            if not isinstance(payload, list):
                raise UpstreamError("upstream_bad_payload", "Commit listing was not a list")
            commits.extend(_parse_commit(item) for item in payload)
            if limit is not None and len(commits) >= limit:
                break
            url = response.links.get("next", {}).get("url", "")
            # The next link already carries the query string.
            params = None

        return commits

    async def fetch_snapshot(self, ref: str | None = None) -> Snapshot:
        """Fetch the complete file tree at ``ref`` (defaults to the tracked ref)."""

        resolved = ref or self.ref
        response = await self._get(
            f"{self.repo_path}/git/trees/{quote(resolved, safe='')}",
            params={"recursive": "1"},
        )
        payload = _json(response)
        if not isinstance(payload, dict):
            raise UpstreamError("upstream_bad_payload", "Tree listing was not an object")
        if payload.get("truncated"):
            logger.warning(
                "Upstream tree listing truncated",
                extra={"owner": self.owner, "repo": self.repo, "ref": resolved},
            )

        blobs: list[tuple[str, str, bool]] = []
        directories: list[DirEntry] = []
        for item in payload.get("tree") or []:
            if not isinstance(item, dict):
                raise UpstreamError("upstream_bad_payload", "Tree entry was not an object")
            kind = item.get("type")
            path = item.get("path")
            if not path:
                continue
            if kind == "tree":
                directories.append(DirEntry(path=path))
            elif kind == "blob":
                sha = item.get("sha")
                if not sha:
                    raise UpstreamError("upstream_bad_payload", f"Blob entry {path} has no sha")
                blobs.append((path, sha, item.get("mode") == _EXECUTABLE_MODE))
            else:
                logger.debug("Skipping tree entry %s of type %s", path, kind)

        pending: list[asyncio.Future[FileEntry]] = [
            asyncio.ensure_future(self._fetch_file(*blob)) for blob in blobs
        ]
        try:
            files = await asyncio.gather(*pending)
        except BaseException:
            for task in pending:
                task.cancel()
            raise

        entries: list[TreeEntry] = [*directories, *files]
        entries.sort(key=lambda entry: entry.path)
        return Snapshot(ref=resolved, entries=tuple(entries))

    async def _fetch_file(self, path: str, sha: str, executable: bool) -> FileEntry:
        async with self._blob_slots:
            response = await self._get(f"{self.repo_path}/git/blobs/{sha}")
        payload = _json(response)
        if not isinstance(payload, dict):
            raise UpstreamError("upstream_bad_payload", f"Blob payload for {path} was not an object")
        content = payload.get("content") or ""
        encoding = payload.get("encoding", "base64")
        if encoding == "base64":
            try:
                data = base64.b64decode(content)
            except (binascii.Error, ValueError) as exc:
                raise UpstreamError("upstream_bad_payload", f"Undecodable blob for {path}") from exc
        else:
            data = content.encode("utf-8")
        return FileEntry(path=path, content=data, executable=executable)

    async def _get(self, url: str, *, params: dict[str, Any] | None = None) -> httpx.Response:
        try:
            response = await self._client.get(url, params=params, headers=self._headers)
        except httpx.HTTPError as exc:
            raise UpstreamError("upstream_unreachable", f"GitHub request failed: {exc}") from exc
        _raise_for_status(response)
        return response


def _raise_for_status(response: httpx.Response) -> None:
    status_code = response.status_code
    if status_code < 400:
        return

    if status_code == 429:
        raise UpstreamError("github_rate_limited", status_code=status_code)

    if status_code == 403:
        remaining = response.headers.get("x-ratelimit-remaining")
        if remaining == "0":
            raise UpstreamError("github_rate_limited", status_code=status_code)
        raise UpstreamError("github_forbidden", status_code=status_code)

    if status_code in {401, 404}:
        raise UpstreamError("github_not_found_or_private", status_code=status_code)

    raise UpstreamError("github_request_failed", status_code=status_code)


def _json(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError as exc:
        raise UpstreamError(
            "upstream_bad_payload",
            f"GitHub returned a non-JSON body for {response.request.url.path}",
            status_code=response.status_code,
        ) from exc


def _isoformat(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _parse_commit(item: Any) -> CommitInfo:
    if not isinstance(item, dict):
        raise UpstreamError("upstream_bad_payload", "Commit entry was not an object")
    commit = item.get("commit") or {}
    committer = commit.get("committer") if isinstance(commit, dict) else None
    if committer is None and isinstance(commit, dict):
        committer = {}
    if not isinstance(committer, dict):
        raise UpstreamError("upstream_bad_payload", f"Commit {item.get('sha')} is missing commit details")
    raw_date = committer.get("date")
    committed_at = None
    if raw_date:
        try:
            committed_at = datetime.fromisoformat(str(raw_date).replace("Z", "+00:00"))
        except ValueError as exc:
            raise UpstreamError(
                "upstream_bad_payload", f"Commit {item.get('sha')} has an invalid date: {raw_date!r}"
            ) from exc
    return CommitInfo(sha=item.get("sha", ""), committed_at=committed_at, message=commit.get("message", ""))


__all__ = ["GitHubClient", "UpstreamError", "UpstreamSource"]
