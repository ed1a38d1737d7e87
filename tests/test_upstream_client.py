from __future__ import annotations

import asyncio
import base64
from datetime import datetime, timezone

import httpx
import pytest

from snapbuild.upstream import DirEntry, FileEntry, GitHubClient, UpstreamError


def commit(sha: str) -> dict:
    return {
        "sha": sha,
        "commit": {"message": f"commit {sha}", "committer": {"date": "2025-01-01T12:00:00Z"}},
    }


def make_client(handler, **kwargs) -> GitHubClient:
    transport = httpx.MockTransport(handler)
    http = httpx.AsyncClient(transport=transport, base_url="https://api.github.com")
    return GitHubClient("NixOS", "nixpkgs", ref="main", client=http, **kwargs)


def test_list_commits_since_sends_checkpoint_and_parses() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=[commit("b"), commit("a")])

    client = make_client(handler, token="secret")
    since = datetime(2025, 1, 1, 8, 30, tzinfo=timezone.utc)

    commits = asyncio.run(client.list_commits_since(since))

    assert [c.sha for c in commits] == ["b", "a"]
    assert commits[0].committed_at == datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)
    request = seen[0]
    assert request.url.path == "/repos/NixOS/nixpkgs/commits"
    assert request.url.params["since"] == "2025-01-01T08:30:00Z"
    assert request.url.params["sha"] == "main"
    assert request.headers["Authorization"] == "Bearer secret"


def test_list_commits_follows_pagination_until_limit() -> None:
    calls: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(str(request.url))
        page = request.url.params.get("page", "1")
        if page == "1":
            return httpx.Response(
                200,
                json=[commit(f"p1-{i}") for i in range(5)],
                headers={
                    "Link": '<https://api.github.com/repos/NixOS/nixpkgs/commits?page=2>; rel="next"'
                },
            )
        return httpx.Response(200, json=[commit(f"p2-{i}") for i in range(5)])

    client = make_client(handler)

    everything = asyncio.run(client.list_commits_since(datetime.now(timezone.utc)))
    limited = asyncio.run(client.list_commits_since(datetime.now(timezone.utc), limit=3))

    assert len(everything) == 10
    assert len(limited) == 5
    assert len(calls) == 3


def test_fetch_snapshot_builds_tagged_entries() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/repos/NixOS/nixpkgs/git/trees/abc":
            assert request.url.params["recursive"] == "1"
            return httpx.Response(
                200,
                json={
                    "sha": "tree-sha",
                    "truncated": False,
                    "tree": [
                        {"path": "flake.nix", "mode": "100644", "type": "blob", "sha": "b1"},
                        {"path": "lib", "mode": "040000", "type": "tree", "sha": "t1"},
                        {"path": "lib/empty.nix", "mode": "100644", "type": "blob", "sha": "b2"},
                        {"path": "bin/run", "mode": "100755", "type": "blob", "sha": "b3"},
                        {"path": "vendored", "mode": "160000", "type": "commit", "sha": "c1"},
                    ],
                },
            )
        blobs = {"b1": b"{ outputs = _: {}; }", "b2": b"", "b3": b"#!/bin/sh\n"}
        sha = path.rsplit("/", 1)[-1]
        return httpx.Response(
            200,
            json={"sha": sha, "encoding": "base64", "content": base64.b64encode(blobs[sha]).decode()},
        )

    snapshot = asyncio.run(make_client(handler).fetch_snapshot("abc"))

    assert snapshot.ref == "abc"
    assert snapshot.entries == (
        FileEntry("bin/run", b"#!/bin/sh\n", executable=True),
        FileEntry("flake.nix", b"{ outputs = _: {}; }"),
        DirEntry("lib"),
        FileEntry("lib/empty.nix", b""),
    )


@pytest.mark.parametrize(
    ("status_code", "headers", "expected"),
    [
        (401, {}, "github_not_found_or_private"),
        (404, {}, "github_not_found_or_private"),
        (403, {}, "github_forbidden"),
        (403, {"x-ratelimit-remaining": "0"}, "github_rate_limited"),
        (429, {}, "github_rate_limited"),
        (502, {}, "github_request_failed"),
    ],
)
def test_upstream_errors_are_mapped(status_code: int, headers: dict[str, str], expected: str) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        _ = request
        return httpx.Response(status_code, headers=headers)

    with pytest.raises(UpstreamError) as exc_info:
        asyncio.run(make_client(handler).list_commits_since(datetime.now(timezone.utc)))

    assert exc_info.value.code == expected
    assert exc_info.value.status_code == status_code


def test_transport_errors_become_upstream_errors() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(UpstreamError) as exc_info:
        asyncio.run(make_client(handler).fetch_snapshot())

    assert exc_info.value.code == "upstream_unreachable"


def test_non_json_body_becomes_upstream_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>proxy error</html>")

    with pytest.raises(UpstreamError) as exc_info:
        asyncio.run(make_client(handler).list_commits_since(datetime.now(timezone.utc)))

    assert exc_info.value.code == "upstream_bad_payload"
    assert exc_info.value.status_code == 200


def test_invalid_commit_date_becomes_upstream_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        bad = commit("a")
        bad["commit"]["committer"]["date"] = "garbage"
        return httpx.Response(200, json=[bad])

    with pytest.raises(UpstreamError) as exc_info:
        asyncio.run(make_client(handler).list_commits_since(datetime.now(timezone.utc)))

    assert exc_info.value.code == "upstream_bad_payload"


@pytest.mark.parametrize(
    "tree_payload",
    [
        ["not", "an", "object"],
        {"tree": ["flake.nix"]},
        {"tree": [{"path": "flake.nix", "mode": "100644", "type": "blob"}]},
    ],
)
def test_malformed_tree_listing_becomes_upstream_error(tree_payload) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=tree_payload)

    with pytest.raises(UpstreamError) as exc_info:
        asyncio.run(make_client(handler).fetch_snapshot("abc"))

    assert exc_info.value.code == "upstream_bad_payload"
