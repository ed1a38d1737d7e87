from __future__ import annotations

import asyncio
import io
import zipfile
from datetime import datetime, timezone
from pathlib import Path

from snapbuild.builder import BuildRunner
from snapbuild.config import SnapbuildSettings
from snapbuild.pipeline import TaskStage
from snapbuild.server import create_server
from snapbuild.targets import DEFAULT_TARGETS
from snapbuild.upstream import CommitInfo, DirEntry, FileEntry, Snapshot


class ScriptedUpstream:
    def __init__(self, commits: int) -> None:
        self.commits = commits
        self.refs: list[str | None] = []

    async def list_commits_since(self, since: datetime, *, limit: int | None = None) -> list[CommitInfo]:
        count = self.commits
        self.commits = 0
        return [
            CommitInfo(sha=f"{index:040x}", committed_at=datetime.now(timezone.utc))
            for index in range(count)
        ]

    async def fetch_snapshot(self, ref: str | None = None) -> Snapshot:
        self.refs.append(ref)
        return Snapshot(
            ref=ref or "main",
            entries=(
                FileEntry("flake.nix", b"{ outputs = _: {}; }"),
                DirEntry("pkgs"),
                FileEntry("pkgs/default.nix", b"{}"),
            ),
        )


def make_copying_tool(tmp_path: Path) -> Path:
    # Copies the input tree into the working directory; the target name is ignored.
    script = tmp_path / "copy-build"
    script.write_text('#!/bin/sh\ncp -R "$1"/. .\n', encoding="utf-8")
    script.chmod(0o755)
    return script


def test_threshold_crossing_rebuilds_and_serves_every_target(tmp_path: Path) -> None:
    settings = SnapbuildSettings(_env_file=None, work_dir=tmp_path / "builds", rebuild_threshold=10)
    upstream = ScriptedUpstream(commits=11)
    server = create_server(
        settings,
        upstream=upstream,
        build_runner=BuildRunner(make_copying_tool(tmp_path)),
        targets={target.id: target for target in DEFAULT_TARGETS},
    )
    queue = server.task_queue
    artifacts = server.artifacts

    async def scenario():
        server.snapshot_store.prepare()
        result = await server.poller.poll_once()
        stages_after_poll = {target: await queue.stage(target) for target in server.targets}
        before_build = await artifacts.get_build("x86_64-linux")
        while await server.worker.process_next() is not None:
            pass
        responses = {target: await artifacts.get_build(target) for target in server.targets}
        return result, stages_after_poll, before_build, responses

    result, stages_after_poll, before_build, responses = asyncio.run(scenario())

    assert result.triggered
    assert upstream.refs == [f"{0:040x}"]
    assert set(stages_after_poll.values()) == {TaskStage.PENDING}
    assert before_build.status_code == 204
    assert before_build.headers["X-Build-Status"] == "Build Pending"
    for target, response in responses.items():
        assert response.status_code == 200, target
        with zipfile.ZipFile(io.BytesIO(response.body)) as archive:
            assert sorted(archive.namelist()) == ["flake.nix", "pkgs/default.nix"]
            assert archive.read("flake.nix") == b"{ outputs = _: {}; }"


def test_quiet_upstream_leaves_targets_unqueued(tmp_path: Path) -> None:
    settings = SnapbuildSettings(_env_file=None, work_dir=tmp_path / "builds")
    server = create_server(
        settings,
        upstream=ScriptedUpstream(commits=3),
        build_runner=BuildRunner(make_copying_tool(tmp_path)),
    )

    async def scenario():
        server.snapshot_store.prepare()
        await server.poller.poll_once()
        return await server.artifacts.get_build("x86_64-linux")

    response = asyncio.run(scenario())

    assert response.status_code == 500
    assert response.message == "Build state lost for target x86_64-linux"


def test_missing_build_tool_keeps_server_up_without_worker(tmp_path: Path) -> None:
    settings = SnapbuildSettings(
        _env_file=None,
        work_dir=tmp_path / "builds",
        build_tool=str(tmp_path / "absent-tool"),
    )

    server = create_server(settings, upstream=ScriptedUpstream(commits=0))

    assert server.worker is None
    assert server.builder_metadata["available"] is False
    assert "absent-tool" in server.builder_metadata["error"]


def test_server_loads_targets_from_configured_paths(tmp_path: Path) -> None:
    target_dir = tmp_path / "targets"
    target_dir.mkdir()
    (target_dir / "riscv.yaml").write_text(
        "id: riscv64-linux\nbuild_flags: [--cores, '4']\n", encoding="utf-8"
    )
    settings = SnapbuildSettings(
        _env_file=None,
        work_dir=tmp_path / "builds",
        target_paths=(target_dir,),
    )

    server = create_server(
        settings,
        upstream=ScriptedUpstream(commits=0),
        build_runner=BuildRunner(make_copying_tool(tmp_path)),
    )

    assert list(server.targets) == ["riscv64-linux"]
    assert server.targets["riscv64-linux"].build_flags == ["--cores", "4"]
    assert server.snapshot_store.targets == ["riscv64-linux"]
