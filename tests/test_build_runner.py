from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from snapbuild.builder.runner import (
    BuildExecutionResult,
    BuildRunner,
    BuildRunnerError,
    BuildTimeoutError,
    BuildToolNotFoundError,
    FakeBuildRunner,
    serialize_result,
)
from snapbuild.builder.utils import sanitize_environment


def make_tool(tmp_path: Path, body: str) -> Path:
    script = tmp_path / "build-tool"
    script.write_text("#!/bin/sh\n" + body, encoding="utf-8")
    script.chmod(0o755)
    return script


def test_build_passes_input_and_target_and_runs_in_output_dir(tmp_path: Path) -> None:
    tool = make_tool(tmp_path, 'echo "$@"\necho built > artifact.txt\n')
    input_dir = tmp_path / "in"
    output_dir = tmp_path / "out"
    input_dir.mkdir()
    output_dir.mkdir()

    runner = BuildRunner(tool)
    result = asyncio.run(
        runner.build(input_dir, "x86_64-linux", output_path=output_dir, flags=["--fast"])
    )

    assert result.ok
    assert result.stdout.strip() == f"--fast {input_dir} x86_64-linux"
    assert (output_dir / "artifact.txt").read_text(encoding="utf-8") == "built\n"


def test_build_reports_non_zero_exit(tmp_path: Path) -> None:
    tool = make_tool(tmp_path, 'echo "missing flake.nix" >&2\nexit 3\n')
    (tmp_path / "out").mkdir()

    result = asyncio.run(BuildRunner(tool).build(tmp_path, "t", output_path=tmp_path / "out"))

    assert not result.ok
    assert result.returncode == 3
    assert result.failure_reason() == "build tool exited with status 3: missing flake.nix"


def test_build_timeout_kills_process(tmp_path: Path) -> None:
    tool = make_tool(tmp_path, "exec sleep 5\n")
    (tmp_path / "out").mkdir()

    with pytest.raises(BuildTimeoutError) as exc_info:
        asyncio.run(
            BuildRunner(tool).build(tmp_path, "slow", output_path=tmp_path / "out", timeout=0.2)
        )

    assert exc_info.value.target == "slow"


def test_missing_output_dir_is_a_runner_error(tmp_path: Path) -> None:
    tool = make_tool(tmp_path, "exit 0\n")

    with pytest.raises(BuildRunnerError):
        asyncio.run(BuildRunner(tool).build(tmp_path, "t", output_path=tmp_path / "nope"))


def test_build_tool_not_found(tmp_path: Path) -> None:
    with pytest.raises(BuildToolNotFoundError):
        BuildRunner(tmp_path / "missing")
    with pytest.raises(BuildToolNotFoundError):
        BuildRunner("definitely-not-a-build-tool-on-path")
    with pytest.raises(BuildToolNotFoundError):
        BuildRunner(None)


def test_build_tool_resolved_from_path() -> None:
    runner = BuildRunner("sh")
    assert runner.executable.name == "sh"


def test_fake_build_runner_records_invocations_and_writes_outputs(tmp_path: Path) -> None:
    fake = FakeBuildRunner(
        [BuildExecutionResult(args=("build",), returncode=1, stdout="", stderr="boom")],
        outputs={"result/bin/hello": b"#!/bin/sh\n"},
    )

    result = asyncio.run(fake.build(Path("/src"), "aarch64-linux", output_path=tmp_path))

    assert result.returncode == 1
    assert fake.invocations == [("/src", "aarch64-linux")]
    assert (tmp_path / "result" / "bin" / "hello").exists()


def test_serialize_result_contains_args() -> None:
    result = BuildExecutionResult(args=("tool", "in", "t"), returncode=0, stdout="ok", stderr="")
    payload = serialize_result(result)

    assert '"in"' in payload


def test_sanitize_environment_strips_virtualenv_and_token(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PYTHONPATH", "value")
    monkeypatch.setenv("GITHUB_TOKEN", "secret")
    env = sanitize_environment({"EXTRA": "1"})
    assert "PYTHONPATH" not in env
    assert "GITHUB_TOKEN" not in env
    assert env["EXTRA"] == "1"
