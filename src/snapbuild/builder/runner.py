"""Async runner for the external build tool."""

from __future__ import annotations

import asyncio
import json
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Sequence

from .utils import sanitize_environment


class BuildRunnerError(RuntimeError):
    """Base class for build runner errors."""


class BuildToolNotFoundError(BuildRunnerError):
    """Raised when the build tool executable cannot be located."""


class BuildTimeoutError(BuildRunnerError):
    """Raised when a build exceeds its time budget and is killed."""

    def __init__(self, target: str, timeout: float) -> None:
        super().__init__(f"Build for {target} exceeded {timeout:g}s and was terminated")
        self.target = target
        self.timeout = timeout


@dataclass(slots=True)
class BuildExecutionResult:
    """Holds the outcome of a build tool invocation."""

    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def failure_reason(self) -> str:
        detail = self.stderr.strip() or self.stdout.strip()
        if detail:
            detail = detail.splitlines()[-1][:400]
            return f"build tool exited with status {self.returncode}: {detail}"
        return f"build tool exited with status {self.returncode}"


class BuildRunner:
    """Execute the build tool asynchronously, one invocation per target build."""

    def __init__(self, executable: Path | str | None = None) -> None:
        self._executable_path = self._resolve_executable(executable)

    @staticmethod
    def _resolve_executable(explicit: Path | str | None) -> Path:
        if explicit is None:
            raise BuildToolNotFoundError("No build tool configured")

        candidate = Path(explicit)
        if candidate.exists() and candidate.is_file():
            return candidate
        if candidate.parent != Path("."):
            raise BuildToolNotFoundError(f"Build tool not found at {candidate}")

        binary = shutil.which(str(explicit))
        if binary is None:
            raise BuildToolNotFoundError(f"Build tool '{explicit}' not found on PATH")
        return Path(binary)

    @property
    def executable(self) -> Path:
        return self._executable_path

    async def build(
        self,
        input_path: Path,
        target: str,
        *,
        output_path: Path,
        flags: Sequence[str] | None = None,
        timeout: float | None = None,
    ) -> BuildExecutionResult:
        """Build ``target`` from ``input_path``; the tool runs inside ``output_path``."""

        args = [*(flags or []), str(input_path), target]
        return await self._invoke(*args, cwd=output_path, timeout=timeout, label=target)

    async def _invoke(
        self,
        *args: str,
        cwd: Path | None = None,
        timeout: float | None = None,
        label: str = "",
    ) -> BuildExecutionResult:
        cmd = [str(self._executable_path), *args]
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(cwd) if cwd is not None else None,
                env=sanitize_environment(),
            )
        except OSError as exc:
            raise BuildRunnerError(f"Failed to start build tool {cmd[0]}: {exc}") from exc

        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(process.communicate(), timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise BuildTimeoutError(label or cmd[0], timeout or 0.0) from None

        stdout = stdout_bytes.decode("utf-8", errors="replace")
        stderr = stderr_bytes.decode("utf-8", errors="replace")
        return BuildExecutionResult(args=tuple(cmd), returncode=process.returncode, stdout=stdout, stderr=stderr)


class FakeBuildRunner(BuildRunner):
    """Test double that simulates build tool runs.

    Each invocation pops the next queued result (defaulting to success) and,
    when ``outputs`` is given, writes those files into the output directory
    the way a real build would.
    """

    def __init__(
        self,
        responses: Iterable[BuildExecutionResult | BaseException] | None = None,
        *,
        outputs: dict[str, bytes] | None = None,
    ) -> None:  # type: ignore[override]
        self._responses = list(responses or [])
        self._outputs = dict(outputs or {})
        self._invocations: list[tuple[str, ...]] = []
        self._executable_path = Path("/tmp/fake-build-tool")

    async def _invoke(
        self,
        *args: str,
        cwd: Path | None = None,
        timeout: float | None = None,
        label: str = "",
    ) -> BuildExecutionResult:  # type: ignore[override]
        self._invocations.append(tuple(args))
        response = self._responses.pop(0) if self._responses else None
        if isinstance(response, BaseException):
            raise response
        if cwd is not None:
            for relative, content in self._outputs.items():
                destination = Path(cwd) / relative
                destination.parent.mkdir(parents=True, exist_ok=True)
                destination.write_bytes(content)
        if response is not None:
            return response
        return BuildExecutionResult(args=tuple(args), returncode=0, stdout="", stderr="")

    @property
    def invocations(self) -> list[tuple[str, ...]]:
        return self._invocations


def serialize_result(result: BuildExecutionResult) -> str:
    """Serialize a build result for status reports."""

    return json.dumps(
        {
            "args": list(result.args),
            "returncode": result.returncode,
            "stdout": result.stdout,
            "stderr": result.stderr,
        }
    )
