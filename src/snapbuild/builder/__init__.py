"""External build tool orchestration utilities."""

from .runner import (
    BuildExecutionResult,
    BuildRunner,
    BuildRunnerError,
    BuildTimeoutError,
    BuildToolNotFoundError,
    FakeBuildRunner,
)

__all__ = [
    "BuildRunner",
    "BuildExecutionResult",
    "BuildRunnerError",
    "BuildTimeoutError",
    "BuildToolNotFoundError",
    "FakeBuildRunner",
]
