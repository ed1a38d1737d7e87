"""Build orchestration pipeline: queue, poller, worker and artifact serving."""

from .artifacts import (
    BUILD_FAILED,
    BUILD_IN_PROGRESS,
    BUILD_PENDING,
    ArtifactServer,
    BuildResponse,
)
from .poller import ChangePoller, PollResult
from .queue import EnqueueOutcome, QueueStateError, Task, TaskQueue, TaskRecord, TaskStage
from .worker import BuildWorker

__all__ = [
    "ArtifactServer",
    "BUILD_FAILED",
    "BUILD_IN_PROGRESS",
    "BUILD_PENDING",
    "BuildResponse",
    "BuildWorker",
    "ChangePoller",
    "EnqueueOutcome",
    "PollResult",
    "QueueStateError",
    "Task",
    "TaskQueue",
    "TaskRecord",
    "TaskStage",
]
