"""Shared build task queue.

The queue tracks, for every target, which stage its current task is in:
``pending`` (FIFO, awaiting the worker), ``in_progress``, or one of the
terminal stages ``complete`` / ``failed``. A target's task lives in exactly
one stage at a time; every move removes and inserts inside the same critical
section of a single ``asyncio.Condition``.

The lock is only held for the duration of a queue operation, never across a
build, a network call or file I/O.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TaskStage(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETE = "complete"
    FAILED = "failed"
    UNKNOWN = "unknown"


class EnqueueOutcome(str, Enum):
    ADDED = "added"
    REPLACED = "replaced"
    DEFERRED = "deferred"


class QueueStateError(RuntimeError):
    """Raised on a stage transition the queue's state does not allow."""


@dataclass(slots=True, frozen=True)
class Task:
    """One build attempt for one target."""

    target: str
    input_path: Path
    output_path: Path
    snapshot_ref: str | None = None
    created_at: datetime = field(default_factory=_utcnow)


@dataclass(slots=True, frozen=True)
class TaskRecord:
    task: Task
    stage: TaskStage
    output: Path | None = None
    reason: str | None = None
    updated_at: datetime = field(default_factory=_utcnow)

    def as_dict(self) -> dict[str, Any]:
        return {
            "target": self.task.target,
            "stage": self.stage.value,
            "snapshot_ref": self.task.snapshot_ref,
            "output": str(self.output) if self.output is not None else None,
            "reason": self.reason,
            "updated_at": self.updated_at.isoformat(),
        }


class TaskQueue:
    def __init__(self) -> None:
        self._cond = asyncio.Condition()
        self._pending: deque[Task] = deque()
        self._in_progress: dict[str, Task] = {}
        self._complete: dict[str, TaskRecord] = {}
        self._failed: dict[str, TaskRecord] = {}
        # Tasks that arrived while their target was building.
        self._followups: dict[str, Task] = {}

    async def enqueue(self, task: Task) -> EnqueueOutcome:
        """Queue ``task``; at most one task per target is ever live."""

        async with self._cond:
            target = task.target
            if target in self._in_progress:
                self._followups[target] = task
                outcome = EnqueueOutcome.DEFERRED
            else:
                index = self._pending_index(target)
                if index is not None:
                    self._pending[index] = task
                    outcome = EnqueueOutcome.REPLACED
                else:
                    self._complete.pop(target, None)
                    self._failed.pop(target, None)
                    self._pending.append(task)
                    outcome = EnqueueOutcome.ADDED
                    self._cond.notify_all()
        logger.debug("Enqueued task", extra={"target": task.target, "outcome": outcome.value})
        return outcome

    async def dequeue_next(self) -> Task | None:
        """Move the head of ``pending`` to ``in_progress`` and return it, or ``None``."""

        async with self._cond:
            return self._start_head()

    async def wait_next(self) -> Task:
        """Like :meth:`dequeue_next` but sleeps until a task is enqueued."""

        async with self._cond:
            await self._cond.wait_for(lambda: bool(self._pending))
            task = self._start_head()
            assert task is not None
            return task

    async def mark_in_progress(self, target: str) -> Task:
        """Move ``target``'s pending task to ``in_progress`` regardless of its position."""

        async with self._cond:
            index = self._pending_index(target)
            if index is None:
                raise QueueStateError(f"No pending task for target '{target}'")
            task = self._pending[index]
            del self._pending[index]
            self._in_progress[target] = task
            return task

    async def mark_complete(self, target: str, output: Path | None = None) -> TaskRecord:
        async with self._cond:
            task = self._finish(target)
            record = TaskRecord(
                task=task,
                stage=TaskStage.COMPLETE,
                output=output if output is not None else task.output_path,
            )
            self._complete[target] = record
            self._promote_followup(target)
            return record

    async def mark_failed(self, target: str, reason: str) -> TaskRecord:
        async with self._cond:
            task = self._finish(target)
            record = TaskRecord(task=task, stage=TaskStage.FAILED, reason=reason)
            self._failed[target] = record
            self._promote_followup(target)
            return record

    async def find(self, target: str) -> TaskRecord | None:
        """Return the record for ``target``'s current task, or ``None`` if never queued."""

        async with self._cond:
            return self._locate(target)

    async def stage(self, target: str) -> TaskStage:
        record = await self.find(target)
        return record.stage if record is not None else TaskStage.UNKNOWN

    async def snapshot(self) -> dict[str, Any]:
        """Return a consistent view of all stages for status reporting."""

        async with self._cond:
            return {
                "pending": [task.target for task in self._pending],
                "in_progress": sorted(self._in_progress),
                "complete": sorted(self._complete),
                "failed": sorted(self._failed),
                "deferred": sorted(self._followups),
                "records": {
                    target: record.as_dict()
                    for target in self._known_targets()
                    if (record := self._locate(target)) is not None
                },
            }

    def _start_head(self) -> Task | None:
        if not self._pending:
            return None
        task = self._pending.popleft()
        self._in_progress[task.target] = task
        return task

    def _finish(self, target: str) -> Task:
        task = self._in_progress.pop(target, None)
        if task is None:
            raise QueueStateError(f"Target '{target}' has no task in progress")
        return task

    def _promote_followup(self, target: str) -> None:
        followup = self._followups.pop(target, None)
        if followup is None:
            return
        self._complete.pop(target, None)
        self._failed.pop(target, None)
        self._pending.append(replace(followup, created_at=_utcnow()))
        self._cond.notify_all()

    def _pending_index(self, target: str) -> int | None:
        for index, task in enumerate(self._pending):
            if task.target == target:
                return index
        return None

    def _locate(self, target: str) -> TaskRecord | None:
        if target in self._in_progress:
            return TaskRecord(task=self._in_progress[target], stage=TaskStage.IN_PROGRESS)
        index = self._pending_index(target)
        if index is not None:
            return TaskRecord(task=self._pending[index], stage=TaskStage.PENDING)
        if target in self._complete:
            return self._complete[target]
        if target in self._failed:
            return self._failed[target]
        return None

    def _known_targets(self) -> list[str]:
        names = {task.target for task in self._pending}
        names.update(self._in_progress, self._complete, self._failed)
        return sorted(names)


__all__ = [
    "EnqueueOutcome",
    "QueueStateError",
    "Task",
    "TaskQueue",
    "TaskRecord",
    "TaskStage",
]
