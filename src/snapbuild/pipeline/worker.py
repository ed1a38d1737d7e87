"""Serialized build worker."""

from __future__ import annotations

import asyncio
import logging
from typing import Mapping

from ..builder import BuildRunner, BuildRunnerError
from ..builder.runner import serialize_result
from ..storage import SnapshotStore
from ..targets import BuildTarget
from .queue import Task, TaskQueue, TaskRecord

logger = logging.getLogger(__name__)


class BuildWorker:
    """Takes one pending task at a time and drives it to a terminal stage.

    A build is ``complete`` only when the tool exits with status 0; a non-zero
    exit, a spawn failure or a timeout marks it ``failed`` with the reason.
    """

    def __init__(
        self,
        queue: TaskQueue,
        runner: BuildRunner,
        store: SnapshotStore,
        targets: Mapping[str, BuildTarget],
        *,
        timeout: float | None = None,
    ) -> None:
        self._queue = queue
        self._runner = runner
        self._store = store
        self._targets = dict(targets)
        self._timeout = timeout

    async def run(self) -> None:
        """Process tasks forever; cancel the coroutine to stop."""

        while True:
            task = await self._queue.wait_next()
            await self.run_once(task)

    async def process_next(self) -> TaskRecord | None:
        """Build the next pending task if there is one."""

        task = await self._queue.dequeue_next()
        if task is None:
            return None
        return await self.run_once(task)

    async def run_once(self, task: Task) -> TaskRecord:
        """Build an in-progress ``task`` and record its terminal stage."""

        target = self._targets.get(task.target)
        flags = list(target.build_flags) if target is not None else []
        logger.info("Build started", extra={"target": task.target, "ref": task.snapshot_ref})

        try:
            async with self._store.lock(task.target):
                await asyncio.to_thread(self._store.reset_output, task.target)
                result = await self._runner.build(
                    task.input_path,
                    task.target,
                    output_path=task.output_path,
                    flags=flags,
                    timeout=self._timeout,
                )
        except (BuildRunnerError, OSError) as exc:
            logger.warning("Build could not run", extra={"target": task.target, "error": str(exc)})
            return await self._queue.mark_failed(task.target, str(exc))
        except asyncio.CancelledError:
            await self._queue.mark_failed(task.target, "build cancelled")
            raise
        except Exception as exc:
            logger.exception("Unexpected build error", extra={"target": task.target})
            return await self._queue.mark_failed(
                task.target, f"unexpected build error: {type(exc).__name__}: {exc}"
            )

        if not result.ok:
            reason = result.failure_reason()
            logger.warning(
                "Build failed",
                extra={"target": task.target, "returncode": result.returncode},
            )
            logger.debug("Build tool output: %s", serialize_result(result), extra={"target": task.target})
            return await self._queue.mark_failed(task.target, reason)

        logger.info("Build complete", extra={"target": task.target, "output": str(task.output_path)})
        return await self._queue.mark_complete(task.target, task.output_path)


__all__ = ["BuildWorker"]
