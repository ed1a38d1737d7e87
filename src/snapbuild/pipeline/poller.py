"""Upstream change poller."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Iterable

from ..storage import MaterializationError, SnapshotMaterializer, SnapshotStore
from ..upstream import Snapshot, UpstreamError, UpstreamSource
from .queue import EnqueueOutcome, Task, TaskQueue

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class PollResult:
    commit_count: int
    triggered: bool = False
    snapshot_ref: str | None = None
    enqueued: dict[str, EnqueueOutcome] = field(default_factory=dict)
    failed: dict[str, str] = field(default_factory=dict)


class ChangePoller:
    """Watches upstream history and queues a full rebuild once enough commits pile up."""

    def __init__(
        self,
        upstream: UpstreamSource,
        materializer: SnapshotMaterializer,
        store: SnapshotStore,
        queue: TaskQueue,
        targets: Iterable[str],
        *,
        threshold: int = 10,
        interval: float = 60.0,
        retry_base: float = 5.0,
        retry_max: float = 300.0,
        max_consecutive_failures: int | None = None,
        checkpoint: datetime | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._upstream = upstream
        self._materializer = materializer
        self._store = store
        self._queue = queue
        self._targets = list(targets)
        self._threshold = threshold
        self._interval = interval
        self._retry_base = retry_base
        self._retry_max = retry_max
        self._max_failures = max_consecutive_failures
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._checkpoint = checkpoint or self._clock()
        self._consecutive_failures = 0

    @property
    def checkpoint(self) -> datetime:
        return self._checkpoint

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    async def poll_once(self) -> PollResult:
        """Run one poll; raises :class:`UpstreamError` if upstream cannot be queried."""

        started = self._clock()
        commits = await self._upstream.list_commits_since(
            self._checkpoint, limit=self._threshold + 1
        )
        result = PollResult(commit_count=len(commits))
        if len(commits) <= self._threshold:
            logger.debug(
                "Below rebuild threshold",
                extra={"commits": len(commits), "threshold": self._threshold},
            )
            return result

        ref = commits[0].sha or None
        snapshot = await self._upstream.fetch_snapshot(ref)
        self._checkpoint = started
        result.triggered = True
        result.snapshot_ref = snapshot.ref
        logger.info(
            "Rebuild triggered",
            extra={
                "commits": len(commits),
                "ref": snapshot.ref,
                "checkpoint": started.isoformat(),
            },
        )

        outcomes = await asyncio.gather(
            *(self._rebuild_target(target, snapshot) for target in self._targets)
        )
        for target, outcome in zip(self._targets, outcomes):
            if isinstance(outcome, EnqueueOutcome):
                result.enqueued[target] = outcome
            else:
                result.failed[target] = outcome
        return result

    async def run(self) -> None:
        """Poll forever. Upstream failures back off and retry instead of ending the loop."""

        while True:
            try:
                await self.poll_once()
            except UpstreamError as exc:
                self._consecutive_failures += 1
                if self._max_failures is not None and self._consecutive_failures >= self._max_failures:
                    logger.error(
                        "Giving up on upstream after repeated failures",
                        extra={"failures": self._consecutive_failures, "code": exc.code},
                    )
                    raise
                delay = self.backoff_delay(self._consecutive_failures)
                logger.warning(
                    "Upstream poll failed; retrying",
                    extra={
                        "code": exc.code,
                        "failures": self._consecutive_failures,
                        "retry_in": delay,
                    },
                )
                await asyncio.sleep(delay)
                continue

            self._consecutive_failures = 0
            await asyncio.sleep(self._interval)

    def backoff_delay(self, failures: int) -> float:
        return min(self._retry_max, self._retry_base * (2 ** max(0, failures - 1)))

    async def _rebuild_target(self, target: str, snapshot: Snapshot) -> EnqueueOutcome | str:
        try:
            input_path = await self._materializer.materialize(target, snapshot)
        except MaterializationError as exc:
            logger.error(
                "Materialization failed; skipping target",
                extra={"target": target, "error": str(exc)},
            )
            return str(exc)

        task = Task(
            target=target,
            input_path=input_path,
            output_path=self._store.output_path(target),
            snapshot_ref=snapshot.ref,
        )
        return await self._queue.enqueue(task)


__all__ = ["ChangePoller", "PollResult"]
