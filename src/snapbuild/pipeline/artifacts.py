"""Turn a target's queue stage into an artifact response."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable

from ..storage import ArchiveError, SnapshotStore, build_archive
from .queue import TaskQueue, TaskStage

logger = logging.getLogger(__name__)

BUILD_IN_PROGRESS = "Build In Progress"
BUILD_PENDING = "Build Pending"
BUILD_FAILED = "Build Failed"
ZIP_MEDIA_TYPE = "application/zip"


@dataclass(slots=True)
class BuildResponse:
    status_code: int
    body: bytes = b""
    message: str | None = None
    media_type: str = "text/plain; charset=utf-8"
    headers: dict[str, str] = field(default_factory=dict)


class ArtifactServer:
    def __init__(
        self,
        queue: TaskQueue,
        store: SnapshotStore,
        targets: Iterable[str],
        *,
        tmp_dir: Path | None = None,
    ) -> None:
        self._queue = queue
        self._store = store
        self._targets = set(targets)
        self._tmp_dir = tmp_dir

    async def get_build(self, target: str) -> BuildResponse:
        if target not in self._targets:
            return _text(404, f"Unknown target: {target}")

        record = await self._queue.find(target)
        if record is not None and record.stage is TaskStage.COMPLETE:
            # Package under the target lock so a rebuild cannot reset the
            # output directory mid-read; re-check the stage once we hold it.
            async with self._store.lock(target):
                record = await self._queue.find(target)
                if record is not None and record.stage is TaskStage.COMPLETE:
                    return await self._package(target, record.output)

        if record is None:
            logger.error("No queue state for known target", extra={"target": target})
            return _text(500, f"Build state lost for target {target}")

        if record.stage is TaskStage.IN_PROGRESS:
            return _status(BUILD_IN_PROGRESS)
        if record.stage is TaskStage.PENDING:
            return _status(BUILD_PENDING)
        if record.stage is TaskStage.FAILED:
            response = _text(500, f"{BUILD_FAILED}: {record.reason}")
            response.headers["X-Build-Status"] = BUILD_FAILED
            return response

        logger.error(
            "Unexpected build stage", extra={"target": target, "stage": record.stage.value}
        )
        return _text(500, f"Unexpected build state '{record.stage.value}' for target {target}")

    async def _package(self, target: str, output: Path | None) -> BuildResponse:
        output = output or self._store.output_path(target)
        try:
            payload = await asyncio.to_thread(build_archive, target, output, tmp_dir=self._tmp_dir)
        except (ArchiveError, OSError) as exc:
            logger.exception("Packaging failed", extra={"target": target})
            return _text(500, f"Failed to package build for {target}: {exc}")

        return BuildResponse(
            status_code=200,
            body=payload,
            media_type=ZIP_MEDIA_TYPE,
            headers={"Content-Disposition": f'attachment; filename="{target}.zip"'},
        )


def _text(status_code: int, message: str) -> BuildResponse:
    return BuildResponse(status_code=status_code, body=message.encode("utf-8"), message=message)


def _status(message: str) -> BuildResponse:
    return BuildResponse(status_code=204, message=message, headers={"X-Build-Status": message})


__all__ = [
    "ArtifactServer",
    "BUILD_FAILED",
    "BUILD_IN_PROGRESS",
    "BUILD_PENDING",
    "BuildResponse",
]
