"""FastMCP server bootstrap for snapbuild."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Mapping, Optional

from fastmcp import FastMCP

from . import __version__
from .builder import BuildRunner, BuildToolNotFoundError
from .config import SnapbuildSettings, get_settings
from .pipeline import ArtifactServer, BuildWorker, ChangePoller, TaskQueue
from .storage import SnapshotMaterializer, SnapshotStore
from .targets import BuildTarget, load_targets
from .tools import register_tools
from .upstream import GitHubClient, UpstreamSource

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    """Configure root logging for the snapbuild server."""

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
    )


def create_server(
    settings: Optional[SnapbuildSettings] = None,
    *,
    upstream: UpstreamSource | None = None,
    build_runner: BuildRunner | None = None,
    targets: Mapping[str, BuildTarget] | None = None,
) -> FastMCP:
    """Wire the queue, poller, worker and artifact routes into one FastMCP server."""

    settings = settings or get_settings()
    target_map = dict(targets) if targets is not None else load_targets(settings.target_paths)

    builder_metadata: dict[str, Any] = {"available": False, "path": None, "error": None}
    if build_runner is None:
        try:
            build_runner = BuildRunner(settings.build_tool)
        except BuildToolNotFoundError as exc:
            builder_metadata["error"] = str(exc)
            build_runner = None
    if build_runner is not None:
        builder_metadata["available"] = True
        builder_metadata["path"] = str(build_runner.executable)

    if upstream is None:
        upstream = GitHubClient(
            settings.upstream_owner,
            settings.upstream_repo,
            ref=settings.upstream_ref,
            token=settings.github_token,
            base_url=settings.github_api_url,
        )

    store = SnapshotStore(settings.work_dir, target_map)
    queue = TaskQueue()
    poller = ChangePoller(
        upstream,
        SnapshotMaterializer(store),
        store,
        queue,
        target_map,
        threshold=settings.rebuild_threshold,
        interval=settings.poll_interval_seconds,
        retry_base=settings.retry_base_seconds,
        retry_max=settings.retry_max_seconds,
        max_consecutive_failures=settings.max_consecutive_failures,
    )
    worker: BuildWorker | None = None
    if build_runner is not None:
        worker = BuildWorker(
            queue,
            build_runner,
            store,
            target_map,
            timeout=settings.build_timeout_seconds,
        )
    artifacts = ArtifactServer(queue, store, target_map)

    server = FastMCP(
        name="snapbuild",
        version=__version__,
        instructions=(
            "snapbuild rebuilds a fixed set of targets whenever enough upstream "
            "commits accumulate. Use the tools to inspect build targets and their "
            "queue stage; fetch artifacts over HTTP at /get_build/{target}."
        ),
    )

    handles = register_tools(
        server,
        settings=settings,
        targets=target_map,
        queue=queue,
        artifacts=artifacts,
        poller=poller,
        builder_metadata=builder_metadata,
    )

    @server.resource(
        "resource://snapbuild/status",
        name="snapbuild_status",
        description="Queue stages, upstream checkpoint and build tool availability.",
        mime_type="application/json",
    )
    async def status_resource() -> str:
        """Return a JSON string summarizing the build pipeline."""

        return json.dumps(await handles.collect_status())

    setattr(server, "snapbuild_settings", settings)
    setattr(server, "targets", target_map)
    setattr(server, "snapshot_store", store)
    setattr(server, "task_queue", queue)
    setattr(server, "poller", poller)
    setattr(server, "worker", worker)
    setattr(server, "artifacts", artifacts)
    setattr(server, "upstream", upstream)
    setattr(server, "builder_metadata", builder_metadata)
    setattr(server, "tool_handles", handles)
    return server


def _log_background_exit(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(
            "Background activity stopped",
            exc_info=exc,
            extra={"activity": task.get_name()},
        )


async def serve(server: FastMCP) -> None:
    """Run the poller and worker alongside the HTTP transport until cancelled."""

    settings: SnapbuildSettings = getattr(server, "snapbuild_settings")
    store: SnapshotStore = getattr(server, "snapshot_store")
    poller: ChangePoller = getattr(server, "poller")
    worker: BuildWorker | None = getattr(server, "worker")

    await asyncio.to_thread(store.prepare)

    background = [asyncio.create_task(poller.run(), name="poller")]
    if worker is not None:
        background.append(asyncio.create_task(worker.run(), name="worker"))
    else:
        logger.warning(
            "Build tool unavailable; builds will stay pending",
            extra={"error": getattr(server, "builder_metadata", {}).get("error")},
        )
    for task in background:
        task.add_done_callback(_log_background_exit)

    try:
        await server.run_async(transport="http", host=settings.host, port=settings.port)
    finally:
        for task in background:
            task.cancel()
        await asyncio.gather(*background, return_exceptions=True)
        upstream = getattr(server, "upstream", None)
        if isinstance(upstream, GitHubClient):
            await upstream.aclose()


def main() -> None:
    """Entry point for running the snapbuild server via CLI."""

    settings = get_settings()
    configure_logging(settings.log_level)

    server = create_server(settings)
    logger.info(
        "Launching snapbuild server",
        extra={
            "version": __version__,
            "log_level": settings.log_level,
            "targets": sorted(getattr(server, "targets", {})),
            "builder_available": getattr(server, "builder_metadata", {}).get("available"),
        },
    )
    asyncio.run(serve(server))


if __name__ == "__main__":
    main()
