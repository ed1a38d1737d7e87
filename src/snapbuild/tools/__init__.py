"""Tool and route registration for snapbuild."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Mapping

from fastmcp import FastMCP
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from .. import __version__
from ..config import SnapbuildSettings
from ..pipeline import ArtifactServer, ChangePoller, TaskQueue
from ..targets import BuildTarget

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ToolHandles:
    build_status: Any
    list_targets: Any
    get_build_route: Any
    status_route: Any
    collect_status: Callable[[], Any]


def register_tools(
    server: FastMCP,
    *,
    settings: SnapbuildSettings,
    targets: Mapping[str, BuildTarget],
    queue: TaskQueue,
    artifacts: ArtifactServer,
    poller: ChangePoller | None = None,
    builder_metadata: dict[str, Any] | None = None,
) -> ToolHandles:
    """Register snapbuild's MCP tools and HTTP routes on the server."""

    builder_info = builder_metadata or {}

    async def _collect_status() -> dict[str, Any]:
        queue_state = await queue.snapshot()
        return {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "server_version": __version__,
            "upstream": {
                "owner": settings.upstream_owner,
                "repo": settings.upstream_repo,
                "ref": settings.upstream_ref,
                "threshold": settings.rebuild_threshold,
                "checkpoint": poller.checkpoint.isoformat() if poller is not None else None,
                "consecutive_failures": poller.consecutive_failures if poller is not None else 0,
            },
            "builder": {"tool": settings.build_tool, **builder_info},
            "targets": sorted(targets),
            "queue": queue_state,
        }

    @server.tool(name="build_status")
    async def build_status(target: str) -> dict[str, Any]:
        """Return the queue stage of one build target."""

        if target not in targets:
            raise ValueError(f"Unknown target '{target}'")
        record = await queue.find(target)
        if record is None:
            return {"target": target, "stage": "unknown"}
        return record.as_dict()

    @server.tool(name="list_targets")
    def list_targets() -> list[dict[str, Any]]:
        """List the build targets this server produces artifacts for."""

        return [targets[name].model_dump() for name in sorted(targets)]

    @server.custom_route("/get_build/{target}", methods=["GET"])
    async def get_build_route(request: Request) -> Response:
        target = request.path_params["target"]
        result = await artifacts.get_build(target)
        logger.info(
            "Artifact request",
            extra={"target": target, "status_code": result.status_code, "detail": result.message},
        )
        if result.status_code == 204:
            return Response(status_code=204, headers=result.headers)
        return Response(
            content=result.body,
            status_code=result.status_code,
            media_type=result.media_type,
            headers=result.headers,
        )

    @server.custom_route("/status", methods=["GET"])
    async def status_route(request: Request) -> Response:
        return JSONResponse(await _collect_status())

    return ToolHandles(
        build_status=build_status,
        list_targets=list_targets,
        get_build_route=get_build_route,
        status_route=status_route,
        collect_status=_collect_status,
    )


__all__ = ["ToolHandles", "register_tools"]
