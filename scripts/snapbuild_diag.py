"""snapbuild diagnostics CLI."""

from __future__ import annotations

import argparse
import asyncio
import json
from datetime import datetime, timedelta, timezone

import httpx

from snapbuild.builder import BuildRunner, BuildToolNotFoundError
from snapbuild.config import SnapbuildSettings
from snapbuild.targets import TargetLoadError, TargetLoader
from snapbuild.upstream import GitHubClient, UpstreamError


def load_client(settings: SnapbuildSettings) -> GitHubClient:
    return GitHubClient(
        settings.upstream_owner,
        settings.upstream_repo,
        ref=settings.upstream_ref,
        token=settings.github_token,
        base_url=settings.github_api_url,
    )


def cmd_targets(args: argparse.Namespace) -> None:
    settings = SnapbuildSettings()
    try:
        targets = TargetLoader(settings.target_paths).load_all()
    except TargetLoadError as exc:
        print(f"Target definitions invalid: {exc}")
        raise SystemExit(1)
    if args.json:
        print(json.dumps([targets[name].model_dump() for name in sorted(targets)], indent=2))
    else:
        for name in sorted(targets):
            flags = " ".join(targets[name].build_flags)
            print(f"{name} [{flags}] {targets[name].description}".rstrip())


def cmd_tool(args: argparse.Namespace) -> None:
    settings = SnapbuildSettings()
    try:
        runner = BuildRunner(settings.build_tool)
    except BuildToolNotFoundError as exc:
        print(f"Build tool unavailable: {exc}")
        raise SystemExit(1)
    print(json.dumps({"tool": settings.build_tool, "path": str(runner.executable)}, indent=2))


def cmd_commits(args: argparse.Namespace) -> None:
    settings = SnapbuildSettings()
    since = datetime.now(timezone.utc) - timedelta(hours=args.hours)

    async def _count() -> int:
        client = load_client(settings)
        try:
            commits = await client.list_commits_since(since, limit=settings.rebuild_threshold + 1)
        finally:
            await client.aclose()
        return len(commits)

    try:
        count = asyncio.run(_count())
    except UpstreamError as exc:
        print(f"Upstream unavailable: {exc.code}")
        raise SystemExit(1)

    payload = {
        "repository": f"{settings.upstream_owner}/{settings.upstream_repo}",
        "ref": settings.upstream_ref,
        "since": since.isoformat(),
        "commits": count,
        "threshold": settings.rebuild_threshold,
        "would_rebuild": count > settings.rebuild_threshold,
    }
    print(json.dumps(payload, indent=2))


def cmd_status(args: argparse.Namespace) -> None:
    settings = SnapbuildSettings()
    url = args.url or f"http://{settings.host}:{settings.port}/status"
    try:
        response = httpx.get(url, timeout=10.0)
        response.raise_for_status()
    except httpx.HTTPError as exc:
        print(f"Server unreachable: {exc}")
        raise SystemExit(1)

    payload = response.json()
    if args.json:
        print(json.dumps(payload, indent=2))
        return
    records = payload.get("queue", {}).get("records", {})
    for name in payload.get("targets", []):
        stage = records.get(name, {}).get("stage", "unknown")
        print(f"{name}: {stage}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="snapbuild diagnostics")
    sub = parser.add_subparsers(dest="cmd")

    p_targets = sub.add_parser("targets", help="List configured build targets")
    p_targets.add_argument("--json", action="store_true", help="Output JSON")
    p_targets.set_defaults(func=cmd_targets)

    p_tool = sub.add_parser("tool", help="Resolve the configured build tool")
    p_tool.set_defaults(func=cmd_tool)

    p_commits = sub.add_parser("commits", help="Count upstream commits in a recent window")
    p_commits.add_argument("--hours", type=float, default=24.0, help="Window size in hours")
    p_commits.set_defaults(func=cmd_commits)

    p_status = sub.add_parser("status", help="Show queue stages from a running server")
    p_status.add_argument("--url", default=None, help="Status endpoint URL")
    p_status.add_argument("--json", action="store_true", help="Output JSON")
    p_status.set_defaults(func=cmd_status)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return
    args.func(args)


if __name__ == "__main__":
    main()
