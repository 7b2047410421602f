"""kodrdriv tools exposed over MCP.

Each tool maps its arguments onto a config section, runs the matching
``kodrdriv`` command through :func:`execute_command` and shapes the
result. Tree tools that walk packages also discover the workspace
packages first so the client sees a total before the first package
starts.
"""
from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Dict, Optional

from kodrdriv_mcp.core.commands import run_kodrdriv
from kodrdriv_mcp.core.discovery import discover_tree_packages
from kodrdriv_mcp.core.executor import ExecutionContext, RunResult, execute_command

ToolExecutor = Callable[[Dict[str, Any], ExecutionContext], Awaitable[RunResult]]

_DIRECTORY = {"type": "string", "description": "Repository directory path (defaults to current directory)"}
_DRY_RUN = {"type": "boolean", "description": "Simulate without making changes"}
_TREE_DIRECTORY = {"type": "string", "description": "Root directory of the monorepo"}
_START_FROM = {"type": "string", "description": "Package name to start from"}
_SCOPE = {"type": "string", "description": "npm scope to update, e.g. \"@grunnverk\""}
_SCOPES = {"type": "array", "items": {"type": "string"}, "description": "Several npm scopes to update"}

TOOLS = [
    {
        "name": "kodrdriv_commit",
        "description": "Generate a commit message for staged changes and optionally commit them.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "directory": _DIRECTORY,
                "sendit": {"type": "boolean", "description": "Commit with the generated message (default: false)"},
                "issue": {"type": "string", "description": "GitHub issue number to reference in the commit"},
                "dry_run": _DRY_RUN,
            },
        },
    },
    {
        "name": "kodrdriv_precommit",
        "description": "Run the precommit checks (lint, build, test) for a package.",
        "inputSchema": {
            "type": "object",
            "properties": {"directory": _DIRECTORY, "fix": {"type": "boolean", "description": "Apply automatic fixes"}},
        },
    },
    {
        "name": "kodrdriv_release",
        "description": "Generate release notes from recent commits.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "directory": _DIRECTORY,
                "from_ref": {"type": "string", "description": "Start git ref"},
                "to_ref": {"type": "string", "description": "End git ref (default: HEAD)"},
                "dry_run": _DRY_RUN,
            },
        },
    },
    {
        "name": "kodrdriv_publish",
        "description": "Bump the version, tag and publish a single package.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "directory": _DIRECTORY,
                "version_type": {"type": "string", "enum": ["patch", "minor", "major"], "description": "Version bump type"},
                "dry_run": _DRY_RUN,
            },
        },
    },
    {
        "name": "kodrdriv_tree_precommit",
        "description": "Run precommit checks across all packages of a monorepo in dependency order.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "directory": _TREE_DIRECTORY,
                "packages": {"type": "array", "items": {"type": "string"}, "description": "Specific packages to check"},
                "start_from": _START_FROM,
            },
        },
    },
    {
        "name": "kodrdriv_tree_publish",
        "description": (
            "Publish multiple packages in dependency order. Handles version bumping, "
            "tagging and publishing; can resume from a checkpoint after a failure."
        ),
        "inputSchema": {
            "type": "object",
            "properties": {
                "directory": _TREE_DIRECTORY,
                "packages": {"type": "array", "items": {"type": "string"}, "description": "Specific packages to publish"},
                "version_type": {"type": "string", "enum": ["patch", "minor", "major"], "description": "Version bump type"},
                "dry_run": _DRY_RUN,
                "continue": {"type": "boolean", "description": "Resume from the previous failed run's checkpoint"},
                "cleanup": {"type": "boolean", "description": "Clean up failed state and reset the checkpoint"},
                "start_from": _START_FROM,
            },
        },
    },
    {
        "name": "kodrdriv_review",
        "description": "Analyze review notes and create GitHub issues from their action items.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "directory": _DIRECTORY,
                "review_file": {"type": "string", "description": "Path to the review notes file"},
                "dry_run": {"type": "boolean", "description": "Preview issues without creating them"},
            },
        },
    },
    {
        "name": "kodrdriv_pull",
        "description": "Pull the latest changes with conflict resolution assistance.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "directory": _DIRECTORY,
                "rebase": {"type": "boolean", "description": "Rebase instead of merge"},
                "auto_resolve": {"type": "boolean", "description": "Attempt automatic conflict resolution"},
            },
        },
    },
    {
        "name": "kodrdriv_development",
        "description": (
            "Switch to the working branch for active development, tag the current "
            "release and bump to the next development version."
        ),
        "inputSchema": {
            "type": "object",
            "properties": {
                "directory": _DIRECTORY,
                "target_version": {
                    "type": "string",
                    "description": "Version bump type (patch, minor, major) or an explicit version",
                },
                "tag_working_branch": {
                    "type": "boolean",
                    "description": "Tag the working branch with the current release version (default: true)",
                },
                "dry_run": _DRY_RUN,
            },
        },
    },
    {
        "name": "kodrdriv_updates",
        "description": "Update dependencies of a single package for the configured npm scopes.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "directory": _DIRECTORY,
                "scope": _SCOPE,
                "scopes": _SCOPES,
            },
        },
    },
    {
        "name": "kodrdriv_tree_pull",
        "description": "Pull the latest changes across all packages of a monorepo.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "directory": _TREE_DIRECTORY,
                "rebase": {"type": "boolean", "description": "Rebase instead of merge"},
                "start_from": _START_FROM,
            },
        },
    },
    {
        "name": "kodrdriv_tree_updates",
        "description": "Update dependencies across all packages of a monorepo.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "directory": _TREE_DIRECTORY,
                "packages": {"type": "array", "items": {"type": "string"}, "description": "Specific packages to update"},
                "start_from": _START_FROM,
                "scope": _SCOPE,
                "scopes": _SCOPES,
            },
        },
    },
    {
        "name": "kodrdriv_tree_link",
        "description": "Link local workspace packages to each other for development.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "directory": _TREE_DIRECTORY,
                "packages": {"type": "array", "items": {"type": "string"}, "description": "Specific packages to link"},
                "start_from": _START_FROM,
                "parallel": {"type": "boolean", "description": "Process packages in parallel"},
            },
        },
    },
    {
        "name": "kodrdriv_tree_link_status",
        "description": "Show which packages have linked dependencies and where they point.",
        "inputSchema": {"type": "object", "properties": {"directory": _TREE_DIRECTORY}},
    },
]


def _section(config: Dict[str, Any], name: str) -> Dict[str, Any]:
    return config.setdefault(name, {})


def _with_packages(result: Any, args: Dict[str, Any], original_cwd: str) -> Dict[str, Any]:
    data: Dict[str, Any] = {"result": result, "directory": args.get("directory") or original_cwd}
    if args.get("packages"):
        data["packages"] = list(args["packages"])
    return data


async def _discover_packages(args: Dict[str, Any], directory: str) -> Optional[Dict[str, Any]]:
    discovery = await asyncio.to_thread(
        discover_tree_packages, directory, args.get("packages"), args.get("start_from")
    )
    if discovery is None:
        return None
    return {"total": discovery.total, "message": discovery.message}


async def execute_commit(args: Dict[str, Any], context: ExecutionContext) -> RunResult:
    def build(config: Dict[str, Any], args: Dict[str, Any]) -> None:
        commit = _section(config, "commit")
        commit["sendit"] = bool(args.get("sendit"))
        if args.get("issue"):
            commit["context"] = f"GitHub Issue #{args['issue']}"

    return await execute_command(args, context, lambda config: run_kodrdriv("commit", config), build)


async def execute_precommit(args: Dict[str, Any], context: ExecutionContext) -> RunResult:
    def build(config: Dict[str, Any], args: Dict[str, Any]) -> None:
        if args.get("fix"):
            _section(config, "precommit")["fix"] = True

    return await execute_command(args, context, lambda config: run_kodrdriv("precommit", config), build)


async def execute_release(args: Dict[str, Any], context: ExecutionContext) -> RunResult:
    def build(config: Dict[str, Any], args: Dict[str, Any]) -> None:
        release = _section(config, "release")
        if args.get("from_ref"):
            release["from"] = args["from_ref"]
        release["to"] = args.get("to_ref") or "HEAD"

    return await execute_command(args, context, lambda config: run_kodrdriv("release", config), build)


async def execute_publish(args: Dict[str, Any], context: ExecutionContext) -> RunResult:
    def build(config: Dict[str, Any], args: Dict[str, Any]) -> None:
        _section(config, "publish")["target_version"] = args.get("version_type") or "patch"

    return await execute_command(args, context, lambda config: run_kodrdriv("publish", config), build)


def _build_tree(config: Dict[str, Any], args: Dict[str, Any]) -> None:
    tree = _section(config, "tree")
    if args.get("packages"):
        tree["packages"] = list(args["packages"])
    if args.get("start_from"):
        tree["start_from"] = args["start_from"]


async def execute_tree_precommit(args: Dict[str, Any], context: ExecutionContext) -> RunResult:
    return await execute_command(
        args,
        context,
        lambda config: run_kodrdriv("tree precommit", config, section="tree"),
        _build_tree,
        _with_packages,
        _discover_packages,
    )


async def execute_tree_publish(args: Dict[str, Any], context: ExecutionContext) -> RunResult:
    def build(config: Dict[str, Any], args: Dict[str, Any]) -> None:
        _build_tree(config, args)
        tree = config["tree"]
        if args.get("continue"):
            tree["continue"] = True
        if args.get("cleanup"):
            tree["cleanup"] = True
        tree["target_version"] = args.get("version_type") or "patch"

    return await execute_command(
        args,
        context,
        lambda config: run_kodrdriv("tree publish", config, section="tree"),
        build,
        _with_packages,
        _discover_packages,
    )


async def execute_review(args: Dict[str, Any], context: ExecutionContext) -> RunResult:
    def build(config: Dict[str, Any], args: Dict[str, Any]) -> None:
        review = _section(config, "review")
        if args.get("review_file"):
            review["file"] = args["review_file"]
        review["sendit"] = not args.get("dry_run")

    def shape(result: Any, args: Dict[str, Any], original_cwd: str) -> Dict[str, Any]:
        return {
            "result": result,
            "directory": args.get("directory") or original_cwd,
            "reviewFile": args.get("review_file"),
        }

    return await execute_command(args, context, lambda config: run_kodrdriv("review", config), build, shape)


async def execute_pull(args: Dict[str, Any], context: ExecutionContext) -> RunResult:
    def build(config: Dict[str, Any], args: Dict[str, Any]) -> None:
        pull = _section(config, "pull")
        pull["rebase"] = bool(args.get("rebase"))
        pull["auto_resolve"] = bool(args.get("auto_resolve"))

    def shape(result: Any, args: Dict[str, Any], original_cwd: str) -> Dict[str, Any]:
        return {
            "result": result,
            "directory": args.get("directory") or original_cwd,
            "rebase": bool(args.get("rebase")),
        }

    return await execute_command(args, context, lambda config: run_kodrdriv("pull", config), build, shape)


async def execute_development(args: Dict[str, Any], context: ExecutionContext) -> RunResult:
    def build(config: Dict[str, Any], args: Dict[str, Any]) -> None:
        development = _section(config, "development")
        if args.get("target_version"):
            development["target_version"] = args["target_version"]
        if args.get("tag_working_branch") is False:
            development["no_tag_working_branch"] = True

    return await execute_command(args, context, lambda config: run_kodrdriv("development", config), build)


def _build_scopes(section: Dict[str, Any], args: Dict[str, Any]) -> None:
    if args.get("scope"):
        section["scope"] = args["scope"]
    if args.get("scopes"):
        section["scopes"] = list(args["scopes"])


async def execute_updates(args: Dict[str, Any], context: ExecutionContext) -> RunResult:
    def build(config: Dict[str, Any], args: Dict[str, Any]) -> None:
        _build_scopes(_section(config, "updates"), args)

    return await execute_command(args, context, lambda config: run_kodrdriv("updates", config), build)


async def execute_tree_pull(args: Dict[str, Any], context: ExecutionContext) -> RunResult:
    def build(config: Dict[str, Any], args: Dict[str, Any]) -> None:
        _build_tree(config, args)
        if args.get("rebase"):
            config["tree"]["rebase"] = True

    return await execute_command(
        args,
        context,
        lambda config: run_kodrdriv("tree pull", config, section="tree"),
        build,
        _with_packages,
        _discover_packages,
    )


async def execute_tree_updates(args: Dict[str, Any], context: ExecutionContext) -> RunResult:
    def build(config: Dict[str, Any], args: Dict[str, Any]) -> None:
        _build_tree(config, args)
        _build_scopes(config["tree"], args)

    return await execute_command(
        args,
        context,
        lambda config: run_kodrdriv("tree updates", config, section="tree"),
        build,
        _with_packages,
        _discover_packages,
    )


async def execute_tree_link(args: Dict[str, Any], context: ExecutionContext) -> RunResult:
    def build(config: Dict[str, Any], args: Dict[str, Any]) -> None:
        _build_tree(config, args)
        if args.get("parallel"):
            config["tree"]["parallel"] = True

    return await execute_command(
        args,
        context,
        lambda config: run_kodrdriv("tree link", config, section="tree"),
        build,
        _with_packages,
        _discover_packages,
    )


async def execute_tree_link_status(args: Dict[str, Any], context: ExecutionContext) -> RunResult:
    return await execute_command(
        args,
        context,
        lambda config: run_kodrdriv("tree link status", config, section="tree"),
        result_builder=lambda result, args, original_cwd: {
            "status": result,
            "directory": args.get("directory") or original_cwd,
        },
    )


TOOL_EXECUTORS: Dict[str, ToolExecutor] = {
    "kodrdriv_commit": execute_commit,
    "kodrdriv_precommit": execute_precommit,
    "kodrdriv_release": execute_release,
    "kodrdriv_publish": execute_publish,
    "kodrdriv_tree_precommit": execute_tree_precommit,
    "kodrdriv_tree_publish": execute_tree_publish,
    "kodrdriv_review": execute_review,
    "kodrdriv_pull": execute_pull,
    "kodrdriv_development": execute_development,
    "kodrdriv_updates": execute_updates,
    "kodrdriv_tree_pull": execute_tree_pull,
    "kodrdriv_tree_updates": execute_tree_updates,
    "kodrdriv_tree_link": execute_tree_link,
    "kodrdriv_tree_link_status": execute_tree_link_status,
}
