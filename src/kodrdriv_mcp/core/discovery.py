"""Upfront package discovery for tree operations.

Finds the workspace packages under a directory and orders them by their
local dependencies, so a tree run can report ``N`` packages before the
first one starts.
"""
from __future__ import annotations

import fnmatch
import heapq
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Set

from kodrdriv_mcp.core.progress import found_packages_message

logger = logging.getLogger("kodrdriv_mcp.discovery")

DEFAULT_EXCLUDE_SUBPROJECTS = ["doc/", "docs/", "test-*/"]
_ALWAYS_EXCLUDED_DIRS = {"node_modules", "dist", "build", ".git"}
_DEPENDENCY_FIELDS = ("dependencies", "devDependencies", "peerDependencies")
CONFIG_PATH = os.path.join(".kodrdriv", "config.json")


class DependencyCycleError(ValueError):
    pass


@dataclass
class TreeDiscovery:
    total: int
    build_order: List[str] = field(default_factory=list)
    message: str = ""


def load_exclude_subprojects(directory: str) -> List[str]:
    """Read ``workspace.excludeSubprojects`` from the workspace config."""
    path = Path(directory) / CONFIG_PATH
    if not path.is_file():
        return list(DEFAULT_EXCLUDE_SUBPROJECTS)
    with open(path, "r", encoding="utf-8") as handle:
        config = json.load(handle)
    patterns = (config.get("workspace") or {}).get("excludeSubprojects")
    if patterns is None:
        return list(DEFAULT_EXCLUDE_SUBPROJECTS)
    return [str(p) for p in patterns]


def _is_excluded(rel_dir: str, patterns: Sequence[str]) -> bool:
    rel = rel_dir.replace(os.sep, "/").rstrip("/") + "/"
    for pattern in patterns:
        pattern = pattern if pattern.endswith("/") else pattern + "/"
        if fnmatch.fnmatch(rel, pattern + "*") or fnmatch.fnmatch(rel, "*/" + pattern + "*"):
            return True
    return False


def scan_for_package_json_files(directory: str, exclude_subprojects: Sequence[str]) -> List[Path]:
    root = Path(directory)
    found: List[Path] = []
    for current, dirs, files in os.walk(root):
        rel = os.path.relpath(current, root)
        dirs[:] = sorted(
            d for d in dirs
            if d not in _ALWAYS_EXCLUDED_DIRS
            and not _is_excluded(os.path.join(rel, d) if rel != "." else d, exclude_subprojects)
        )
        if "package.json" in files:
            found.append(Path(current) / "package.json")
    return found


def build_dependency_graph(package_json_paths: Iterable[Path]) -> Dict[str, Set[str]]:
    """Map each package name to the workspace packages it depends on."""
    manifests: Dict[str, dict] = {}
    for path in package_json_paths:
        with open(path, "r", encoding="utf-8") as handle:
            manifest = json.load(handle)
        name = manifest.get("name")
        if name:
            manifests[name] = manifest
    graph: Dict[str, Set[str]] = {}
    for name, manifest in manifests.items():
        deps: Set[str] = set()
        for field_name in _DEPENDENCY_FIELDS:
            deps.update(d for d in (manifest.get(field_name) or {}) if d in manifests and d != name)
        graph[name] = deps
    return graph


def topological_sort(graph: Dict[str, Set[str]]) -> List[str]:
    """Dependencies first; ties broken alphabetically."""
    remaining = {name: set(deps) for name, deps in graph.items()}
    dependents: Dict[str, List[str]] = {name: [] for name in graph}
    for name, deps in graph.items():
        for dep in deps:
            dependents[dep].append(name)
    ready = [name for name, deps in remaining.items() if not deps]
    heapq.heapify(ready)
    order: List[str] = []
    while ready:
        name = heapq.heappop(ready)
        order.append(name)
        for dependent in dependents[name]:
            remaining[dependent].discard(name)
            if not remaining[dependent]:
                heapq.heappush(ready, dependent)
    if len(order) != len(graph):
        stuck = sorted(set(graph) - set(order))
        raise DependencyCycleError(f"Dependency cycle between: {', '.join(stuck)}")
    return order


def discover_tree_packages(
    directory: str,
    packages: Optional[Sequence[str]] = None,
    start_from: Optional[str] = None,
) -> Optional[TreeDiscovery]:
    """Return the package count and build order, or None if unavailable."""
    try:
        excludes = load_exclude_subprojects(directory)
        paths = scan_for_package_json_files(directory, excludes)
        if not paths:
            return None
        build_order = topological_sort(build_dependency_graph(paths))

        if packages:
            wanted = set(packages)
            build_order = [name for name in build_order if name in wanted]

        if start_from and start_from in build_order:
            build_order = build_order[build_order.index(start_from):]

        return TreeDiscovery(
            total=len(build_order),
            build_order=build_order,
            message=found_packages_message(len(build_order)),
        )
    except Exception as exc:  # noqa: BLE001
        logger.debug("Package discovery failed in %s: %s", directory, exc)
        return None
