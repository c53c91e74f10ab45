"""Dependency graph utilities.

Builds the bidirectional workspace dependency graph and answers the two
questions the release plan needs: which packages are affected (transitively)
by a set of changes, and in what order their manifests should be written so
that dependencies are finalized before the packages that depend on them.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from .models import DependencyGraph, Package

logger = logging.getLogger(__name__)


def build_dependency_graph(packages: Iterable[Package]) -> DependencyGraph:
    """Build the package map and the inverse (dependents) map.

    For every package, each name in its workspace dependency lists gets an
    inverse edge dependency → package. Names that are not workspace
    packages are ignored; they cannot be cascaded.

    Example:
        If B depends on A and C depends on B:
        dependents == {"a": {"b"}, "b": {"c"}, "c": set()}
    """
    package_list = list(packages)
    graph = DependencyGraph(
        packages={pkg.name: pkg for pkg in package_list},
        dependents={pkg.name: set() for pkg in package_list},
    )

    for pkg in package_list:
        for dep in pkg.all_workspace_dependencies:
            if dep in graph.dependents:
                graph.dependents[dep].add(pkg.name)

    return graph


def affected_packages(graph: DependencyGraph, changed: Iterable[str]) -> set[str]:
    """Return the changed packages plus all of their transitive dependents."""
    affected: set[str] = set()

    def visit(name: str) -> None:
        if name in affected:
            return
        affected.add(name)
        # Sorted for a deterministic walk
        for dependent in sorted(graph.dependents.get(name, ())):
            visit(dependent)

    for name in sorted(changed):
        visit(name)

    return affected


def update_order(graph: DependencyGraph, names: Iterable[str]) -> list[tuple[str, int]]:
    """Order packages so dependencies come before dependents.

    Each package gets a level: 0 when none of its workspace dependencies is
    in ``names``, otherwise one more than the highest level among those
    dependencies. Results are sorted by level, then name.

    Cycles cannot be ordered; the edge closing a cycle is ignored and a
    warning is logged.

    Example:
        If C depends on B and B depends on A:
        update_order(graph, {"a", "b", "c"}) → [("a", 0), ("b", 1), ("c", 2)]
    """
    to_update = set(names)
    levels: dict[str, int] = {}
    visiting: set[str] = set()

    def visit(name: str) -> int:
        if name in levels:
            return levels[name]
        if name in visiting:
            logger.warning("Dependency cycle detected involving %s", name)
            return -1
        visiting.add(name)

        level = 0
        pkg = graph.packages.get(name)
        if pkg is not None:
            for dep in pkg.all_workspace_dependencies:
                if dep in to_update and dep != name:
                    level = max(level, visit(dep) + 1)

        visiting.discard(name)
        levels[name] = level
        return level

    for name in sorted(to_update):
        visit(name)

    return sorted(levels.items(), key=lambda item: (item[1], item[0]))
